"""
Interactive command-line chat with the news agent.

Usage:
    python cli.py                          # new session, REPL
    python cli.py --session my-thread      # resume a saved session
    python cli.py --message "AAPL news?"   # one turn, then exit
    python cli.py --backend memory         # don't persist the conversation
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, TextIO

from dotenv import load_dotenv

from config.settings import THREAD_BACKENDS, Settings
from core.agent import NO_TEXT_MESSAGE, ToolDispatchLoop, create_agent
from core.threads import create_thread_store

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat with the news agent.")
    parser.add_argument(
        "--session",
        help="Thread id to resume (default: a new session-<epoch ms> id).",
    )
    parser.add_argument("--message", help="Run a single turn with this message and exit.")
    parser.add_argument(
        "--backend",
        choices=THREAD_BACKENDS,
        default="sqlite",
        help="Where conversation state is kept (default: sqlite).",
    )
    parser.add_argument(
        "--sqlite",
        default=settings.threads_db_path,
        help="Thread database path for the sqlite backend.",
    )
    return parser


def run_turn(
    agent: ToolDispatchLoop,
    session_id: str,
    text: str,
    out: Optional[TextIO] = None,
) -> str:
    """Stream one turn to *out* (default stdout) and return the concatenated text."""
    if out is None:
        out = sys.stdout
    streamed = ""
    for chunk in agent.stream_text(session_id, text):
        out.write(chunk)
        out.flush()
        streamed += chunk
    out.write("\n" if streamed else f"{NO_TEXT_MESSAGE}\n")
    return streamed


def repl(agent: ToolDispatchLoop, session_id: str, out: Optional[TextIO] = None) -> None:
    """Read messages until EOF or an exit command."""
    if out is None:
        out = sys.stdout
    while True:
        try:
            line = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            out.write("\n")
            break
        if not line:
            continue
        if line in EXIT_COMMANDS:
            break
        try:
            run_turn(agent, session_id, line, out)
        except Exception as exc:
            logger.exception("Turn failed")
            out.write(f"error: {exc}\n")


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    settings = Settings()
    args = build_parser(settings).parse_args(argv)
    settings.validate()

    session_id = args.session or f"session-{int(time.time() * 1000)}"
    threads = create_thread_store(args.backend, Path(args.sqlite))
    agent = create_agent(settings, threads=threads)

    print(f"session_id={session_id}")
    if args.backend == "sqlite":
        print(f"sqlite_path={args.sqlite}")

    if args.message:
        run_turn(agent, session_id, args.message)
        return 0

    repl(agent, session_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
