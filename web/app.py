"""
Flask server exposing the agent and its tool registry.

Routes
──────
GET  /api/tools             Declared tools (name, description, input_schema)
POST /api/tools/<name>      Call one tool with a JSON body of arguments
POST /api/chat              SSE: stream one agent turn for a thread
GET  /api/news              Saved rows (JSON); ?topic=... filters by topic
GET  /api/news/<id>         One saved row (JSON)
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import sys
import uuid
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

from config.settings import Settings
from core.agent import ToolDispatchLoop, create_agent
from core.threads import create_thread_store

logger = logging.getLogger(__name__)


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _clamp(value: Optional[int], default: int, upper: int) -> int:
    if value is None:
        return default
    return max(1, min(value, upper))


def create_app(
    settings: Optional[Settings] = None,
    agent: Optional[ToolDispatchLoop] = None,
) -> Flask:
    """Build the Flask app.

    When *agent* is not given it is wired from *settings* (validated first)
    with a SQLite thread store.

    Raises:
        ValueError: If required settings are missing.
    """
    settings = settings or Settings()
    if agent is None:
        settings.validate()
        threads = create_thread_store("sqlite", settings.threads_db_path)
        agent = create_agent(settings, threads=threads)

    registry = agent.registry
    repository = registry.repository

    app = Flask(__name__)

    # ── Tool registry ──────────────────────────────────────────────────────

    @app.route("/api/tools")
    def list_tools():
        """Return every declared tool."""
        return jsonify(registry.declarations())

    @app.route("/api/tools/<name>", methods=["POST"])
    def call_tool(name: str):
        """Invoke a tool; the JSON body is its argument object."""
        if name not in registry:
            return jsonify({"error": f"Unknown tool '{name}'"}), 404
        arguments = request.get_json(silent=True) or {}
        try:
            result = registry.call(name, arguments)
        except sqlite3.Error:
            logger.exception("Tool %s failed against the news DB", name)
            return jsonify({"error": "Internal server error"}), 500
        return jsonify(result.to_content())

    # ── Saved news ─────────────────────────────────────────────────────────

    @app.route("/api/news")
    def list_news():
        """Return saved rows, newest first, optionally filtered by topic."""
        topic = request.args.get("topic", "").strip()
        limit = request.args.get("limit", type=int)
        if topic:
            rows = repository.list_by_topic(topic, _clamp(limit, 10, 50))
        else:
            rows = repository.list_all(_clamp(limit, 100, 500))
        return jsonify([row.model_dump() for row in rows])

    @app.route("/api/news/<int:row_id>")
    def get_news_row(row_id: int):
        """Return one saved row."""
        row = repository.get_by_id(row_id)
        if row is None:
            return jsonify({"error": "Not found"}), 404
        return jsonify(row.model_dump())

    # ── Chat stream ────────────────────────────────────────────────────────

    @app.route("/api/chat", methods=["POST"])
    def chat():
        """SSE endpoint that streams one agent turn.

        JSON body:
          message    (required) — the user's message
          thread_id  (optional) — resume this conversation; a new id is
                                  generated when omitted

        SSE events emitted:
          {"type": "thread",      "thread_id": "..."}      first event
          {"type": "token",       "text": "..."}           model text chunk
          {"type": "tool_call",   "name": ..., "arguments": {...}}
          {"type": "tool_result", "name": ..., "text": ..., "is_error": bool}
          {"type": "final",       "text": "..."}           end of turn
          {"type": "error",       "message": "..."}        on failure
        """
        body = request.get_json(silent=True) or {}
        message = str(body.get("message", "")).strip()
        if not message:
            return jsonify({"error": "message is required"}), 400
        thread_id = str(body.get("thread_id") or f"session-{uuid.uuid4().hex}")

        def generate():
            yield _sse({"type": "thread", "thread_id": thread_id})
            try:
                for event, payload in agent.stream_turn(thread_id, message):
                    if event == "token":
                        yield _sse({"type": "token", "text": payload})
                    elif event == "tool_call":
                        yield _sse({
                            "type": "tool_call",
                            "name": payload.name,
                            "arguments": payload.arguments,
                        })
                    elif event == "tool_result":
                        yield _sse({
                            "type": "tool_result",
                            "name": payload.name,
                            "text": payload.text,
                            "is_error": payload.is_error,
                        })
                    elif event == "final":
                        yield _sse({"type": "final", "text": payload})
            except Exception as exc:
                logger.exception("Chat turn failed for thread=%s", thread_id)
                yield _sse({"type": "error", "message": str(exc)})

            yield "data: [DONE]\n\n"

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    settings = Settings()
    app = create_app(settings)
    logger.info("Agent HTTP server running at http://localhost:%d/api", settings.port)
    app.run(debug=settings.debug, host="0.0.0.0", port=settings.port, threaded=True)
