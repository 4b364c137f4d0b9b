"""
Tool-dispatch loop: the agent's control core.

A turn is a small state machine::

    AWAITING_MODEL ──(tool calls)──▶ EXECUTING_TOOLS
          ▲                               │
          └───────(results appended)──────┘
    AWAITING_MODEL ──(no tool calls)──▶ DONE

The conversation lives in a ``ThreadStore`` keyed by thread id, so every
new user message resumes the same history.  The store is written only
when the history is consistent — after a round of tool results, and at
DONE — so abandoning a turn mid-stream never persists a half-finished
model reply or a tool call without its result.

Flow
────
stream_turn(thread_id, text)
    → yields ("state", LoopState), ("token", str), ("tool_call", ToolCall),
      ("tool_result", ChatMessage) and finally ("final", str)
stream_text(thread_id, text)
    → yields only the model's own text fragments
run_turn(thread_id, text)
    → blocking; returns a TurnResult
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from core.cache import ResultCache
from core.llm import ChatModel, ClaudeChatModel
from core.models import ChatMessage, ToolCall
from core.news import NewsRepository
from core.search import create_searcher
from core.threads import MemoryThreadStore, ThreadStore
from core.tools import ToolRegistry

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

#: Standing instruction sent as the system prompt on every model call.
TOOL_POLICY = "\n".join([
    "Use search_web for any question that needs fresh internet data.",
    "search_web only fetches and returns a result_id; it never saves.",
    "After showing the result, ask the user if they want to save it.",
    "Only call save_to_db when user clearly confirms saving.",
    "Use get_from_db for topic-based retrieval.",
    "Use get_all_from_db when user asks to fetch everything in DB.",
    "Use get_by_id when user asks for a specific saved id.",
    "Never claim DB save/read success without using the corresponding DB tool.",
])

#: Printed by callers when a turn streams no text.
NO_TEXT_MESSAGE = "(no assistant text returned)"

DEFAULT_MAX_ROUNDS = 25


class LoopState(str, Enum):
    """States of one dispatch turn."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class DispatchLimitError(RuntimeError):
    """The model kept requesting tools past ``max_rounds`` in one turn."""


@dataclass
class TurnResult:
    """Outcome of a completed turn."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ChatMessage] = field(default_factory=list)
    states: list[LoopState] = field(default_factory=list)

    @property
    def model_calls(self) -> int:
        return self.states.count(LoopState.AWAITING_MODEL)


class ToolDispatchLoop:
    """Alternates between the model and the tool registry until a final answer.

    Args:
        model: Inference capability.
        registry: Tools the model may call.
        threads: Conversation store; defaults to an in-memory one.
        max_rounds: Cap on model consultations per turn.
        system_prompt: Standing instruction prefixed to every model call.
    """

    def __init__(
        self,
        model: ChatModel,
        registry: ToolRegistry,
        threads: Optional[ThreadStore] = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        system_prompt: str = TOOL_POLICY,
    ) -> None:
        self.model = model
        self.registry = registry
        self.threads = threads if threads is not None else MemoryThreadStore()
        self.max_rounds = max_rounds
        self.system_prompt = system_prompt

    def stream_turn(
        self,
        thread_id: str,
        text: str,
    ) -> Generator[tuple[str, object], None, None]:
        """Run one turn for *thread_id*, yielding progress events.

        Raises:
            ValueError: If *text* is blank.
            DispatchLimitError: If the model exceeds ``max_rounds``.
            sqlite3.Error: If the repository fails during a tool call.
        """
        text = text.strip()
        if not text:
            raise ValueError("Message must not be empty.")

        messages = self.threads.load(thread_id)
        messages.append(ChatMessage(role="user", content=text))
        tools = self.registry.declarations()

        state = LoopState.AWAITING_MODEL
        pending: list[ToolCall] = []
        final_text = ""
        rounds = 0
        logger.info("Turn started thread=%s history=%d", thread_id, len(messages) - 1)
        yield ("state", state)

        while state is not LoopState.DONE:
            if state is LoopState.AWAITING_MODEL:
                if rounds >= self.max_rounds:
                    raise DispatchLimitError(
                        f"Model requested tools for {rounds} consecutive rounds "
                        f"(max_rounds={self.max_rounds})."
                    )
                rounds += 1

                reply: Optional[ChatMessage] = None
                for event, payload in self.model.stream(self.system_prompt, messages, tools):
                    if event == "token":
                        yield ("token", payload)
                    elif event == "message":
                        reply = payload
                if reply is None:
                    raise RuntimeError("Model stream ended without a final message.")

                messages.append(reply)
                if reply.tool_calls:
                    pending = list(reply.tool_calls)
                    state = LoopState.EXECUTING_TOOLS
                else:
                    final_text = reply.text
                    self.threads.save(thread_id, messages)
                    state = LoopState.DONE

            elif state is LoopState.EXECUTING_TOOLS:
                for call in pending:
                    yield ("tool_call", call)
                    result = self.registry.call(call.name, call.arguments)
                    tool_message = ChatMessage(
                        role="tool",
                        content=result.text,
                        tool_call_id=call.id,
                        name=call.name,
                        is_error=result.is_error,
                    )
                    messages.append(tool_message)
                    yield ("tool_result", tool_message)
                pending = []
                self.threads.save(thread_id, messages)
                state = LoopState.AWAITING_MODEL

            logger.debug("thread=%s → %s", thread_id, state.value)
            yield ("state", state)

        logger.info("Turn done thread=%s rounds=%d", thread_id, rounds)
        yield ("final", final_text)

    def stream_text(self, thread_id: str, text: str) -> Generator[str, None, None]:
        """Yield only the model's own text fragments, in arrival order."""
        for event, payload in self.stream_turn(thread_id, text):
            if event == "token":
                yield payload

    def run_turn(self, thread_id: str, text: str) -> TurnResult:
        """Blocking turn — returns the final answer with a trace of the loop."""
        result = TurnResult(text="")
        for event, payload in self.stream_turn(thread_id, text):
            if event == "state":
                result.states.append(payload)
            elif event == "tool_call":
                result.tool_calls.append(payload)
            elif event == "tool_result":
                result.tool_results.append(payload)
            elif event == "final":
                result.text = payload
        return result

    def history(self, thread_id: str) -> list[ChatMessage]:
        """Return the stored conversation for *thread_id*."""
        return self.threads.load(thread_id)


def create_agent(
    settings: Settings,
    threads: Optional[ThreadStore] = None,
    model: Optional[ChatModel] = None,
) -> ToolDispatchLoop:
    """Wire a dispatch loop from settings: Claude, the search backend,
    a fresh ResultCache and the news repository.
    """
    cache = ResultCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_items=settings.cache_max_items,
    )
    registry = ToolRegistry(
        searcher=create_searcher(settings),
        cache=cache,
        repository=NewsRepository(settings.news_db_path),
        summary_max_chars=settings.summary_max_chars,
    )
    return ToolDispatchLoop(
        model=model if model is not None else ClaudeChatModel(settings),
        registry=registry,
        threads=threads,
        max_rounds=settings.max_tool_rounds,
    )
