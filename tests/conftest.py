"""Shared fixtures: a controllable clock, a scripted model and a wired registry."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.cache import ResultCache
from core.models import ChatMessage, SourceRef, ToolCall
from core.news import NewsRepository
from core.search import SearchOutcome
from core.tools import ToolRegistry


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSearcher:
    """WebSearcher returning a canned outcome and recording queries."""

    def __init__(self, outcome: SearchOutcome) -> None:
        self.outcome = outcome
        self.queries: list[str] = []

    def search(self, query: str) -> SearchOutcome:
        self.queries.append(query)
        return self.outcome


class ScriptedModel:
    """ChatModel that replays prepared assistant messages in order.

    Text is streamed in 5-character chunks.  Each call's inputs are
    recorded in ``calls``.
    """

    def __init__(self, replies: list[ChatMessage]) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []

    def stream(self, system, messages, tools):
        self.calls.append({
            "system": system,
            "messages": [m.model_copy(deep=True) for m in messages],
            "tools": tools,
        })
        reply = self.replies.pop(0)
        text = reply.text
        for i in range(0, len(text), 5):
            yield ("token", text[i:i + 5])
        yield ("message", reply)


def assistant(text: str = "", *calls: ToolCall) -> ChatMessage:
    return ChatMessage(role="assistant", content=text, tool_calls=list(calls))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> ResultCache:
    return ResultCache(ttl_seconds=1800, max_items=200, clock=clock)


@pytest.fixture
def repository(tmp_path) -> NewsRepository:
    return NewsRepository(tmp_path / "topic-news.sqlite")


@pytest.fixture
def sample_outcome() -> SearchOutcome:
    return SearchOutcome(
        answer_text="Apple beat earnings expectations on strong services revenue.",
        sources=[
            SourceRef(
                title="Apple reports Q4 results",
                url="https://www.apple.com/newsroom/q4",
                date="2026-10-17",
                snippet="Apple posted record services revenue.",
            ),
            SourceRef(title="AAPL up after hours", url="https://finance.example.com/aapl"),
            SourceRef(title="No link here"),
        ],
    )


@pytest.fixture
def searcher(sample_outcome) -> FakeSearcher:
    return FakeSearcher(sample_outcome)


@pytest.fixture
def registry(searcher, cache, repository) -> ToolRegistry:
    return ToolRegistry(
        searcher=searcher,
        cache=cache,
        repository=repository,
        clock=lambda: datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def scripted_model():
    """Factory: ``scripted_model(reply, ...)`` → ScriptedModel."""
    def make(*replies: ChatMessage) -> ScriptedModel:
        return ScriptedModel(list(replies))
    return make


@pytest.fixture
def make_assistant():
    """Factory for assistant replies: ``make_assistant(text, *tool_calls)``."""
    return assistant
