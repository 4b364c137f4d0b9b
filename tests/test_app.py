"""
Tests for web/app.py — HTTP surface over the agent and tool registry.

The agent is wired with a scripted model and a fake searcher, so no
network calls are made.

Run with: pytest tests/test_app.py
"""

import json
import sqlite3
from unittest.mock import MagicMock

import pytest

from config.settings import Settings
from core.agent import ToolDispatchLoop
from core.models import NewsInsert, ToolCall
from core.news import NewsRepository
from core.threads import MemoryThreadStore
from core.tools import ToolRegistry
from web.app import create_app


def parse_sse(body: str) -> list:
    events = []
    for line in body.splitlines():
        if line.startswith("data: {"):
            events.append(json.loads(line[len("data: "):]))
    return events


@pytest.fixture
def threads() -> MemoryThreadStore:
    return MemoryThreadStore()


@pytest.fixture
def model(scripted_model):
    return scripted_model()


@pytest.fixture
def client(model, registry, threads):
    agent = ToolDispatchLoop(model, registry, threads)
    app = create_app(Settings(anthropic_api_key="test-key"), agent=agent)
    app.config["TESTING"] = True
    return app.test_client()


def seed(repository, *topics):
    return repository.insert_many([
        NewsInsert(topic=t, source="example.com", title=f"{t} headline",
                   url=f"https://example.com/{t}", summary="s")
        for t in topics
    ])


class TestTools:
    def test_lists_declarations(self, client):
        resp = client.get("/api/tools")
        assert resp.status_code == 200
        assert [t["name"] for t in resp.get_json()] == [
            "get_time", "search_web", "save_to_db",
            "get_from_db", "get_all_from_db", "get_by_id",
        ]

    def test_call_tool(self, client):
        resp = client.post("/api/tools/get_time", json={})
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["isError"] is False
        assert data["content"][0]["text"] == "2026-10-18T12:00:00.000Z"

    def test_invalid_arguments_are_tool_errors(self, client):
        resp = client.post("/api/tools/get_by_id", json={"id": "abc"})
        assert resp.status_code == 200
        assert resp.get_json()["isError"] is True

    def test_unknown_tool_is_404(self, client):
        resp = client.post("/api/tools/delete_everything", json={})
        assert resp.status_code == 404

    def test_storage_failure_is_500(self, searcher, cache, model):
        repository = MagicMock(spec=NewsRepository)
        repository.list_all.side_effect = sqlite3.OperationalError("database is locked")
        registry = ToolRegistry(searcher=searcher, cache=cache, repository=repository)
        app = create_app(Settings(anthropic_api_key="k"), agent=ToolDispatchLoop(model, registry))

        resp = app.test_client().post("/api/tools/get_all_from_db", json={})

        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Internal server error"}


class TestNews:
    def test_list_all(self, client, repository):
        seed(repository, "AAPL", "NVDA")
        rows = client.get("/api/news").get_json()
        assert [r["topic"] for r in rows] == ["NVDA", "AAPL"]

    def test_filter_by_topic(self, client, repository):
        seed(repository, "AAPL", "NVDA", "AAPL")
        rows = client.get("/api/news?topic=AAPL&limit=1").get_json()
        assert len(rows) == 1
        assert rows[0]["topic"] == "AAPL"

    def test_get_row(self, client, repository):
        (row_id,) = seed(repository, "AAPL")
        resp = client.get(f"/api/news/{row_id}")
        assert resp.status_code == 200
        assert resp.get_json()["title"] == "AAPL headline"

    def test_missing_row_is_404(self, client):
        resp = client.get("/api/news/424242")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Not found"}


class TestChat:
    def test_requires_message(self, client):
        resp = client.post("/api/chat", json={"message": "  "})
        assert resp.status_code == 400

    def test_streams_turn(self, client, model, make_assistant):
        model.replies = [
            make_assistant("", ToolCall(id="c1", name="search_web", arguments={"query": "AAPL"})),
            make_assistant("Apple beat estimates."),
        ]

        resp = client.post("/api/chat", json={"message": "AAPL?", "thread_id": "t-1"})
        body = resp.get_data(as_text=True)
        events = parse_sse(body)

        assert resp.mimetype == "text/event-stream"
        assert events[0] == {"type": "thread", "thread_id": "t-1"}
        types = [e["type"] for e in events]
        assert types.index("tool_call") < types.index("tool_result") < types.index("final")
        assert "".join(e["text"] for e in events if e["type"] == "token") == "Apple beat estimates."
        assert events[-1] == {"type": "final", "text": "Apple beat estimates."}
        assert body.rstrip().endswith("data: [DONE]")

    def test_generates_thread_id(self, client, model, make_assistant):
        model.replies = [make_assistant("hi")]
        events = parse_sse(client.post("/api/chat", json={"message": "hello"}).get_data(as_text=True))
        assert events[0]["thread_id"].startswith("session-")

    def test_generated_thread_ids_are_distinct(self, client, model, make_assistant, threads):
        model.replies = [make_assistant("one"), make_assistant("two")]
        first = parse_sse(client.post("/api/chat", json={"message": "a"}).get_data(as_text=True))
        second = parse_sse(client.post("/api/chat", json={"message": "b"}).get_data(as_text=True))

        ids = {first[0]["thread_id"], second[0]["thread_id"]}
        assert len(ids) == 2
        for thread_id in ids:
            assert len(threads.load(thread_id)) == 2

    def test_thread_is_resumed(self, client, model, make_assistant, threads):
        model.replies = [make_assistant("first"), make_assistant("second")]
        client.post("/api/chat", json={"message": "one", "thread_id": "t"}).get_data()
        client.post("/api/chat", json={"message": "two", "thread_id": "t"}).get_data()

        assert [m.content for m in threads.load("t")] == ["one", "first", "two", "second"]

    def test_failure_becomes_error_event(self, searcher, cache, scripted_model, make_assistant):
        repository = MagicMock(spec=NewsRepository)
        repository.list_all.side_effect = sqlite3.OperationalError("disk I/O error")
        registry = ToolRegistry(searcher=searcher, cache=cache, repository=repository)
        model = scripted_model(make_assistant("", ToolCall(id="r", name="get_all_from_db")))
        app = create_app(Settings(anthropic_api_key="k"), agent=ToolDispatchLoop(model, registry))

        body = app.test_client().post("/api/chat", json={"message": "list"}).get_data(as_text=True)
        events = parse_sse(body)

        assert events[-1] == {"type": "error", "message": "disk I/O error"}
        assert body.rstrip().endswith("data: [DONE]")
