"""
Durable conversation state, keyed by a caller-chosen thread id.

The dispatch loop loads a thread's history at the start of a turn and
saves it back at consistent checkpoints, so a conversation can be resumed
across turns and process restarts.

Backends
────────
sqlite  — one row per thread; ``messages`` holds the ChatMessage list as JSON
memory  — process-local dict (lost on exit)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter

from core.models import ChatMessage

logger = logging.getLogger(__name__)

_MESSAGES = TypeAdapter(list[ChatMessage])


class ThreadStore(Protocol):
    """Load/save a conversation by thread id."""

    def load(self, thread_id: str) -> list[ChatMessage]:
        """Return the stored messages, or an empty list for a new thread."""
        ...

    def save(self, thread_id: str, messages: list[ChatMessage]) -> None:
        """Replace the stored messages for *thread_id*."""
        ...


class MemoryThreadStore:
    """In-process thread store; every load returns an independent copy."""

    def __init__(self) -> None:
        self._threads: dict[str, list[ChatMessage]] = {}
        self._lock = threading.Lock()

    def load(self, thread_id: str) -> list[ChatMessage]:
        with self._lock:
            stored = self._threads.get(thread_id, [])
            return [m.model_copy(deep=True) for m in stored]

    def save(self, thread_id: str, messages: list[ChatMessage]) -> None:
        with self._lock:
            self._threads[thread_id] = [m.model_copy(deep=True) for m in messages]


class SqliteThreadStore:
    """SQLite-backed thread store.

    Schema
    ──────
    table: threads
      thread_id  TEXT PRIMARY KEY
      messages   TEXT NOT NULL  (list[ChatMessage] serialised as JSON)
      updated_at TEXT NOT NULL  (ISO-8601 UTC)
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.init_db()

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create the threads table if it doesn't exist yet."""
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS threads (
                    thread_id  TEXT PRIMARY KEY,
                    messages   TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
        logger.info("Thread DB initialised at %s", self.db_path)

    def load(self, thread_id: str) -> list[ChatMessage]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT messages FROM threads WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()
        if row is None:
            return []
        return _MESSAGES.validate_json(row["messages"])

    def save(self, thread_id: str, messages: list[ChatMessage]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        payload = _MESSAGES.dump_json(messages).decode()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO threads (thread_id, messages, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(thread_id) DO UPDATE SET "
                "messages = excluded.messages, updated_at = excluded.updated_at",
                (thread_id, payload, now),
            )
        logger.debug("Saved thread %s (%d messages)", thread_id, len(messages))


def create_thread_store(backend: str = "sqlite", sqlite_path: str | Path | None = None) -> ThreadStore:
    """Return a thread store for *backend* (``"sqlite"`` or ``"memory"``)."""
    if backend == "memory":
        return MemoryThreadStore()
    if backend == "sqlite":
        if sqlite_path is None:
            raise ValueError("sqlite_path is required for the sqlite thread backend")
        return SqliteThreadStore(sqlite_path)
    raise ValueError(f"Unknown thread backend {backend!r}")
