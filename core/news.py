"""
SQLite-backed store of confirmed news rows.

Schema
──────
table: topic_news
  id         INTEGER PRIMARY KEY AUTOINCREMENT
  topic      TEXT NOT NULL
  source     TEXT NOT NULL  (hostname of url)
  title      TEXT NOT NULL
  url        TEXT NOT NULL
  summary    TEXT NOT NULL
  created_at TEXT NOT NULL  (ISO-8601 UTC, assigned by SQLite on insert)

Rows are append-only.  ``AUTOINCREMENT`` keeps ids from ever being reused.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from core.models import NewsInsert, NewsRow

logger = logging.getLogger(__name__)

TABLE_NAME = "topic_news"

_COLUMNS = "id, topic, source, title, url, summary, created_at"


class NewsRepository:
    """Durable, queryable store for rows confirmed through ``save_to_db``.

    Every operation opens its own connection, so one repository can be
    shared between Flask worker threads; SQLite's file locking serialises
    writers.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self.init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._db_path))
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
        """Create the topic_news table if it doesn't exist yet."""
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    topic      TEXT NOT NULL,
                    source     TEXT NOT NULL,
                    title      TEXT NOT NULL,
                    url        TEXT NOT NULL,
                    summary    TEXT NOT NULL,
                    created_at TEXT NOT NULL
                        DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_topic "
                f"ON {TABLE_NAME} (topic, created_at)"
            )
        logger.info("News DB initialised at %s", self._db_path)

    def insert_many(self, rows: list[NewsInsert]) -> list[int]:
        """Insert *rows* in order and return their new ids.

        Each row is committed on its own.  If an insert fails, the rows
        before it stay committed and the ``sqlite3.Error`` propagates.

        Args:
            rows: Column values for each new row.

        Returns:
            The assigned ids, in insertion order.
        """
        inserted: list[int] = []
        for row in rows:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"INSERT INTO {TABLE_NAME} (topic, source, title, url, summary) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (row.topic, row.source, row.title, row.url, row.summary),
                )
                inserted.append(cursor.lastrowid)

        if inserted:
            logger.info(
                "Saved %d news row(s) ids=%s topic=%r",
                len(inserted), inserted, rows[0].topic,
            )
        return inserted

    def list_by_topic(self, topic: str, limit: int = 10) -> list[NewsRow]:
        """Return up to *limit* rows whose topic equals *topic*, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE topic = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (topic, limit),
            ).fetchall()
        return [_to_row(r) for r in rows]

    def list_all(self, limit: int = 100) -> list[NewsRow]:
        """Return up to *limit* rows across all topics, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM {TABLE_NAME} "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_to_row(r) for r in rows]

    def get_by_id(self, row_id: int) -> NewsRow | None:
        """Fetch a single row by its primary key, or None if not found."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE id = ? LIMIT 1",
                (row_id,),
            ).fetchone()

        if row is None:
            return None
        return _to_row(row)


def _to_row(row: sqlite3.Row) -> NewsRow:
    return NewsRow(**dict(row))
