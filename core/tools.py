"""Tool registry exposed to the model.

Six tools, each a request/response unit whose only shared state is the
``ResultCache`` and the ``NewsRepository``:

get_time         — current UTC instant (ISO-8601)
search_web       — fetch fresh web data, cache it, return a result_id; never saves
save_to_db       — persist a cached search result by result_id
get_from_db      — saved rows for one topic
get_all_from_db  — all saved rows
get_by_id        — one saved row by primary key

Argument models double as the JSON input schemas declared to the model.
Bad arguments, unknown tools, search failures and cache misses come back
as ``ToolResult`` text so the dispatch loop can carry on; storage errors
(``sqlite3.Error``) propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError

from core.cache import ResultCache
from core.models import NewsInsert, NewsRow, SourceRef
from core.news import TABLE_NAME, NewsRepository
from core.search import SearchError, WebSearcher

logger = logging.getLogger(__name__)

#: Sources rendered by search_web and rows derived by save_to_db.
MAX_SOURCES = 5
DEFAULT_SUMMARY_MAX_CHARS = 1500


@dataclass
class ToolResult:
    """Text output of one tool invocation."""

    text: str
    is_error: bool = False

    def to_content(self) -> dict[str, Any]:
        """Render as a text-block tool response."""
        return {
            "content": [{"type": "text", "text": self.text}],
            "isError": self.is_error,
        }


# ── Argument models ────────────────────────────────────────────────────────────


class NoArgs(BaseModel):
    pass


class SearchWebArgs(BaseModel):
    query: str = Field(
        min_length=1,
        description="Any question/topic needing latest internet data",
    )


class SaveToDbArgs(BaseModel):
    result_id: str = Field(min_length=1, description="result_id returned by search_web")
    topic: Optional[str] = Field(
        default=None,
        description="Optional SQL topic label. Defaults to original query.",
    )


class GetFromDbArgs(BaseModel):
    topic: str = Field(description="Topic value stored in the table")
    limit: int = Field(default=10, ge=1, le=50)


class GetAllFromDbArgs(BaseModel):
    limit: int = Field(default=100, ge=1, le=500)


class GetByIdArgs(BaseModel):
    id: int = Field(gt=0)


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], ToolResult]

    def declaration(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.args_model.model_json_schema(),
        }


# ── Rendering ──────────────────────────────────────────────────────────────────


def utc_now_iso(now: datetime | None = None) -> str:
    """Return *now* (default: current time) as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def source_from_url(url: str) -> str | None:
    """Return the hostname of *url*, or None if it has none."""
    try:
        return urlparse(url).hostname or None
    except ValueError:
        return None


def render_sources(sources: Sequence[SourceRef]) -> str:
    lines = []
    for i, src in enumerate(sources[:MAX_SOURCES], start=1):
        line = f"{i}. {src.title or 'source'}"
        if src.date:
            line += f" ({src.date})"
        if src.url:
            line += f"\n   {src.url}"
        lines.append(line)
    return "\n".join(lines)


def render_rows(rows: Sequence[NewsRow]) -> str:
    return "\n\n".join(
        f"{i}. [{row.id}] {row.title}\n"
        f"   topic: {row.topic}\n"
        f"   source: {row.source}\n"
        f"   url: {row.url}\n"
        f"   created_at: {row.created_at}\n"
        f"   summary: {row.summary}"
        for i, row in enumerate(rows, start=1)
    )


def rows_from_sources(
    topic: str,
    answer_text: str,
    sources: Sequence[SourceRef],
    summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
) -> list[NewsInsert]:
    """Derive up to ``MAX_SOURCES`` rows from cached sources.

    Sources without a URL that has a hostname are skipped.  The summary
    falls back to the answer text when a source has no snippet.
    """
    rows: list[NewsInsert] = []
    for src in sources[:MAX_SOURCES]:
        url = (src.url or "").strip()
        if not url:
            continue
        host = source_from_url(url)
        if host is None:
            logger.info("Skipping source with unparseable url=%r", url)
            continue
        summary = (
            (src.snippet or "").strip()
            or answer_text.strip()
            or "No summary available."
        )
        rows.append(NewsInsert(
            topic=topic,
            source=host,
            title=(src.title or "").strip() or "Untitled",
            url=url,
            summary=summary[:summary_max_chars],
        ))
    return rows


# ── Registry ───────────────────────────────────────────────────────────────────


class ToolRegistry:
    """Fixed set of named tools bound to a cache, repository and searcher.

    Args:
        searcher: Backend for ``search_web``.
        cache: Holds search results between ``search_web`` and ``save_to_db``.
        repository: Durable store for saved rows.
        summary_max_chars: Bound applied to saved summaries.
        clock: Returns the current aware datetime for ``get_time``.
    """

    def __init__(
        self,
        searcher: WebSearcher,
        cache: ResultCache,
        repository: NewsRepository,
        summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.searcher = searcher
        self.cache = cache
        self.repository = repository
        self.summary_max_chars = summary_max_chars
        self._clock = clock

        specs = [
            ToolSpec(
                "get_time",
                "Returns the current UTC date time as ISO string.",
                NoArgs,
                self._get_time,
            ),
            ToolSpec(
                "search_web",
                "Use this for any query that needs fresh internet data. "
                "This tool does not write to SQL.",
                SearchWebArgs,
                self._search_web,
            ),
            ToolSpec(
                "save_to_db",
                f"Saves a prior search_web result to {TABLE_NAME} by result_id. "
                "Use only after user asks to save.",
                SaveToDbArgs,
                self._save_to_db,
            ),
            ToolSpec(
                "get_from_db",
                f"Reads rows from the {TABLE_NAME} table by topic.",
                GetFromDbArgs,
                self._get_from_db,
            ),
            ToolSpec(
                "get_all_from_db",
                f"Reads all rows from {TABLE_NAME} in descending created_at order.",
                GetAllFromDbArgs,
                self._get_all_from_db,
            ),
            ToolSpec(
                "get_by_id",
                f"Fetches exactly one row from {TABLE_NAME} by primary key id.",
                GetByIdArgs,
                self._get_by_id,
            ),
        ]
        self._specs: dict[str, ToolSpec] = {spec.name: spec for spec in specs}

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def declarations(self) -> list[dict[str, Any]]:
        """Tool schemas in the shape the model API expects."""
        return [spec.declaration() for spec in self._specs.values()]

    def call(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Validate *arguments* and run tool *name*.

        Raises:
            sqlite3.Error: If the repository fails.
        """
        logger.info("Tool %s called with: %r", name, arguments or {})
        spec = self._specs.get(name)
        if spec is None:
            return ToolResult(
                f"Unknown tool '{name}'. Available tools: {', '.join(self._specs)}.",
                is_error=True,
            )
        try:
            args = spec.args_model.model_validate(arguments or {})
        except ValidationError as exc:
            logger.warning("Rejected arguments for %s: %s", name, exc)
            return ToolResult(f"Invalid arguments for {name}: {exc}", is_error=True)
        return spec.handler(args)

    # ── Handlers ───────────────────────────────────────────────────────────

    def _get_time(self, args: NoArgs) -> ToolResult:
        return ToolResult(utc_now_iso(self._clock()))

    def _search_web(self, args: SearchWebArgs) -> ToolResult:
        try:
            outcome = self.searcher.search(args.query)
        except (SearchError, ValueError) as exc:
            logger.warning("search_web failed for query=%r: %s", args.query, exc)
            return ToolResult(f"Search failed: {exc}", is_error=True)

        result_id = self.cache.put(args.query, outcome.answer_text, outcome.sources)

        parts = [f"result_id: {result_id}", outcome.answer_text]
        top_sources = render_sources(outcome.sources)
        if top_sources:
            parts.append(f"Sources:\n{top_sources}")
        parts.append(
            "Not saved to SQL. If the user wants this stored, "
            "call save_to_db with this result_id."
        )
        return ToolResult("\n\n".join(parts))

    def _save_to_db(self, args: SaveToDbArgs) -> ToolResult:
        self.cache.cleanup()
        cached = self.cache.get(args.result_id)
        if cached is None:
            logger.info("save_to_db cache miss for result_id=%s", args.result_id)
            return ToolResult(
                f"No cached search found for result_id '{args.result_id}'. "
                "Run search_web again."
            )

        topic = (args.topic or "").strip() or cached.query
        rows = rows_from_sources(
            topic, cached.answer_text, cached.sources, self.summary_max_chars
        )
        inserted_ids = self.repository.insert_many(rows)
        saved = [
            row for row in (self.repository.get_by_id(i) for i in inserted_ids)
            if row is not None
        ]

        text = (
            f"Saved {len(inserted_ids)} row(s) to SQLite table '{TABLE_NAME}' "
            f"at {self.repository.db_path}.\n"
            f"ids: {', '.join(str(i) for i in inserted_ids) or '(none)'}"
        )
        if saved:
            text += f"\n\nSaved rows:\n{render_rows(saved)}"
        return ToolResult(text)

    def _get_from_db(self, args: GetFromDbArgs) -> ToolResult:
        rows = self.repository.list_by_topic(args.topic, args.limit)
        if not rows:
            return ToolResult(f"No saved rows found for topic '{args.topic}'.")
        return ToolResult(render_rows(rows))

    def _get_all_from_db(self, args: GetAllFromDbArgs) -> ToolResult:
        rows = self.repository.list_all(args.limit)
        if not rows:
            return ToolResult(f"No saved rows found in {TABLE_NAME}.")
        return ToolResult(render_rows(rows))

    def _get_by_id(self, args: GetByIdArgs) -> ToolResult:
        row = self.repository.get_by_id(args.id)
        if row is None:
            return ToolResult(f"No row found with id={args.id}.")
        return ToolResult(render_rows([row]))
