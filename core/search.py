"""Web search backends for the ``search_web`` tool.

Each backend turns a free-text query into an answer paragraph plus an
ordered list of ``SourceRef`` objects.  Any upstream failure is raised as
``SearchError`` — never returned as an empty result — so the tool layer
can report it to the model.

Backends
────────
claude      — Claude with the built-in ``web_search`` server tool (default)
perplexity  — Perplexity ``sonar-pro`` chat completions over httpx
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import anthropic
import httpx
from pydantic import ValidationError

from core.models import SourceRef

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)


class SearchError(RuntimeError):
    """The search capability failed to produce a result."""


@dataclass
class SearchOutcome:
    """Answer text and sources for one query."""

    answer_text: str
    sources: list[SourceRef] = field(default_factory=list)


class WebSearcher(Protocol):
    """Interface for fetching fresh web information."""

    def search(self, query: str) -> SearchOutcome:
        """Search the web for *query*.

        Raises:
            SearchError: On any upstream failure.
        """
        ...


#: Fallback when the upstream answer is empty.
NO_ANSWER_TEXT = "No answer text returned."

_SEARCH_SYSTEM = (
    "Answer with the most recent web information for the user query, "
    "then list up to 5 source links."
)


# ── Claude web_search ──────────────────────────────────────────────────────────

#: Beta header name for the Claude web_search tool.
_WEB_SEARCH_BETA = "web-search-2025-03-05"
#: Tool definition passed to the Claude beta messages API.
_WEB_SEARCH_TOOL = {
    "type": "web_search_20250305",
    "name": "web_search",
}


class ClaudeWebSearcher:
    """Searches using the Claude ``web_search`` tool.

    Sources are captured from ``web_search_tool_result`` blocks as they
    stream in; Claude's written answer becomes the answer text.

    The Anthropic client is lazy-initialised to allow instantiation without
    a live API key (useful in tests when the client is mocked).
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: object = None  # Lazy-initialised anthropic.Anthropic instance

    @property
    def client(self) -> object:
        """Lazy-initialise and return the Anthropic SDK client."""
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                max_retries=5,
            )
        return self._client

    def search(self, query: str) -> SearchOutcome:
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty.")

        logger.info("Claude web search query=%r", query)

        sources: list[SourceRef] = []
        text_parts: list[str] = []
        tool = {**_WEB_SEARCH_TOOL, "max_uses": self.settings.max_web_searches}

        try:
            with self.client.beta.messages.stream(
                model=self.settings.search_model,
                max_tokens=1200,
                betas=[_WEB_SEARCH_BETA],
                tools=[tool],
                system=_SEARCH_SYSTEM,
                messages=[{"role": "user", "content": query}],
            ) as stream:
                for event in stream:
                    event_type = getattr(event, "type", None)

                    # ── Capture sources from web_search_result blocks ──────
                    if event_type == "content_block_start":
                        block = getattr(event, "content_block", None)
                        if block and getattr(block, "type", None) == "web_search_tool_result":
                            for item in getattr(block, "content", []) or []:
                                if getattr(item, "type", None) == "web_search_result":
                                    sources.append(SourceRef(
                                        title=getattr(item, "title", None) or None,
                                        url=getattr(item, "url", None) or None,
                                        date=getattr(item, "page_age", None) or None,
                                    ))

                    # ── Collect Claude's text response ─────────────────────
                    elif event_type == "content_block_delta":
                        delta = getattr(event, "delta", None)
                        if delta and getattr(delta, "type", None) == "text_delta":
                            text_parts.append(delta.text)
        except anthropic.APIError as exc:
            raise SearchError(f"Claude web search failed: {exc}") from exc

        logger.info("Claude web search complete: %d sources found", len(sources))
        return SearchOutcome(
            answer_text="".join(text_parts).strip() or NO_ANSWER_TEXT,
            sources=sources,
        )


# ── Perplexity ─────────────────────────────────────────────────────────────────

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
PERPLEXITY_MODEL = "sonar-pro"


class PerplexitySearcher:
    """Searches using Perplexity's ``sonar-pro`` model, restricted to the past day."""

    def __init__(self, settings: Settings) -> None:
        if not settings.perplexity_api_key:
            raise ValueError("Perplexity API key required. Set PERPLEXITY_API_KEY.")
        self.settings = settings

    def search(self, query: str) -> SearchOutcome:
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty.")

        logger.info("Perplexity search query=%r", query)
        try:
            resp = httpx.post(
                PERPLEXITY_URL,
                headers={"Authorization": f"Bearer {self.settings.perplexity_api_key}"},
                json={
                    "model": PERPLEXITY_MODEL,
                    "search_mode": "web",
                    "search_recency_filter": "day",
                    "temperature": 0.2,
                    "messages": [
                        {"role": "system", "content": _SEARCH_SYSTEM},
                        {"role": "user", "content": query},
                    ],
                },
                timeout=self.settings.http_timeout,
            )
        except httpx.HTTPError as exc:
            raise SearchError(f"Perplexity request failed: {exc}") from exc

        if not resp.is_success:
            raise SearchError(f"Perplexity request failed with status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise SearchError(f"Perplexity returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SearchError("Perplexity returned an unexpected payload")

        choices = data.get("choices") or []
        answer = ""
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                answer = message.get("content") or ""
        if not isinstance(answer, str):
            raise SearchError("Perplexity answer content is not text")

        raw_sources = data.get("search_results")
        try:
            sources = [
                SourceRef(
                    title=item.get("title"),
                    url=item.get("url"),
                    date=item.get("date"),
                    snippet=item.get("snippet"),
                )
                for item in (raw_sources if isinstance(raw_sources, list) else [])
                if isinstance(item, dict)
            ]
        except ValidationError as exc:
            raise SearchError(f"Perplexity returned malformed sources: {exc}") from exc

        logger.info("Perplexity search complete: %d sources found", len(sources))
        return SearchOutcome(answer_text=answer or NO_ANSWER_TEXT, sources=sources)


def create_searcher(settings: Settings) -> WebSearcher:
    """Return the backend selected by ``settings.search_backend``."""
    if settings.search_backend == "perplexity":
        return PerplexitySearcher(settings)
    if settings.search_backend == "claude":
        return ClaudeWebSearcher(settings)
    raise ValueError(f"Unknown search backend {settings.search_backend!r}")
