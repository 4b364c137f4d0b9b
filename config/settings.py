"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError if a required credential is missing
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

#: Search backends understood by ``core.search.create_searcher``.
SEARCH_BACKENDS: tuple[str, ...] = ("claude", "perplexity")

#: Thread store backends understood by ``core.threads.create_thread_store``.
THREAD_BACKENDS: tuple[str, ...] = ("sqlite", "memory")


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── API Keys ────────────────────────────────────────────────────────────
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )
    perplexity_api_key: str = field(
        default_factory=lambda: os.environ.get("PERPLEXITY_API_KEY", "")
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "3000"))
    )

    # ── Search ──────────────────────────────────────────────────────────────
    search_backend: str = field(
        default_factory=lambda: os.environ.get("SEARCH_BACKEND", "claude").strip().lower()
    )
    max_web_searches: int = field(
        default_factory=lambda: int(os.environ.get("MAX_WEB_SEARCHES", "3"))
    )
    http_timeout: float = field(
        default_factory=lambda: float(os.environ.get("HTTP_TIMEOUT", "60"))
    )

    # ── Search cache ────────────────────────────────────────────────────────
    cache_ttl_seconds: float = field(
        default_factory=lambda: float(os.environ.get("SEARCH_CACHE_TTL_SECONDS", "1800"))
    )
    cache_max_items: int = field(
        default_factory=lambda: int(os.environ.get("SEARCH_CACHE_MAX_ITEMS", "200"))
    )

    # ── Storage ─────────────────────────────────────────────────────────────
    news_db_path: str = field(
        default_factory=lambda: os.environ.get("NEWS_DB_PATH", "data/topic-news.sqlite")
    )
    threads_db_path: str = field(
        default_factory=lambda: os.environ.get("THREADS_DB_PATH", "data/threads.sqlite")
    )
    #: Saved summaries are cut to this many characters.
    summary_max_chars: int = 1500

    # ── Agent loop ──────────────────────────────────────────────────────────
    max_tool_rounds: int = field(
        default_factory=lambda: int(os.environ.get("MAX_TOOL_ROUNDS", "25"))
    )

    # ── AI Models ───────────────────────────────────────────────────────────
    #: Model that drives the tool-dispatch loop.
    agent_model: str = field(
        default_factory=lambda: os.environ.get("AGENT_MODEL", "claude-haiku-4-5")
    )
    #: Model used for the web_search pass of the ``claude`` search backend.
    search_model: str = field(
        default_factory=lambda: os.environ.get("SEARCH_MODEL", "claude-haiku-4-5")
    )

    def validate(self) -> None:
        """Raise ``ValueError`` if any required setting is missing or invalid."""
        if not self.anthropic_api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "Copy .env.example to .env and add your key."
            )
        if self.search_backend not in SEARCH_BACKENDS:
            raise ValueError(
                f"Unknown SEARCH_BACKEND {self.search_backend!r}; "
                f"expected one of {', '.join(SEARCH_BACKENDS)}."
            )
        if self.search_backend == "perplexity" and not self.perplexity_api_key:
            raise ValueError(
                "PERPLEXITY_API_KEY environment variable is not set "
                "but SEARCH_BACKEND=perplexity."
            )
