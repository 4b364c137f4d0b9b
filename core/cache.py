"""In-memory cache of search results that have not been saved yet.

``search_web`` puts every result here under a fresh handle; ``save_to_db``
reads it back by handle.  Entries are bounded two ways, applied in this
order on every cleanup:

1. **Age** — anything older than ``ttl_seconds`` (measured from creation,
   not last access) is dropped.
2. **Size** — if more than ``max_items`` survive, the oldest-created are
   dropped until the cache is back at capacity.

``get`` also checks age, so a stale entry is never returned even if no
cleanup has run since it expired.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable

from core.models import CachedSearchResult, SourceRef

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ITEMS = 200


class ResultCache:
    """Handle-addressed store of ``CachedSearchResult`` with TTL and capacity.

    Safe to share between threads; every access takes the internal lock.

    Args:
        ttl_seconds: Maximum entry age before it is treated as absent.
        max_items: Capacity enforced after the age pass.
        clock: Returns the current time in seconds (``time.time`` by default).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_items: int = DEFAULT_MAX_ITEMS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self._clock = clock
        self._entries: dict[str, CachedSearchResult] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._entries

    def put(
        self,
        query: str,
        answer_text: str,
        sources: Iterable[SourceRef],
    ) -> str:
        """Store a search result and return its newly issued handle."""
        handle = str(uuid.uuid4())
        entry = CachedSearchResult(
            handle=handle,
            query=query,
            answer_text=answer_text,
            sources=tuple(sources),
            created_at=self._clock(),
        )
        with self._lock:
            self._entries[handle] = entry
        logger.info("Cached search result %s for query=%r", handle, query)
        self.cleanup()
        return handle

    def get(self, handle: str) -> CachedSearchResult | None:
        """Return the entry for *handle*, or None if unknown or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(handle)
            if entry is None:
                return None
            if now - entry.created_at > self.ttl_seconds:
                del self._entries[handle]
                logger.info("Cached search result %s expired", handle)
                return None
            return entry

    def cleanup(self, now: float | None = None) -> int:
        """Drop expired entries, then trim to capacity oldest-first.

        Returns:
            Number of entries removed.
        """
        if now is None:
            now = self._clock()
        with self._lock:
            expired = [
                handle for handle, entry in self._entries.items()
                if now - entry.created_at > self.ttl_seconds
            ]
            for handle in expired:
                del self._entries[handle]

            overflow = len(self._entries) - self.max_items
            evicted: list[str] = []
            if overflow > 0:
                # sorted() is stable, so equal timestamps go in insertion order
                by_age = sorted(self._entries.values(), key=lambda e: e.created_at)
                evicted = [entry.handle for entry in by_age[:overflow]]
                for handle in evicted:
                    del self._entries[handle]

        removed = len(expired) + len(evicted)
        if removed:
            logger.info(
                "Search cache cleanup: %d expired, %d evicted over capacity",
                len(expired), len(evicted),
            )
        return removed
