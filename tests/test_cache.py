"""Tests for core/cache.py — TTL and capacity bounds of the search result cache."""

from __future__ import annotations

import threading

from core.cache import ResultCache
from core.models import SourceRef


def make_cache(clock, ttl=1800, max_items=200) -> ResultCache:
    return ResultCache(ttl_seconds=ttl, max_items=max_items, clock=clock)


class TestPutAndGet:
    def test_unknown_handle_is_absent(self, cache):
        assert cache.get("never-issued") is None

    def test_get_returns_what_was_put(self, cache):
        sources = [SourceRef(title="A", url="https://a.example.com")]
        handle = cache.put("AAPL earnings", "Apple beat estimates.", sources)

        entry = cache.get(handle)

        assert entry is not None
        assert entry.handle == handle
        assert entry.query == "AAPL earnings"
        assert entry.answer_text == "Apple beat estimates."
        assert list(entry.sources) == sources

    def test_handles_are_unique(self, cache):
        handles = {cache.put(f"q{i}", "a", []) for i in range(50)}
        assert len(handles) == 50

    def test_created_at_comes_from_clock(self, cache, clock):
        handle = cache.put("q", "a", [])
        assert cache.get(handle).created_at == clock.now

    def test_contains_and_len(self, cache):
        handle = cache.put("q", "a", [])
        assert handle in cache
        assert "other" not in cache
        assert len(cache) == 1


class TestExpiry:
    def test_cleanup_removes_expired_entries(self, clock):
        cache = make_cache(clock, ttl=60)
        handle = cache.put("q", "a", [])

        clock.advance(61)
        removed = cache.cleanup()

        assert removed == 1
        assert handle not in cache
        assert cache.get(handle) is None

    def test_cleanup_accepts_explicit_now(self, clock):
        cache = make_cache(clock, ttl=60)
        handle = cache.put("q", "a", [])

        cache.cleanup(now=clock.now + 120)

        assert cache.get(handle) is None

    def test_entry_at_exactly_ttl_is_still_valid(self, clock):
        cache = make_cache(clock, ttl=60)
        handle = cache.put("q", "a", [])

        clock.advance(60)

        assert cache.get(handle) is not None

    def test_get_drops_stale_entry_without_cleanup(self, clock):
        cache = make_cache(clock, ttl=60)
        handle = cache.put("q", "a", [])
        clock.advance(61)

        # Still physically present until read
        assert handle in cache
        assert cache.get(handle) is None
        assert handle not in cache

    def test_expiry_is_by_creation_not_access(self, clock):
        cache = make_cache(clock, ttl=60)
        handle = cache.put("q", "a", [])

        for _ in range(5):
            clock.advance(20)
            cache.get(handle)

        assert cache.get(handle) is None


class TestCapacity:
    def test_size_never_exceeds_capacity_after_put(self, clock):
        cache = make_cache(clock, max_items=3)
        handles = []
        for i in range(5):
            handles.append(cache.put(f"q{i}", "a", []))
            clock.advance(1)

        assert len(cache) == 3
        assert cache.get(handles[0]) is None
        assert cache.get(handles[1]) is None
        assert all(cache.get(h) is not None for h in handles[2:])

    def test_age_pass_runs_before_trimming(self, clock):
        cache = make_cache(clock, ttl=35, max_items=10)
        clock.now = 0
        a = cache.put("a", "a", [])
        clock.now = 10
        b = cache.put("b", "b", [])
        clock.now = 20
        c = cache.put("c", "c", [])
        clock.now = 30
        d = cache.put("d", "d", [])

        cache.max_items = 2
        removed = cache.cleanup(now=40)

        # a expired (age 40); b is the oldest survivor and is trimmed
        assert removed == 2
        assert len(cache) == 2
        assert a not in cache and b not in cache
        assert c in cache and d in cache

    def test_ties_are_trimmed_in_insertion_order(self, clock):
        cache = make_cache(clock, max_items=2)
        x = cache.put("x", "x", [])
        y = cache.put("y", "y", [])
        z = cache.put("z", "z", [])

        assert x not in cache
        assert y in cache and z in cache

    def test_cleanup_on_small_cache_removes_nothing(self, cache):
        cache.put("q", "a", [])
        assert cache.cleanup() == 0


class TestConcurrency:
    def test_parallel_sessions_keep_cache_bounded(self):
        cache = ResultCache(ttl_seconds=1800, max_items=5)
        errors: list[BaseException] = []
        start = threading.Barrier(8)

        def worker(n: int) -> None:
            try:
                start.wait()
                for i in range(200):
                    handle = cache.put(f"q{n}-{i}", "a", [])
                    cache.get(handle)
                    if i % 10 == 0:
                        cache.cleanup()
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        cache.cleanup()
        assert errors == []
        assert len(cache) <= 5
