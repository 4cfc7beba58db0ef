"""Tests for the in-memory TTL/LRU cache."""

from __future__ import annotations

from src.services.cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ── Core operations ──────────────────────────────────────────────────


class TestCacheBasics:
    def test_put_and_get(self):
        cache = TTLCache()
        cache.put("key1", {"name": "Alice"})
        assert cache.get("key1") == {"name": "Alice"}

    def test_get_returns_none_for_missing_key(self):
        cache = TTLCache()
        assert cache.get("nonexistent") is None

    def test_put_overwrites_existing_key(self):
        cache = TTLCache()
        cache.put("key1", "old")
        cache.put("key1", "new")
        assert cache.get("key1") == "new"
        assert cache.entry_count == 1

    def test_invalidate_removes_key(self):
        cache = TTLCache()
        cache.put("key1", "value")
        assert cache.invalidate("key1") is True
        assert cache.get("key1") is None

    def test_invalidate_returns_false_for_missing_key(self):
        cache = TTLCache()
        assert cache.invalidate("nonexistent") is False

    def test_clear_removes_all_entries(self):
        cache = TTLCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert cache.entry_count == 0
        assert cache.current_bytes == 0

    def test_has_key(self):
        cache = TTLCache()
        cache.put("key1", "value")
        assert cache.has("key1") is True
        assert cache.has("key2") is False


# ── LRU eviction ────────────────────────────────────────────────────


class TestLRUEviction:
    def test_evicts_lru_when_over_limit(self):
        # json.dumps("aaa") → '"aaa"' → 5 bytes.  Limit of 10 fits 2 entries.
        cache = TTLCache(max_bytes=10)
        cache.put("first", "aaa")
        cache.put("second", "bbb")
        cache.put("third", "ccc")
        assert cache.get("first") is None
        assert cache.get("third") == "ccc"

    def test_access_promotes_to_mru(self):
        cache = TTLCache(max_bytes=10)
        cache.put("a", "111")
        cache.put("b", "222")
        cache.get("a")
        cache.put("c", "333")
        assert cache.get("a") == "111"
        assert cache.get("b") is None

    def test_skips_entry_larger_than_max(self):
        cache = TTLCache(max_bytes=10)
        cache.put("huge", "x" * 100)
        assert cache.get("huge") is None
        assert cache.entry_count == 0

    def test_oversized_overwrite_drops_old_value(self):
        cache = TTLCache(max_bytes=10)
        cache.put("k", "aaa")
        cache.put("k", "x" * 100)
        assert cache.get("k") is None
        assert cache.current_bytes == 0


# ── Expiry ──────────────────────────────────────────────────────────


class TestExpiry:
    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=30, clock=clock)
        cache.put("k", "v")
        clock.now += 29
        assert cache.get("k") == "v"
        clock.now += 1
        assert cache.get("k") is None
        assert cache.entry_count == 0

    def test_per_entry_ttl_overrides_default(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=30, clock=clock)
        cache.put("short", "v", ttl_seconds=5)
        cache.put("long", "v")
        clock.now += 10
        assert cache.keys() == ["long"]
        assert cache.has("short") is False

    def test_no_ttl_never_expires(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.put("k", "v")
        clock.now += 10**9
        assert cache.get("k") == "v"

    def test_expired_entries_evicted_before_live_ones(self):
        clock = FakeClock()
        cache = TTLCache(max_bytes=10, clock=clock)
        cache.put("live", "aaa")
        cache.put("stale", "bbb", ttl_seconds=1)
        clock.now += 2
        cache.put("new", "ccc")
        assert cache.get("live") == "aaa"
        assert cache.get("new") == "ccc"


# ── Size tracking ───────────────────────────────────────────────────


class TestSizeTracking:
    def test_current_bytes_tracks_inserts(self):
        cache = TTLCache()
        assert cache.current_bytes == 0
        cache.put("k", {"data": "hello"})
        assert cache.current_bytes > 0

    def test_current_bytes_decreases_on_invalidate(self):
        cache = TTLCache()
        cache.put("k", "val")
        cache.invalidate("k")
        assert cache.current_bytes == 0

    def test_overwrite_adjusts_size(self):
        cache = TTLCache()
        cache.put("k", "short")
        size_short = cache.current_bytes
        cache.put("k", "a much longer value string")
        assert cache.current_bytes > size_short
        assert cache.entry_count == 1


class TestDefaultLimit:
    def test_default_max_is_20mb(self):
        cache = TTLCache()
        assert cache._max_bytes == 20 * 1024 * 1024
