"""
TTL Cache Tests.

============================================================
PURPOSE
============================================================
Expiry boundaries, stale-while-revalidate and FIFO eviction of TTLCache.

============================================================
"""

import pytest

from data_acquisition.cache import TTLCache
from data_acquisition.models import CacheStatus


# ============================================================
# EXPIRY
# ============================================================

class TestTTLCacheExpiry:
    """Tests for TTL boundaries."""

    def test_miss_on_empty(self, fake_clock):
        cache = TTLCache(ttl_seconds=30, clock=fake_clock)

        lookup = cache.get("price:BTC")

        assert lookup.status is CacheStatus.MISS
        assert lookup.value is None
        assert not lookup.hit

    def test_fresh_just_before_ttl(self, fake_clock):
        cache = TTLCache(ttl_seconds=30, clock=fake_clock)
        cache.set("price:BTC", 42)

        fake_clock.advance(29.999)
        lookup = cache.get("price:BTC")

        assert lookup.status is CacheStatus.FRESH
        assert lookup.value == 42
        assert not lookup.should_revalidate

    def test_stale_just_after_ttl_with_swr(self, fake_clock):
        cache = TTLCache(ttl_seconds=30, stale_while_revalidate=True, clock=fake_clock)
        cache.set("price:BTC", 42)

        fake_clock.advance(30.001)
        lookup = cache.get("price:BTC")

        assert lookup.status is CacheStatus.STALE
        assert lookup.value == 42
        assert lookup.should_revalidate

    def test_miss_just_after_ttl_without_swr(self, fake_clock):
        cache = TTLCache(ttl_seconds=30, clock=fake_clock)
        cache.set("price:BTC", 42)

        fake_clock.advance(30.001)

        assert cache.get("price:BTC").status is CacheStatus.MISS
        assert len(cache) == 0

    def test_max_stale_bounds_stale_serving(self, fake_clock):
        cache = TTLCache(
            ttl_seconds=10,
            stale_while_revalidate=True,
            max_stale_seconds=5,
            clock=fake_clock,
        )
        cache.set("k", "v")

        fake_clock.advance(14)
        assert cache.get("k").status is CacheStatus.STALE

        fake_clock.advance(2)
        assert cache.get("k").status is CacheStatus.MISS

    def test_set_refreshes_entry(self, fake_clock):
        cache = TTLCache(ttl_seconds=10, stale_while_revalidate=True, clock=fake_clock)
        cache.set("k", 1)
        fake_clock.advance(11)

        cache.set("k", 2)
        lookup = cache.get("k")

        assert lookup.is_fresh
        assert lookup.value == 2

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=-1)

    def test_purge_expired(self, fake_clock):
        cache = TTLCache(ttl_seconds=10, clock=fake_clock)
        cache.set("old", 1)
        fake_clock.advance(5)
        cache.set("new", 2)
        fake_clock.advance(6)

        assert cache.purge_expired() == 1
        assert cache.peek("old") is None
        assert cache.peek("new") == 2


# ============================================================
# EVICTION
# ============================================================

class TestTTLCacheEviction:
    """Tests for FIFO eviction."""

    def test_evicts_oldest_insertion(self, fake_clock):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.get("a")  # reads do not affect FIFO order
        cache.set("c", 3)

        assert cache.peek("a") is None
        assert cache.peek("b") == 2
        assert cache.peek("c") == 3
        assert cache.get_stats()["evictions"] == 1

    def test_reset_counts_as_new_insertion(self, fake_clock):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.peek("b") is None
        assert cache.peek("a") == 10


# ============================================================
# STATS
# ============================================================

class TestTTLCacheStats:
    """Tests for cache statistics."""

    def test_hit_rate(self, fake_clock):
        cache = TTLCache(ttl_seconds=10, stale_while_revalidate=True, clock=fake_clock, name="price")
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")
        fake_clock.advance(11)
        cache.get("k")

        stats = cache.get_stats()

        assert stats["name"] == "price"
        assert stats["hits"] == 1
        assert stats["stale_hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == pytest.approx(66.67)

    def test_delete_and_clear(self, fake_clock):
        cache = TTLCache(ttl_seconds=10, clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a")
        assert not cache.delete("a")
        cache.clear()
        assert len(cache) == 0
