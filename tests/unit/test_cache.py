"""
Tests for caches, rate limiting and per-key locks.

Tests cover:
1. TTL expiry and LRU eviction
2. get_or_set computation
3. Sliding-window rate limiting
4. Keyed asyncio locks
"""

import asyncio

import pytest

from leasebid.core.cache import KeyedLocks, SlidingWindowRateLimiter, TTLCache


# =============================================================================
# Fixtures
# =============================================================================

class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# TTLCache
# =============================================================================

class TestTTLCache:
    """Tests for the TTL/LRU cache."""

    def test_set_and_get(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None
        assert cache.get("missing", "dflt") == "dflt"

    def test_entry_expires(self, clock):
        """Entries are gone after their TTL."""
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.advance(10)
        assert cache.get("a") == 1
        clock.advance(0.5)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, clock):
        cache = TTLCache(ttl_seconds=100, clock=clock)
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2)
        clock.advance(2)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_lru_eviction(self, clock):
        """The least recently used entry is evicted at capacity."""
        cache = TTLCache(max_size=2, ttl_seconds=100, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_falsy_values_are_cached(self, clock):
        """Empty strings are real values, not misses."""
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("holder:solar", "")
        assert cache.get("holder:solar") == ""

    def test_delete_and_clear(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_evict_expired(self, clock):
        cache = TTLCache(ttl_seconds=5, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2, ttl_seconds=50)
        clock.advance(10)
        assert cache.evict_expired() == 1
        assert len(cache) == 1

    def test_stats(self, clock):
        cache = TTLCache(ttl_seconds=5, clock=clock)
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_get_or_set_computes_once(self, clock):
        cache = TTLCache(ttl_seconds=5, clock=clock)
        calls = []

        async def compute():
            calls.append(1)
            return 42

        async def run():
            first = await cache.get_or_set("k", compute)
            second = await cache.get_or_set("k", compute)
            return first, second

        assert asyncio.run(run()) == (42, 42)
        assert len(calls) == 1


# =============================================================================
# Rate Limiter
# =============================================================================

class TestSlidingWindowRateLimiter:
    """Tests for the per-actor sliding window."""

    def test_limit_enforced(self, clock):
        limiter = SlidingWindowRateLimiter(limit=3, window_seconds=60, clock=clock)
        assert all(limiter.try_acquire("0xAbC") for _ in range(3))
        assert limiter.try_acquire("0xabc") is False

    def test_actors_are_case_insensitive(self, clock):
        limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
        assert limiter.try_acquire("0xABC")
        assert not limiter.try_acquire("0xabc")
        assert limiter.try_acquire("0xdef")

    def test_window_slides(self, clock):
        """Events older than the window stop counting."""
        limiter = SlidingWindowRateLimiter(limit=2, window_seconds=10, clock=clock)
        limiter.try_acquire("a", now=0)
        limiter.try_acquire("a", now=1)
        assert not limiter.try_acquire("a", now=5)
        assert limiter.try_acquire("a", now=10.5)
        assert not limiter.try_acquire("a", now=10.6)

    def test_blocked_attempts_do_not_consume(self, clock):
        """Rejected attempts never delay the next window."""
        limiter = SlidingWindowRateLimiter(limit=2, window_seconds=10, clock=clock)
        limiter.try_acquire("a", now=0)
        limiter.try_acquire("a", now=0)
        for t in range(1, 10):
            assert not limiter.try_acquire("a", now=t)
        assert limiter.try_acquire("a", now=10)
        assert limiter.try_acquire("a", now=10)

    def test_remaining_and_reset(self, clock):
        limiter = SlidingWindowRateLimiter(limit=5, window_seconds=60, clock=clock)
        limiter.try_acquire("a")
        limiter.try_acquire("a")
        assert limiter.remaining("a") == 3
        limiter.reset("a")
        assert limiter.remaining("a") == 5


# =============================================================================
# Keyed Locks
# =============================================================================

class TestKeyedLocks:
    """Tests for per-key asyncio locks."""

    def test_same_key_same_lock(self):
        locks = KeyedLocks()

        async def run():
            return locks.get("a") is locks.get("a"), locks.get("a") is locks.get("b")

        assert asyncio.run(run()) == (True, False)

    def test_discard_skips_held_lock(self):
        locks = KeyedLocks()

        async def run():
            lock = locks.get("a")
            async with lock:
                locks.discard("a")
                assert locks.get("a") is lock
            locks.discard("a")
            return locks.get("a") is not lock

        assert asyncio.run(run())
