"""
Cache - Injectable TTL/LRU cache and sliding-window rate limiter.

Both are plain instances owned by a long-lived service, never module-level
singletons, so tests construct isolated copies. Time is read from an
injectable clock.
"""

import asyncio
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]

_MISSING = object()


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """
    Bounded LRU cache with per-entry expiry.
    
    Reads are eventually consistent; delete() is synchronous so a writer
    that invalidates a key before returning guarantees the next read
    recomputes.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 60.0,
        clock: Clock = time.time,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: "OrderedDict[str, _CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value; returns default if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            if self.clock() > entry.expires_at:
                del self._entries[key]
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl_seconds: Optional[float] = None) -> None:
        """Set a value, evicting the least recently used entry at capacity."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = _CacheEntry(value=value, expires_at=self.clock() + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl_seconds: Optional[float] = None,
    ) -> T:
        """Return the cached value or compute, store and return it."""
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        value = await compute()
        self.set(key, value, ttl_seconds)
        return value

    def evict_expired(self) -> int:
        """Drop all expired entries; returns number evicted."""
        now = self.clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": 0.0 if total == 0 else self.hits / total,
        }


class SlidingWindowRateLimiter:
    """
    Per-actor sliding-window counter.
    
    try_acquire() records an event only when the actor is under the limit,
    so a blocked attempt never consumes budget from a later window.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        clock: Clock = time.time,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._events: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        events = self._events.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while events and events[0] <= cutoff:
            events.popleft()
        return events

    def try_acquire(self, actor: str, now: Optional[float] = None) -> bool:
        """
        Record one event for actor if under the limit.
        
        Returns:
            True if allowed, False if rate-limited
        """
        key = actor.lower()
        now = self.clock() if now is None else now
        with self._lock:
            events = self._prune(key, now)
            if len(events) >= self.limit:
                return False
            events.append(now)
            return True

    def remaining(self, actor: str, now: Optional[float] = None) -> int:
        key = actor.lower()
        now = self.clock() if now is None else now
        with self._lock:
            return max(0, self.limit - len(self._prune(key, now)))

    def reset(self, actor: Optional[str] = None) -> None:
        with self._lock:
            if actor is None:
                self._events.clear()
            else:
                self._events.pop(actor.lower(), None)


class KeyedLocks:
    """Lazily created asyncio.Lock per key (per-auction mutexes)."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]


__all__ = [
    "Clock",
    "TTLCache",
    "SlidingWindowRateLimiter",
    "KeyedLocks",
]
