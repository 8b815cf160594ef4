"""Response cache contract with an in-memory TTL implementation.

The executor stores decoded payloads under the request's cache key for
`cache_ttl_ms`. Any object implementing the async `Cache` protocol can be
plugged in (see RedisCache for a shared backend).
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass(slots=True)
class CacheEntry:
    """A cached value with an optional absolute expiry (clock milliseconds)."""
    value: Any
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@runtime_checkable
class Cache(Protocol):
    """Protocol for response caches used by the executor."""

    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any, ttl_ms: float | None = None) -> None: ...
    async def delete(self, key: str) -> bool: ...


class MemoryCache:
    """Thread-safe in-memory cache with TTL expiry and LRU capacity bound.

    Args:
        max_entries: Entries kept before the least recently used is evicted
        default_ttl_ms: TTL used when set() is given none (None = no expiry)
        clock: Millisecond clock, injectable for tests

    Example:
        >>> cache = MemoryCache(max_entries=500)
        >>> await cache.set("quotes:/v1/quotes?symbol=ACME", payload, ttl_ms=1000)
        >>> await cache.get("quotes:/v1/quotes?symbol=ACME")
    """

    __slots__ = ("_entries", "_max_entries", "_default_ttl_ms", "_clock", "_lock")

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl_ms: float | None = None,
        *,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_entries = max_entries
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._lock = threading.RLock()

    async def get(self, key: str) -> Any | None:
        with self._lock:
            if (entry := self._entries.get(key)) is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: Any, ttl_ms: float | None = None) -> None:
        ttl = ttl_ms if ttl_ms is not None else self._default_ttl_ms
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock() + ttl if ttl else None)
            self._entries.move_to_end(key)
            if len(self._entries) > self._max_entries:
                self._evict_unlocked()

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _evict_unlocked(self) -> None:
        """Drop expired entries, then least recently used until within capacity. Caller holds lock."""
        now = self._clock()
        for key in [k for k, v in self._entries.items() if v.expired(now)]:
            del self._entries[key]
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, object]:
        """Cache statistics for monitoring."""
        with self._lock:
            now = self._clock()
            expired = sum(1 for v in self._entries.values() if v.expired(now))
            return {
                "total_entries": len(self._entries),
                "expired_entries": expired,
                "active_entries": len(self._entries) - expired,
                "max_entries": self._max_entries,
            }
