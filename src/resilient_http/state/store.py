"""Bounded state cache for per-conversation continuation state.

Managed mode (default) keeps entries in process with a max size (LRU
eviction) and a per-entry TTL, swept on every read and optionally by a
background thread so idle entries are still reclaimed. Unmanaged mode
delegates to a caller-supplied mapping whose own semantics govern lifetime.

Example:
    >>> with BoundedStateCache(max_size=500, ttl_ms=3_600_000, sweep_interval_ms=60_000) as store:
    ...     store.set("conv-1", "resp_abc")
    ...     store.get("conv-1")
    'resp_abc'
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any, Callable

from resilient_http.foundation.config import ResilientHttpSettings, get_settings
from resilient_http.runtime.observability import get_logger

_log = get_logger("resilient_http.state")

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_MS = 3_600_000.0


def _now_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True)
class StateEntry:
    """Stored value with its last access and absolute expiry (clock ms)."""
    key: str
    value: Any
    last_access: float
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class BoundedStateCache:
    """TTL + LRU keyed store. Thread-safe.

    Args:
        max_size: Entry cap; the least recently used entry is evicted past it
        ttl_ms: Entry lifetime from its last write; None disables expiry
        sweep_interval_ms: Run a background expiry sweep at this interval
        clock: Milliseconds source (monotonic by default)
    """

    __slots__ = ("_entries", "_store", "_max_size", "_ttl_ms", "_clock", "_lock",
                 "_sweeper", "_stop", "_disposed", "_evictions", "_expirations")

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_ms: float | None = DEFAULT_TTL_MS,
        sweep_interval_ms: float | None = None,
        *,
        clock: Callable[[], float] = _now_ms,
        _store: MutableMapping[str, Any] | None = None,
    ) -> None:
        if _store is not None:
            max_size, ttl_ms, sweep_interval_ms = 0, None, None
        elif max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl_ms is not None and ttl_ms <= 0:
            raise ValueError("ttl_ms must be > 0")
        self._entries: OrderedDict[str, StateEntry] = OrderedDict()
        self._store = _store
        self._max_size = max_size
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._disposed = False
        self._evictions = 0
        self._expirations = 0
        self._sweeper: threading.Thread | None = None
        if sweep_interval_ms is not None:
            if sweep_interval_ms <= 0:
                raise ValueError("sweep_interval_ms must be > 0")
            self._sweeper = threading.Thread(target=self._sweep_loop, args=(sweep_interval_ms / 1000.0,),
                                             name="state-cache-sweeper", daemon=True)
            self._sweeper.start()

    @classmethod
    def unmanaged(cls, store: MutableMapping[str, Any]) -> BoundedStateCache:
        """Wrap an external mapping; no TTL or capacity applies."""
        return cls(_store=store)

    @classmethod
    def from_settings(cls, settings: ResilientHttpSettings | None = None) -> BoundedStateCache:
        s = (settings or get_settings()).state
        return cls(max_size=s.max_size, ttl_ms=s.ttl_ms, sweep_interval_ms=s.sweep_interval_ms)

    @property
    def managed(self) -> bool:
        return self._store is None

    # ─────────────────────────────────────────────────────────────────
    # Mapping operations
    # ─────────────────────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        if self._store is not None:
            return self._store.get(key)
        with self._lock:
            now = self._clock()
            self._sweep(now)
            if (entry := self._entries.get(key)) is None:
                return None
            entry.last_access = now
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if self._disposed:
                raise RuntimeError("state cache is disposed")
            if self._store is not None:
                self._store[key] = value
                return
            now = self._clock()
            expires = now + self._ttl_ms if self._ttl_ms is not None else None
            self._entries[key] = StateEntry(key, value, now, expires)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                _log.debug("state.evicted", key=evicted, size=len(self._entries))

    def delete(self, key: str) -> bool:
        if self._store is not None:
            return self._store.pop(key, _MISSING) is not _MISSING
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        if self._store is not None:
            self._store.clear()
            return
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries now. Returns how many were removed."""
        if self._store is not None:
            return 0
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.expired(now)]
        for k in expired:
            del self._entries[k]
        if expired:
            self._expirations += len(expired)
            _log.debug("state.expired", count=len(expired), size=len(self._entries))
        return len(expired)

    def __len__(self) -> int:
        if self._store is not None:
            return len(self._store)
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if self._store is not None:
            return key in self._store
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.expired(self._clock())

    @property
    def stats(self) -> dict[str, int | bool]:
        return {"size": len(self), "max_size": self._max_size, "evictions": self._evictions,
                "expirations": self._expirations, "managed": self.managed, "disposed": self._disposed}

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.sweep()

    def dispose(self) -> None:
        """Stop the sweeper and drop managed entries. Safe to call repeatedly.

        An unmanaged store is left untouched since this cache does not own it.
        """
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        self._stop.set()
        if self._sweeper is not None:
            if self._sweeper is not threading.current_thread():
                self._sweeper.join()
            self._sweeper = None
        if self._store is None:
            with self._lock:
                self._entries.clear()
        _log.debug("state.disposed", managed=self.managed)

    close = dispose

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __enter__(self) -> BoundedStateCache:
        return self

    def __exit__(self, *_: object) -> None:
        self.dispose()


_MISSING = object()
