"""Client-side rate limiting keyed by circuit key.

`throttle(key)` suspends the caller until the limiter admits the call
rather than failing it. Failure feedback (429 with Retry-After) blocks the
key until the advised instant so concurrent callers back off together.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Awaitable, Callable, Protocol, runtime_checkable

from resilient_http.foundation.errors import RequestError


@runtime_checkable
class RateLimiter(Protocol):
    """What the executor needs from a rate limiter."""

    async def throttle(self, key: str) -> None:
        """Suspend until a call for `key` may be sent."""
        ...

    async def on_success(self, key: str) -> None: ...
    async def on_error(self, key: str, error: RequestError) -> None: ...


class NoopRateLimiter:
    """Admits every call immediately (default)."""

    __slots__ = ()

    async def throttle(self, key: str) -> None:
        pass

    async def on_success(self, key: str) -> None:
        pass

    async def on_error(self, key: str, error: RequestError) -> None:
        pass


def _now_ms() -> float:
    return time.monotonic() * 1000.0


class SlidingWindowRateLimiter:
    """Sliding-window limiter: at most `max_calls` admissions per `window_ms` per key.

    Args:
        max_calls: Maximum calls per window
        window_ms: Window length in milliseconds
        per_key: Limit each circuit key separately (True) or all calls together
        clock: Millisecond clock
        sleep: Awaitable sleep taking seconds

    Example:
        >>> limiter = SlidingWindowRateLimiter(max_calls=5, window_ms=1000)
        >>> executor = RequestExecutor(config, transport=t, rate_limiter=limiter)
    """

    __slots__ = ("max_calls", "window_ms", "per_key", "clock", "sleep", "_timestamps", "_blocked_until", "_lock")

    def __init__(
        self,
        max_calls: int = 60,
        window_ms: float = 60_000.0,
        *,
        per_key: bool = True,
        clock: Callable[[], float] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        self.max_calls = max_calls
        self.window_ms = window_ms
        self.per_key = per_key
        self.clock = clock
        self.sleep = sleep
        self._timestamps: dict[str, deque[float]] = {}
        self._blocked_until: dict[str, float] = {}
        self._lock = threading.Lock()

    def _bucket_key(self, key: str) -> str:
        return key if self.per_key else "_global_"

    def _admit(self, key: str) -> float:
        """Admit the call and return 0, or return the milliseconds to wait."""
        with self._lock:
            now = self.clock()
            if (blocked := self._blocked_until.get(key)) is not None:
                if now < blocked:
                    return blocked - now
                del self._blocked_until[key]
            bucket = self._timestamps.setdefault(key, deque())
            cutoff = now - self.window_ms
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) >= self.max_calls:
                return bucket[0] + self.window_ms - now
            bucket.append(now)
            return 0.0

    async def throttle(self, key: str) -> None:
        key = self._bucket_key(key)
        while (wait_ms := self._admit(key)) > 0:
            await self.sleep(wait_ms / 1000.0)

    async def on_success(self, key: str) -> None:
        pass

    async def on_error(self, key: str, error: RequestError) -> None:
        if error.status != 429 or not error.retry_after_ms:
            return
        key = self._bucket_key(key)
        with self._lock:
            until = self.clock() + error.retry_after_ms
            self._blocked_until[key] = max(until, self._blocked_until.get(key, 0.0))

    def pending(self, key: str) -> int:
        """Calls admitted for `key` within the current window."""
        with self._lock:
            return len(self._timestamps.get(self._bucket_key(key), ()))
