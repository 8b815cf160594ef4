"""Per-attempt deadline composed with an optional caller cancel signal.

`run_with_deadline` races the operation against the timeout and, when
given, a caller-owned `asyncio.Event`. Whichever fires first aborts the
operation. The cancel waiter is always torn down before returning, so
repeated calls never accumulate listeners on a long-lived event.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from resilient_http.foundation.errors import ErrorCategory, NetworkError

T = TypeVar("T")


async def run_with_deadline(
    operation: Awaitable[T],
    timeout_ms: float | None,
    *,
    cancel: asyncio.Event | None = None,
    description: str = "request",
) -> T:
    """Await `operation` under a timeout and optional cancel event.

    Raises:
        NetworkError: category TIMEOUT when the deadline passes first,
            category CANCELLED when the cancel event fires first
    """
    task = asyncio.ensure_future(operation)
    waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    timeout = timeout_ms / 1000.0 if timeout_ms else None
    try:
        done, _ = await asyncio.wait(
            [task, waiter] if waiter is not None else [task],
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if waiter is not None and waiter in done:
            raise NetworkError(f"{description} cancelled by caller", category=ErrorCategory.CANCELLED)
        raise NetworkError(f"{description} timed out after {timeout_ms:.0f}ms", category=ErrorCategory.TIMEOUT)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if waiter is not None and not waiter.done():
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)
