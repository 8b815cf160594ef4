"""Bounded prefetch between an async producer and its consumer."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import TypeVar

T = TypeVar("T")

_DONE = object()


async def buffer_stream(stream: AsyncIterator[T], maxsize: int = 1) -> AsyncIterator[T]:
    """Prefetch items from `stream` into a queue of at most `maxsize` items.

    The producer suspends once the queue is full, so it never runs more
    than `maxsize` items ahead of a slow consumer. Producer errors are
    re-raised to the consumer after the items produced before them.
    Closing the consumer cancels the producer.

    Example:
        >>> async for page in buffer_stream(fetch_pages(), maxsize=2):
        ...     await slow_process(page)
    """
    if maxsize < 1:
        raise ValueError("maxsize must be >= 1")
    buffer: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
    error: BaseException | None = None

    async def producer() -> None:
        nonlocal error
        try:
            async for item in stream:
                await buffer.put(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        await buffer.put(_DONE)

    task = asyncio.create_task(producer())
    try:
        while (item := await buffer.get()) is not _DONE:
            yield item  # type: ignore[misc]
        if error is not None:
            raise error
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
