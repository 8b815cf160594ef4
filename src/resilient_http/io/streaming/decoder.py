"""Streaming decoder: SSE body → typed events plus an always-resolving final result.

Iteration is lazy and single-pass; bytes are pulled from the transport
only as events are requested, so a slow consumer applies backpressure all
the way to the socket. `final()` drains whatever the caller did not consume
and returns the assembled result. The event sequence always ends with
exactly one `done` event, synthesized from the deltas seen when the
upstream never sent a final record. A failure record from the upstream
raises StreamFailedError from iteration and again from `final()`.

Example:
    >>> raw = await executor.request_raw(descriptor.with_headers(Accept="text/event-stream"))
    >>> stream = decode_stream(raw)
    >>> async for event in stream:
    ...     if event.kind is StreamEventKind.TEXT_DELTA:
    ...         print(event.text, end="")
    >>> result = await stream.final()
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, Callable, Literal

from resilient_http.foundation.config import get_settings
from resilient_http.foundation.errors import StreamFailedError
from resilient_http.io import codec
from resilient_http.runtime.observability import BoundLogger, get_logger

from .events import ResponseResult, StreamEvent, StreamEventKind
from .payloads import PayloadDecoder, ResponsesPayloadDecoder
from .sse import DONE_SENTINEL, SSEParser, SSERecord

if TYPE_CHECKING:
    from resilient_http.http import RequestDescriptor, RequestExecutor

MalformedPolicy = Literal["skip", "emit"]


class ResponseStream:
    """Async iterator of StreamEvents with a separate final result.

    Args:
        chunks: Body chunks (bytes or str)
        payloads: Payload-family decoder for this stream
        on_malformed: "skip" drops unparsable records, "emit" yields decode-error events
        close: Called once when the stream finishes or is closed
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes | str],
        payloads: PayloadDecoder,
        *,
        on_malformed: MalformedPolicy = "skip",
        close: Callable[[], Awaitable[None]] | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._chunks = chunks
        self._payloads = payloads
        self._on_malformed = on_malformed
        self._close = close
        self._closed = False
        self._log = logger or get_logger("resilient_http.stream")
        self._events = self._produce()
        self._lock = asyncio.Lock()
        self._finished = False
        self._result: ResponseResult | None = None
        self._error: BaseException | None = None

    # ─────────────────────────────────────────────────────────────────
    # Consumer API
    # ─────────────────────────────────────────────────────────────────

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self

    async def __anext__(self) -> StreamEvent:
        async with self._lock:
            return await self._next()

    async def final(self) -> ResponseResult:
        """The assembled result. Drains unconsumed events; re-raises a stream failure."""
        async with self._lock:
            while not self._finished:
                try:
                    await self._next()
                except StopAsyncIteration:
                    break
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    @property
    def done(self) -> bool:
        return self._finished

    @property
    def result(self) -> ResponseResult | None:
        """Final result if the stream already finished, else None."""
        return self._result

    async def aclose(self) -> None:
        """Stop reading and release the response.

        A stream closed before its final record resolves `final()` to the
        fallback result built from what was consumed.
        """
        if not self._finished:
            self._finished = True
            await self._events.aclose()
            if self._result is None and self._error is None:
                self._result = self._payloads.fallback()
        await self._release()

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def _next(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        try:
            event = await self._events.__anext__()
        except StopAsyncIteration:
            self._finished = True
            raise
        except Exception as e:
            self._finished = True
            self._error = e
            raise
        if event.kind is StreamEventKind.DONE:
            self._finished = True
            await self._events.aclose()
        return event

    # ─────────────────────────────────────────────────────────────────
    # Producer
    # ─────────────────────────────────────────────────────────────────

    async def _records(self) -> AsyncIterator[SSERecord]:
        parser = SSEParser()
        async for chunk in self._chunks:
            for record in parser.feed(chunk):
                yield record
        for record in parser.flush():
            yield record

    async def _produce(self) -> AsyncIterator[StreamEvent]:
        try:
            async with aclosing(self._records()) as records:
                sentinel = False
                async for record in records:
                    for data in record.data:
                        if data.strip() == DONE_SENTINEL:
                            sentinel = True
                            break
                        for event in self._decode(data, record.event):
                            if event.kind is StreamEventKind.DONE:
                                self._result = event.result
                            yield event
                            if event.kind is StreamEventKind.DONE:
                                return
                    if sentinel:
                        break

            for event in self._payloads.finish():
                if event.kind is StreamEventKind.DONE:
                    self._result = event.result
                yield event
                if event.kind is StreamEventKind.DONE:
                    return

            fallback = self._payloads.fallback()
            self._log.debug("stream.fallback", response_id=fallback.id, text_length=len(fallback.text))
            self._result = fallback
            yield StreamEvent.done(fallback)
        finally:
            await self._release()

    def _decode(self, data: str, event: str | None) -> list[StreamEvent]:
        try:
            return self._payloads.decode_event(codec.decode(data), event)
        except StreamFailedError as e:
            self._log.warning("stream.upstream_failed", code=e.code, error=e.message)
            raise
        except (ValueError, TypeError) as e:
            self._log.warning("stream.record.malformed", error=str(e), record=data[:200],
                              policy=self._on_malformed)
            return [StreamEvent.decode_error(data, str(e))] if self._on_malformed == "emit" else []

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is not None:
            await self._close()


def decode_stream(
    source: Any,
    payloads: PayloadDecoder | None = None,
    *,
    on_malformed: MalformedPolicy | None = None,
    logger: BoundLogger | None = None,
) -> ResponseStream:
    """Wrap a response (or RawResponse, or any async iterable of chunks) as a ResponseStream.

    Responses are closed when the stream finishes; bare iterables are not.
    `on_malformed` defaults to the `stream.on_malformed` setting.
    """
    if on_malformed is None:
        on_malformed = get_settings().stream.on_malformed
    response = getattr(source, "response", source)
    if hasattr(response, "aiter_bytes"):
        chunks, close = response.aiter_bytes(), getattr(response, "aclose", None)
    else:
        chunks, close = source, None
    return ResponseStream(chunks, payloads or ResponsesPayloadDecoder(), on_malformed=on_malformed,
                          close=close, logger=logger)


async def stream_request(
    executor: RequestExecutor,
    descriptor: RequestDescriptor,
    payloads: PayloadDecoder | None = None,
    *,
    on_malformed: MalformedPolicy | None = None,
    cancel: asyncio.Event | None = None,
) -> ResponseStream:
    """Open a streaming call through the executor's retry loop and decode it.

    Only the opening of the stream is retried; once bytes flow, failures
    surface from the stream itself.
    """
    if not any(k.lower() == "accept" for k in descriptor.headers):
        descriptor = descriptor.with_headers(Accept="text/event-stream")
    raw = await executor.request_raw(descriptor, cancel=cancel)
    return decode_stream(raw, payloads, on_malformed=on_malformed)
