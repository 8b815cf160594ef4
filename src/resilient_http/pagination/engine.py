"""Pagination engine: drive the request executor across a multi-page collection.

Three consumption modes share one traversal:
    paginate        collect every page, return a PaginationResult
    paginate_until  same, but stop after the page where a predicate first matches an item
    paginate_stream yield pages as they arrive, then the same PaginationResult

Per page: request_raw → decode body → extract items → observer.on_page →
strategy.next_request. Pages are strictly sequential since each request is
built from its predecessor. A limit only truncates when another page exists.

Example:
    >>> paginator = Paginator(executor)
    >>> result = await paginator.paginate(
    ...     RequestDescriptor(path="/v1/items"),
    ...     CursorStrategy(cursor_path="next_cursor"),
    ...     ArrayFieldExtractor("data"),
    ...     limits=PaginationLimits(max_pages=20),
    ... )
    >>> result.item_count, result.truncated
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import Any, Callable, Generic, Literal, Protocol, TypeVar

from resilient_http.foundation.config import get_settings
from resilient_http.foundation.errors import DecodeError, ErrorCategory, RequestError
from resilient_http.http import (
    RawResponse,
    RequestDescriptor,
    RequestExecutor,
    RequestOutcome,
    ResponseDecoder,
    aggregate_outcomes,
    json_decoder,
)
from resilient_http.runtime.concurrency import buffer_stream
from resilient_http.runtime.observability import BoundLogger, get_logger

from .extractors import ExtractorLike, PageExtractor, as_extractor
from .strategies import PaginationStrategy
from .types import Page, PageContext, PaginationLimits, PaginationResult, TruncationReason

T = TypeVar("T")

OnError = Literal["raise", "partial"]
StopPredicate = Callable[[Any], bool]

json_page_decoder: ResponseDecoder = json_decoder


class PaginationObserver(Protocol):
    """Optional traversal hooks. Every method is optional; sync or async both work."""

    def on_start(self, request: RequestDescriptor) -> Any: ...

    def on_page(self, page: Page[Any], outcome: RequestOutcome) -> Any: ...

    def on_complete(self, result: PaginationResult[Any]) -> Any: ...


async def _notify(observer: object | None, hook: str, *args: Any) -> None:
    if observer is None or (fn := getattr(observer, hook, None)) is None:
        return
    if inspect.isawaitable(result := fn(*args)):
        await result


class _Traversal(Generic[T]):
    """State of one traversal. Produces pages; builds the result once finished."""

    def __init__(
        self,
        paginator: Paginator,
        initial: RequestDescriptor,
        strategy: PaginationStrategy,
        extractor: PageExtractor,
        *,
        limits: PaginationLimits | None,
        observer: object | None,
        on_error: OnError,
        stop_when: StopPredicate | None,
        cancel: asyncio.Event | None,
    ) -> None:
        if on_error not in ("raise", "partial"):
            raise ValueError(f"on_error must be 'raise' or 'partial', got {on_error!r}")
        self.paginator = paginator
        self.initial = initial
        self.strategy = strategy
        self.extractor = extractor
        self.limits = limits or PaginationLimits()
        self.observer = observer
        self.on_error = on_error
        self.stop_when = stop_when
        self.cancel = cancel
        self.pages: list[Page[T]] = []
        self.items: list[T] = []
        self.outcomes: list[RequestOutcome] = []
        self.reason: TruncationReason | None = None
        self.error: RequestError | None = None
        self.failure: BaseException | None = None
        self.started = paginator._clock()
        self.log = paginator._log.bind(operation=initial.operation_label)
        self._result: PaginationResult[T] | None = None

    def _elapsed_ms(self) -> float:
        return max(0.0, (self.paginator._clock() - self.started) * 1000.0)

    def _truncate(self, reason: TruncationReason) -> None:
        self.reason = reason
        self.log.info("pagination.truncated", reason=reason.value, pages=len(self.pages), items=len(self.items))

    async def _fetch(self, request: RequestDescriptor) -> tuple[Any, RequestOutcome]:
        raw_response: RawResponse = await self.paginator.executor.request_raw(request, cancel=self.cancel)
        try:
            return await self.paginator._decoder(raw_response.response), raw_response.outcome
        except DecodeError as e:
            e.outcome = replace(raw_response.outcome, ok=False, error_category=ErrorCategory.DECODE)
            raise
        finally:
            await raw_response.aclose()

    def _limit_reached(self, has_next: bool) -> TruncationReason | None:
        limits, n_items = self.limits, len(self.items)
        if limits.max_items is not None and (n_items > limits.max_items or (has_next and n_items >= limits.max_items)):
            return TruncationReason.MAX_ITEMS
        if not has_next:
            return None
        if limits.max_pages is not None and len(self.pages) >= limits.max_pages:
            return TruncationReason.MAX_PAGES
        if limits.max_duration_ms is not None and self._elapsed_ms() >= limits.max_duration_ms:
            return TruncationReason.MAX_DURATION
        return None

    async def run(self) -> AsyncIterator[Page[T]]:
        request = self.strategy.prepare(self.initial)
        await _notify(self.observer, "on_start", request)
        index = 0
        while True:
            try:
                raw, outcome = await self._fetch(request)
            except RequestError as e:
                self.log.warning("pagination.failed", page=index, status=e.status, category=e.category.value,
                                 pages=len(self.pages), policy=self.on_error, error=e.message)
                if self.on_error == "raise":
                    self.failure = e
                    raise
                self.error = e
                if e.outcome is not None:
                    self.outcomes.append(e.outcome)
                self._truncate(TruncationReason.ERROR)
                break

            extraction = self.extractor.extract(raw, index)
            page: Page[T] = Page(index, list(extraction.items), raw, request, outcome, extraction.state)
            self.pages.append(page)
            self.items.extend(page.items)
            self.outcomes.append(outcome)
            self.log.debug("pagination.page", page=index, items=len(page.items), total=len(self.items),
                           status=outcome.status, attempts=outcome.attempts)
            await _notify(self.observer, "on_page", page, outcome)
            yield page

            if self.stop_when is not None and any(self.stop_when(item) for item in page.items):
                self._truncate(TruncationReason.MAX_ITEMS)
                break
            if not page.items:
                break
            next_request = self.strategy.next_request(PageContext(request, raw, extraction, index))
            if (reason := self._limit_reached(next_request is not None)) is not None:
                self._truncate(reason)
                break
            if next_request is None:
                break
            request, index = next_request, index + 1

        await self._finish()

    def _build(self) -> PaginationResult[T]:
        items = self.items
        if self.limits.max_items is not None:
            items = items[: self.limits.max_items]
        return PaginationResult(
            pages=tuple(self.pages),
            items=tuple(items),
            outcomes=tuple(self.outcomes),
            outcome=aggregate_outcomes(self.outcomes),
            truncated=self.reason is not None,
            truncation_reason=self.reason,
            duration_ms=self._elapsed_ms(),
            error=self.error,
        )

    async def _finish(self) -> None:
        self._result = self._build()
        self.log.debug("pagination.complete", pages=self._result.page_count, items=self._result.item_count,
                       truncated=self._result.truncated, duration_ms=round(self._result.duration_ms, 2))
        await _notify(self.observer, "on_complete", self._result)

    def result(self) -> PaginationResult[T]:
        """Final result; a snapshot of what was gathered if the traversal was abandoned."""
        if self.failure is not None:
            raise self.failure
        return self._result if self._result is not None else self._build()

    async def collect(self) -> PaginationResult[T]:
        async for _ in self.run():
            pass
        return self.result()


class PageStream(Generic[T]):
    """Pages as they arrive, with the final PaginationResult available afterwards.

    Pages are prefetched through a bounded buffer; the traversal suspends
    once `buffer_size` pages are waiting on the consumer.
    """

    def __init__(self, traversal: _Traversal[T], buffer_size: int = 1) -> None:
        self._traversal = traversal
        self._pages = buffer_stream(traversal.run(), maxsize=buffer_size)

    def __aiter__(self) -> AsyncIterator[Page[T]]:
        return self

    async def __anext__(self) -> Page[T]:
        return await self._pages.__anext__()

    async def result(self) -> PaginationResult[T]:
        """Drain remaining pages and return the result. Re-raises a traversal failure."""
        async for _ in self._pages:
            pass
        return self._traversal.result()

    async def aclose(self) -> None:
        await self._pages.aclose()  # type: ignore[attr-defined]

    async def __aenter__(self) -> PageStream[T]:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


class Paginator:
    """Runs traversals against one executor.

    Args:
        executor: Executor every page request goes through (retries, breaker, limiter apply per page)
        decoder: Response body → raw page payload (JSON by default)
        clock: Monotonic seconds, used for max_duration_ms and result timing
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        decoder: ResponseDecoder = json_page_decoder,
        clock: Callable[[], float] = time.monotonic,
        logger: BoundLogger | None = None,
    ) -> None:
        self.executor = executor
        self._decoder = decoder
        self._clock = clock
        self._log = logger or get_logger("resilient_http.pagination", client=executor.config.name)

    def _traversal(self, initial: RequestDescriptor, strategy: PaginationStrategy, extractor: ExtractorLike,
                   limits: PaginationLimits | None, observer: object | None, on_error: OnError,
                   stop_when: StopPredicate | None, cancel: asyncio.Event | None) -> _Traversal[Any]:
        return _Traversal(self, initial, strategy, as_extractor(extractor), limits=limits, observer=observer,
                          on_error=on_error, stop_when=stop_when, cancel=cancel)

    async def paginate(
        self,
        initial: RequestDescriptor,
        strategy: PaginationStrategy,
        extractor: ExtractorLike,
        *,
        limits: PaginationLimits | None = None,
        observer: object | None = None,
        on_error: OnError = "raise",
        cancel: asyncio.Event | None = None,
    ) -> PaginationResult[Any]:
        """Fetch every page (subject to limits) and return the collected result.

        Raises:
            RequestError: A page fetch failed and on_error is "raise"
        """
        return await self._traversal(initial, strategy, extractor, limits, observer, on_error, None, cancel).collect()

    async def paginate_until(
        self,
        initial: RequestDescriptor,
        strategy: PaginationStrategy,
        extractor: ExtractorLike,
        stop_when: StopPredicate,
        *,
        limits: PaginationLimits | None = None,
        observer: object | None = None,
        on_error: OnError = "raise",
        cancel: asyncio.Event | None = None,
    ) -> PaginationResult[Any]:
        """Like paginate, but stop after the first page containing an item matching `stop_when`.

        The matching page is kept whole; the result is truncated with reason maxItems.
        """
        traversal = self._traversal(initial, strategy, extractor, limits, observer, on_error, stop_when, cancel)
        return await traversal.collect()

    def paginate_stream(
        self,
        initial: RequestDescriptor,
        strategy: PaginationStrategy,
        extractor: ExtractorLike,
        *,
        limits: PaginationLimits | None = None,
        observer: object | None = None,
        on_error: OnError = "raise",
        buffer_size: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> PageStream[Any]:
        """Yield pages as they arrive.

        `buffer_size` (pages prefetched ahead of the consumer) defaults to the
        `stream.page_buffer_size` setting.

        Example:
            >>> async with paginator.paginate_stream(req, strategy, extractor) as pages:
            ...     async for page in pages:
            ...         handle(page.items)
            ...     summary = await pages.result()
        """
        traversal = self._traversal(initial, strategy, extractor, limits, observer, on_error, None, cancel)
        return PageStream(traversal, buffer_size or get_settings().stream.page_buffer_size)
