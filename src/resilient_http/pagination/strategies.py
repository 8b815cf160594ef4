"""Pagination strategies: how to build page n+1's request from page n.

A strategy sees only the previous request and its extraction, so pages are
strictly sequential. `prepare` lets a strategy stamp its parameters onto the
caller's initial request (offset 0, page 1, ...).
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from resilient_http.http import RequestDescriptor

from .extractors import get_path
from .types import PageContext


@runtime_checkable
class PaginationStrategy(Protocol):
    """Computes the next request, or None when traversal is complete."""

    def prepare(self, request: RequestDescriptor) -> RequestDescriptor: ...

    def next_request(self, context: PageContext) -> RequestDescriptor | None: ...


class OffsetLimitStrategy:
    """Advance a numeric offset by a fixed page size.

    Stops after an empty or short page, since a full collection never
    returns fewer than `page_size` items before its end.

    Example:
        >>> strategy = OffsetLimitStrategy(page_size=50)
        >>> # GET /items?limit=50&offset=0, then offset=50, offset=100, ...
    """

    __slots__ = ("page_size", "offset_param", "limit_param")

    def __init__(self, page_size: int, offset_param: str = "offset", limit_param: str = "limit") -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.offset_param = offset_param
        self.limit_param = limit_param

    def prepare(self, request: RequestDescriptor) -> RequestDescriptor:
        return request.with_query(**{self.offset_param: 0, self.limit_param: self.page_size})

    def next_request(self, context: PageContext) -> RequestDescriptor | None:
        if len(context.extraction.items) < self.page_size:
            return None
        return context.request.with_query(**{
            self.offset_param: (context.index + 1) * self.page_size,
            self.limit_param: self.page_size,
        })


class CursorStrategy:
    """Inject an opaque cursor taken from the previous page.

    The cursor is read with `get_cursor(raw, index)` when given, else from the
    extraction state, else from `cursor_path` (dotted) in the raw page.
    Stops when no cursor is found.
    """

    __slots__ = ("cursor_param", "cursor_path", "get_cursor")

    def __init__(
        self,
        cursor_param: str = "cursor",
        cursor_path: str = "next_cursor",
        get_cursor: Callable[[Any, int], str | None] | None = None,
    ) -> None:
        self.cursor_param = cursor_param
        self.cursor_path = cursor_path
        self.get_cursor = get_cursor

    def prepare(self, request: RequestDescriptor) -> RequestDescriptor:
        return request

    def cursor(self, context: PageContext) -> str | None:
        if self.get_cursor is not None:
            value = self.get_cursor(context.raw, context.index)
        elif isinstance(context.extraction.state, dict) and self.cursor_path in context.extraction.state:
            value = context.extraction.state[self.cursor_path]
        else:
            value = get_path(context.raw, self.cursor_path)
        return None if value is None or value == "" else str(value)

    def next_request(self, context: PageContext) -> RequestDescriptor | None:
        if (cursor := self.cursor(context)) is None:
            return None
        return context.request.with_query(**{self.cursor_param: cursor})


class PageNumberStrategy:
    """Advance a page counter starting at `start`. Stops after an empty or short page."""

    __slots__ = ("page_size", "page_param", "size_param", "start")

    def __init__(self, page_size: int, page_param: str = "page", size_param: str | None = "per_page",
                 start: int = 1) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.page_param = page_param
        self.size_param = size_param
        self.start = start

    def _params(self, page: int) -> dict[str, int]:
        params = {self.page_param: page}
        if self.size_param:
            params[self.size_param] = self.page_size
        return params

    def prepare(self, request: RequestDescriptor) -> RequestDescriptor:
        return request.with_query(**self._params(self.start))

    def next_request(self, context: PageContext) -> RequestDescriptor | None:
        if len(context.extraction.items) < self.page_size:
            return None
        return context.request.with_query(**self._params(self.start + context.index + 1))
