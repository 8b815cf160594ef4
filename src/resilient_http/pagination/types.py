"""Pagination records: pages, extractions, limits and the final result."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Any, Generic, Iterator, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from resilient_http.foundation.errors import JsonDict, RequestError

if TYPE_CHECKING:
    from resilient_http.http import RequestDescriptor, RequestOutcome

T = TypeVar("T")


class TruncationReason(StrEnum):
    MAX_PAGES = "maxPages"
    MAX_ITEMS = "maxItems"
    MAX_DURATION = "maxDurationMs"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class PageExtraction(Generic[T]):
    """Items pulled out of one raw page, plus page-local state for the strategy (e.g. a cursor)."""
    items: list[T]
    state: Any = None


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One fetched page. `index` is zero-based."""
    index: int
    items: list[T]
    raw: Any = field(repr=False)
    request: RequestDescriptor
    outcome: RequestOutcome
    state: Any = None

    def __len__(self) -> int: return len(self.items)


@dataclass(frozen=True, slots=True)
class PageContext:
    """What a strategy sees when asked for the next request."""
    request: RequestDescriptor
    raw: Any
    extraction: PageExtraction[Any]
    index: int


class PaginationLimits(BaseModel):
    """Safety limits for one traversal. None means unlimited.

    Example:
        >>> limits = PaginationLimits(max_pages=10, max_duration_ms=30_000)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_pages: Annotated[int | None, Field(ge=1)] = None
    max_items: Annotated[int | None, Field(ge=1)] = None
    max_duration_ms: Annotated[float | None, Field(gt=0)] = None


@dataclass(frozen=True, slots=True)
class PaginationResult(Generic[T]):
    """Everything one traversal produced.

    Attributes:
        pages: Pages in fetch order
        items: Flattened items across pages (trimmed to max_items)
        outcomes: Per-page outcomes, including a failed final fetch under partial mode
        outcome: Aggregate of `outcomes`
        truncated: Stopped by a limit, a stop predicate or an error rather than running out of pages
        truncation_reason: Why, when truncated
        duration_ms: Wall time of the traversal
        error: The page failure, when returned partially instead of raised
    """
    pages: tuple[Page[T], ...]
    items: tuple[T, ...]
    outcomes: tuple[RequestOutcome, ...]
    outcome: RequestOutcome | None
    truncated: bool = False
    truncation_reason: TruncationReason | None = None
    duration_ms: float = 0.0
    error: RequestError | None = None

    @property
    def page_count(self) -> int: return len(self.pages)

    @property
    def item_count(self) -> int: return len(self.items)

    @property
    def ok(self) -> bool: return self.error is None and (self.outcome is None or self.outcome.ok)

    def __len__(self) -> int: return len(self.items)

    def __iter__(self) -> Iterator[T]: return iter(self.items)

    def to_dict(self) -> JsonDict:
        """Summary without the items themselves."""
        return {
            "page_count": self.page_count,
            "item_count": self.item_count,
            "truncated": self.truncated,
            "truncation_reason": self.truncation_reason.value if self.truncation_reason else None,
            "duration_ms": round(self.duration_ms, 2),
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": self.error.to_dict() if self.error else None,
        }
