"""Pagination engine: strategies, extractors and the three consumption modes."""

from .engine import OnError, PageStream, PaginationObserver, Paginator, StopPredicate, json_page_decoder
from .extractors import ArrayFieldExtractor, ExtractorLike, PageExtractor, as_extractor, get_path
from .strategies import CursorStrategy, OffsetLimitStrategy, PageNumberStrategy, PaginationStrategy
from .types import Page, PageContext, PageExtraction, PaginationLimits, PaginationResult, TruncationReason

__all__ = [
    # Engine
    "Paginator", "PageStream", "PaginationObserver", "OnError", "StopPredicate", "json_page_decoder",
    # Strategies
    "PaginationStrategy", "OffsetLimitStrategy", "CursorStrategy", "PageNumberStrategy",
    # Extractors
    "PageExtractor", "ArrayFieldExtractor", "ExtractorLike", "as_extractor", "get_path",
    # Types
    "Page", "PageContext", "PageExtraction", "PaginationLimits", "PaginationResult", "TruncationReason",
]
