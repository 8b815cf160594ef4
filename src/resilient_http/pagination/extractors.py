"""Page extractors: raw page payload → items + page-local state."""

from __future__ import annotations

from typing import Any, Callable, Protocol, Union, runtime_checkable

from .types import PageExtraction


def get_path(data: Any, path: str) -> Any:
    """Resolve a dotted path through nested mappings. Missing segments give None."""
    current = data
    for segment in path.split(".") if path else ():
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


@runtime_checkable
class PageExtractor(Protocol):
    def extract(self, raw: Any, index: int) -> PageExtraction[Any]: ...


class ArrayFieldExtractor:
    """Take items from a list at `items_path`; anything else yields no items.

    Args:
        items_path: Dotted path to the item list ("" for a top-level list)
        state_paths: Dotted paths copied into the extraction state, keyed by path

    Example:
        >>> ArrayFieldExtractor("data.items", state_paths=("meta.next",)).extract(
        ...     {"data": {"items": [1, 2]}, "meta": {"next": "c2"}}, 0)
        PageExtraction(items=[1, 2], state={'meta.next': 'c2'})
    """

    __slots__ = ("items_path", "state_paths")

    def __init__(self, items_path: str = "data", state_paths: tuple[str, ...] = ()) -> None:
        self.items_path = items_path
        self.state_paths = state_paths

    def extract(self, raw: Any, index: int) -> PageExtraction[Any]:
        value = get_path(raw, self.items_path)
        items = list(value) if isinstance(value, list) else []
        state = {p: get_path(raw, p) for p in self.state_paths} or None
        return PageExtraction(items, state)


ExtractorLike = Union[PageExtractor, Callable[[Any, int], "list[Any] | PageExtraction[Any]"]]


class _CallableExtractor:
    __slots__ = ("fn",)

    def __init__(self, fn: Callable[[Any, int], Any]) -> None:
        self.fn = fn

    def extract(self, raw: Any, index: int) -> PageExtraction[Any]:
        result = self.fn(raw, index)
        return result if isinstance(result, PageExtraction) else PageExtraction(list(result or ()))


def as_extractor(extractor: ExtractorLike) -> PageExtractor:
    """Accept an extractor object or a plain `(raw, index) -> items` callable."""
    if hasattr(extractor, "extract"):
        return extractor  # type: ignore[return-value]
    if callable(extractor):
        return _CallableExtractor(extractor)
    raise TypeError(f"not a page extractor: {extractor!r}")
