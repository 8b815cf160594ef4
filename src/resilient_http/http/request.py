"""Request descriptor and URL building.

A RequestDescriptor is an immutable description of one logical call.
Query keys are sorted and list values repeated so that two logically
identical requests always produce the same URL (and therefore the same
cache key).
"""

from __future__ import annotations

from typing import Any, Literal
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, PositiveFloat, field_validator

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

READ_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS"})


def _query_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_query(query: dict[str, Any]) -> str:
    """Encode query parameters with sorted keys, repeated list values, None dropped.

    Example:
        >>> encode_query({"b": 2, "a": ["x", "y"], "skip": None})
        'a=x&a=y&b=2'
    """
    pairs: list[tuple[str, str]] = []
    for key in sorted(query):
        value = query[key]
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
            pairs.extend((key, _query_scalar(v)) for v in items if v is not None)
        else:
            pairs.append((key, _query_scalar(value)))
    return urlencode(pairs)


def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")) or not base_url:
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


class RequestDescriptor(BaseModel):
    """Immutable description of one outbound call.

    Attributes:
        method: HTTP method (upper-cased)
        path: Endpoint path, or an absolute URL
        base_url: Overrides the client's base URL for this request
        query: Query parameters; list values become repeated parameters
        headers: Per-request headers (win over client defaults)
        body: JSON-serializable value, or pre-encoded str/bytes
        operation: Metrics/logging label (defaults to "METHOD path")
        cache_key: Explicit cache key; also makes non-read methods cacheable
        cache_ttl_ms: Cache lifetime; 0 disables caching
        timeout_ms: Per-attempt timeout override
        idempotent: Retry eligibility; None means true for read methods
        idempotency_key: Value for the idempotency key header (see IdempotencyKeyInterceptor)
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    method: HttpMethod = "GET"
    path: str = "/"
    base_url: str | None = None
    query: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    operation: str | None = None
    cache_key: str | None = None
    cache_ttl_ms: NonNegativeFloat = 0.0
    timeout_ms: PositiveFloat | None = None
    idempotent: bool | None = None
    idempotency_key: str | None = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @property
    def is_read(self) -> bool:
        return self.method in READ_METHODS

    @property
    def is_idempotent(self) -> bool:
        return self.idempotent if self.idempotent is not None else self.is_read

    @property
    def operation_label(self) -> str:
        return self.operation or f"{self.method} {self.path}"

    @property
    def circuit_key(self) -> str:
        """`METHOD:path`, independent of query and body."""
        return f"{self.method}:{self.path}"

    def url(self, base_url: str = "") -> str:
        """Full URL with deterministic query encoding."""
        url = join_url(self.base_url if self.base_url is not None else base_url, self.path)
        if qs := encode_query(self.query):
            return f"{url}{'&' if '?' in url else '?'}{qs}"
        return url

    def with_query(self, **params: Any) -> RequestDescriptor:
        """Copy with query parameters merged in (None removes a parameter)."""
        merged = {**self.query, **params}
        return self.model_copy(update={"query": {k: v for k, v in merged.items() if v is not None}})

    def with_headers(self, **headers: str) -> RequestDescriptor:
        return self.model_copy(update={"headers": {**self.headers, **headers}})
