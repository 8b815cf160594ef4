"""Typed request errors for the resilient client core.

Every failure the executor surfaces is a RequestError subclass carrying
the status, raw body and server-advised retry delay, so callers can branch
on status or category and build provider-specific diagnostics.

Status 0 is reserved for failures where no HTTP response was received
(network errors, timeouts, cancellation).
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import TYPE_CHECKING

from .types import JsonDict

if TYPE_CHECKING:
    from resilient_http.http.outcome import RequestOutcome


class ErrorCategory(StrEnum):
    """Coarse failure classification used for metrics and retry decisions."""
    AUTH = "auth"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SERVER = "server"
    NETWORK = "network"
    CANCELLED = "cancelled"
    CIRCUIT_OPEN = "circuit_open"
    DECODE = "decode"
    UPSTREAM = "upstream"
    UNKNOWN = "unknown"


RETRYABLE_STATUSES: frozenset[int] = frozenset({0, 429, 500, 502, 503, 504})

_STATUS_CATEGORIES: dict[int, ErrorCategory] = {
    0: ErrorCategory.NETWORK,
    400: ErrorCategory.VALIDATION,
    401: ErrorCategory.AUTH,
    402: ErrorCategory.QUOTA_EXCEEDED,
    403: ErrorCategory.AUTH,
    404: ErrorCategory.NOT_FOUND,
    408: ErrorCategory.TIMEOUT,
    422: ErrorCategory.VALIDATION,
    429: ErrorCategory.RATE_LIMIT,
}


@lru_cache(maxsize=128)
def categorize_status(status: int) -> ErrorCategory:
    """Map an HTTP status (0 for no response) to an ErrorCategory."""
    if (category := _STATUS_CATEGORIES.get(status)) is not None:
        return category
    return ErrorCategory.SERVER if status >= 500 else ErrorCategory.UNKNOWN


class RequestError(Exception):
    """Base for all typed request failures.

    Attributes:
        status: HTTP status, or 0 when no response was received
        body: Raw response body (truncated by nobody; callers decide)
        retry_after_ms: Server-advised delay before the next attempt
        category: Coarse classification of the failure
        operation: Metrics label of the originating request
        url: Fully built request URL
        attempts: Number of transport attempts made for the logical call
        outcome: Final RequestOutcome when the executor produced one
    """

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        body: str | None = None,
        retry_after_ms: float | None = None,
        category: ErrorCategory | None = None,
        operation: str | None = None,
        url: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.retry_after_ms = retry_after_ms
        self.category = category or categorize_status(status)
        self.operation = operation
        self.url = url
        self.attempts = attempts
        self.outcome: RequestOutcome | None = None

    @property
    def is_retryable(self) -> bool:
        """Whether the status is one the executor retries for idempotent calls."""
        return self.status in RETRYABLE_STATUSES

    def to_dict(self) -> JsonDict:
        """Serialize for logs and diagnostics."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "category": self.category.value,
            "retry_after_ms": self.retry_after_ms,
            "operation": self.operation,
            "url": self.url,
            "attempts": self.attempts,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, category={self.category.value!r}, message={self.message!r})"


class NetworkError(RequestError):
    """Transport-level failure, timeout or cancellation (status 0)."""

    def __init__(self, message: str, *, category: ErrorCategory = ErrorCategory.NETWORK, **kw: object) -> None:
        super().__init__(message, status=0, category=category, **kw)  # type: ignore[arg-type]


class HttpStatusError(RequestError):
    """Non-2xx response from the upstream service."""


class DecodeError(RequestError):
    """Payload did not parse as expected."""

    def __init__(self, message: str, **kw: object) -> None:
        kw.setdefault("category", ErrorCategory.DECODE)
        super().__init__(message, **kw)  # type: ignore[arg-type]


class CircuitOpenError(RequestError):
    """Circuit breaker refused the attempt before any network activity."""

    def __init__(self, circuit_key: str, *, retry_after_ms: float | None = None, **kw: object) -> None:
        super().__init__(
            f"Circuit open for {circuit_key}",
            status=0,
            retry_after_ms=retry_after_ms,
            category=ErrorCategory.CIRCUIT_OPEN,
            **kw,  # type: ignore[arg-type]
        )
        self.circuit_key = circuit_key

    @property
    def is_retryable(self) -> bool:
        return False


class RetriesExhaustedError(RequestError):
    """All permitted attempts failed.

    Mirrors status, body, retry delay and category of the last attempt's
    error, which is also available as `last_error` and `__cause__`.
    """

    def __init__(self, message: str = "request exceeded retries", *, last_error: RequestError | None = None,
                 **kw: object) -> None:
        if last_error is not None:
            kw.setdefault("status", last_error.status)
            kw.setdefault("body", last_error.body)
            kw.setdefault("retry_after_ms", last_error.retry_after_ms)
            kw.setdefault("category", last_error.category)
            kw.setdefault("operation", last_error.operation)
            kw.setdefault("url", last_error.url)
        super().__init__(message, **kw)  # type: ignore[arg-type]
        self.last_error = last_error


class StreamFailedError(RequestError):
    """The upstream reported a failure inside an already-open stream.

    The HTTP exchange succeeded, so the status stays 0 and the error is not
    retried. `result` holds whatever was assembled before the failure.
    """

    def __init__(self, message: str, *, code: str | None = None, result: object = None, **kw: object) -> None:
        kw.setdefault("category", ErrorCategory.UPSTREAM)
        super().__init__(message, **kw)  # type: ignore[arg-type]
        self.code = code
        self.result = result

    @property
    def is_retryable(self) -> bool:
        return False
