"""Retry policy for the request executor.

Decides whether a failed attempt is retried and how long to wait first.
A server-advised delay (Retry-After) always takes precedence over the
computed backoff.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer, field_validator

from resilient_http.foundation.errors import RETRYABLE_STATUSES, RequestError

from .backoff import Backoff, FullJitterBackoff


class RetryPolicy(BaseModel):
    """Configurable retry policy.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        backoff: Backoff strategy used when the server gives no Retry-After
        retryable_statuses: Statuses eligible for retry (0 = network/timeout)

    Example:
        >>> policy = RetryPolicy(max_retries=2, backoff=FullJitterBackoff(base=250))
        >>> policy.should_retry(HttpStatusError("boom", status=503), idempotent=True, attempt=0)
        True
    """

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
        validate_default=True,
        extra="forbid",
        revalidate_instances="never",
    )

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    backoff: Backoff = Field(default_factory=FullJitterBackoff, repr=False)
    retryable_statuses: frozenset[int] = RETRYABLE_STATUSES

    @field_validator("retryable_statuses", mode="before")
    @classmethod
    def _normalize_statuses(cls, v: frozenset[int] | set[int] | list[int] | tuple[int, ...]) -> frozenset[int]:
        return v if isinstance(v, frozenset) else frozenset(int(s) for s in v)

    @field_serializer("retryable_statuses")
    def _serialize_statuses(self, v: frozenset[int]) -> list[int]:
        return sorted(v)

    @computed_field
    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable_status(self, status: int) -> bool:
        return status in self.retryable_statuses

    def should_retry(self, error: RequestError, *, idempotent: bool, attempt: int) -> bool:
        """Whether a failed 0-indexed `attempt` may be followed by another."""
        return idempotent and self.is_retryable_status(error.status) and attempt < self.max_retries

    def get_delay(self, error: RequestError, attempt: int) -> float:
        """Milliseconds to wait after failed `attempt`. Server advice wins."""
        if error.retry_after_ms is not None and error.retry_after_ms > 0:
            return error.retry_after_ms
        return self.backoff.delay(attempt)
