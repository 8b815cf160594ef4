"""Retry policy and backoff strategies."""

from .backoff import (
    Backoff,
    ConstantBackoff,
    ExponentialBackoff,
    FullJitterBackoff,
    compute_backoff,
    parse_retry_after,
    retry_after_from_headers,
)
from .policy import RetryPolicy

__all__ = [
    "Backoff",
    "ConstantBackoff",
    "ExponentialBackoff",
    "FullJitterBackoff",
    "RetryPolicy",
    "compute_backoff",
    "parse_retry_after",
    "retry_after_from_headers",
]
