"""Outcome records for logical calls and their aggregation across pages."""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from resilient_http.foundation.errors import ErrorCategory, JsonDict
from resilient_http.runtime.retry.backoff import retry_after_from_headers

_LIMIT_HEADERS = ("x-ratelimit-limit", "x-ratelimit-limit-requests", "ratelimit-limit")
_REMAINING_HEADERS = ("x-ratelimit-remaining", "x-ratelimit-remaining-requests", "ratelimit-remaining")
_RESET_HEADERS = ("x-ratelimit-reset", "ratelimit-reset")

# Reset values above this are absolute epoch seconds, below it relative seconds.
_EPOCH_THRESHOLD = 1_000_000_000


def _header(headers: Mapping[str, str], names: Sequence[str]) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in names:
        if (value := lowered.get(name)) is not None:
            return value
    return None


def _as_int(value: str | None) -> int | None:
    try:
        return int(float(value)) if value is not None else None
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class RateLimitFeedback:
    """Rate-limit annotations reported by the server."""
    is_rate_limited: bool = False
    retry_after_ms: float | None = None
    limit: int | None = None
    remaining: int | None = None
    reset_at: float | None = None

    @classmethod
    def from_response(cls, status: int, headers: Mapping[str, str], *, now: float | None = None) -> RateLimitFeedback | None:
        """Parse rate-limit headers; None when the response carries none and is not a 429."""
        retry_after = retry_after_from_headers(headers)
        limit = _as_int(_header(headers, _LIMIT_HEADERS))
        remaining = _as_int(_header(headers, _REMAINING_HEADERS))
        reset_at = None
        if (reset := _as_int(_header(headers, _RESET_HEADERS))) is not None:
            reset_at = float(reset) if reset > _EPOCH_THRESHOLD else (now or time.time()) + reset
        if status != 429 and retry_after is None and limit is None and remaining is None and reset_at is None:
            return None
        return cls(status == 429, retry_after, limit, remaining, reset_at)

    def to_dict(self) -> JsonDict:
        return {
            "is_rate_limited": self.is_rate_limited, "retry_after_ms": self.retry_after_ms,
            "limit": self.limit, "remaining": self.remaining, "reset_at": self.reset_at,
        }


@dataclass(frozen=True, slots=True)
class RequestOutcome:
    """Result of one logical call: the last attempt, annotated with the attempt count.

    Timestamps are epoch seconds.
    """
    status: int
    ok: bool
    attempts: int
    started_at: float
    finished_at: float
    error_category: ErrorCategory | None = None
    rate_limit: RateLimitFeedback | None = None
    cache_hit: bool = False

    @property
    def duration_ms(self) -> float:
        return max(0.0, (self.finished_at - self.started_at) * 1000.0)

    def to_dict(self) -> JsonDict:
        return {
            "status": self.status, "ok": self.ok, "attempts": self.attempts,
            "started_at": self.started_at, "finished_at": self.finished_at,
            "duration_ms": round(self.duration_ms, 2),
            "error_category": self.error_category.value if self.error_category else None,
            "rate_limit": self.rate_limit.to_dict() if self.rate_limit else None,
            "cache_hit": self.cache_hit,
        }


def aggregate_outcomes(outcomes: Sequence[RequestOutcome]) -> RequestOutcome | None:
    """Fold per-page outcomes into one.

    ok is the conjunction, attempts the sum. Status and finish time come
    from the last outcome, start time from the first. Error category and
    rate-limit feedback are the most recent non-empty ones, scanning
    backward from the last page.
    """
    if not outcomes:
        return None
    first, last = outcomes[0], outcomes[-1]
    category = next((o.error_category for o in reversed(outcomes) if o.error_category is not None), None)
    rate_limit = next((o.rate_limit for o in reversed(outcomes) if o.rate_limit is not None), None)
    return RequestOutcome(
        status=last.status,
        ok=all(o.ok for o in outcomes),
        attempts=sum(o.attempts for o in outcomes),
        started_at=first.started_at,
        finished_at=last.finished_at,
        error_category=category,
        rate_limit=rate_limit,
        cache_hit=all(o.cache_hit for o in outcomes),
    )
