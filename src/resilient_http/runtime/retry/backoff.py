"""Backoff strategies and Retry-After parsing.

Provides pluggable delay calculation for retry attempts, in milliseconds:
- FullJitterBackoff: base * 2^attempt + uniform(0, base) (default)
- ExponentialBackoff: Exponential growth with multiplicative jitter and cap
- ConstantBackoff: Fixed delay

Attempt numbers are 0-indexed: the delay after the first failed attempt
is computed for attempt 0.
"""

from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class Backoff(Protocol):
    """Protocol for backoff delay calculation."""

    def delay(self, attempt: int) -> float:
        """Delay in milliseconds before the attempt following `attempt`."""
        ...


def compute_backoff(base_ms: float, attempt: int, *, rng: Callable[[], float] = random.random) -> float:
    """Exponential backoff with full-width additive jitter.

    Result lies in [base * 2^attempt, base * 2^attempt + base).
    """
    return base_ms * (2 ** attempt) + rng() * base_ms


@dataclass(frozen=True, slots=True)
class FullJitterBackoff:
    """Exponential growth plus uniform jitter in [0, base).

    Attributes:
        base: Base delay in milliseconds (default: 500)
        max_delay: Optional cap on the computed delay
        rng: Source of uniform [0, 1) values, injectable for tests
    """

    base: float = 500.0
    max_delay: float | None = None
    rng: Callable[[], float] = field(default=random.random, compare=False, repr=False)

    def delay(self, attempt: int) -> float:
        d = compute_backoff(self.base, attempt, rng=self.rng)
        return min(d, self.max_delay) if self.max_delay is not None else d


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff with 0.5-1.5x multiplicative jitter.

    Delay = min(base * (multiplier ^ attempt), max_delay) * jitter
    """

    base: float = 500.0
    max_delay: float = 60_000.0
    multiplier: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        d = min(self.base * (self.multiplier ** attempt), self.max_delay)
        return d * (0.5 + random.random()) if self.jitter else d


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    """Fixed delay between retries, for APIs with a known cooldown."""

    delay_ms: float = 1000.0

    def delay(self, attempt: int) -> float:
        return self.delay_ms


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into a non-negative millisecond delay.

    Accepts delta-seconds (integer or decimal) or an HTTP date. Returns None
    when the header is absent or unparsable.
    """
    if value is None or not (value := value.strip()):
        return None
    try:
        return max(0.0, float(value) * 1000.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds() * 1000.0)


def retry_after_from_headers(headers: Mapping[str, str], *, now: datetime | None = None) -> float | None:
    """Find and parse Retry-After in a header mapping (case-insensitive)."""
    for key, value in headers.items():
        if key.lower() == "retry-after":
            return parse_retry_after(value, now=now)
    return None
