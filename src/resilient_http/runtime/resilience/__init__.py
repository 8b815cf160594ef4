"""Rate limiter and circuit breaker contracts with default implementations."""

from .breaker import (
    CircuitBreaker,
    CircuitBreakerContract,
    CircuitState,
    KeyedCircuitBreaker,
    MemoryStateStore,
    NoopCircuitBreaker,
    State,
    StateStore,
    counts_as_fault,
)
from .rate_limit import NoopRateLimiter, RateLimiter, SlidingWindowRateLimiter

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerContract",
    "CircuitState",
    "KeyedCircuitBreaker",
    "MemoryStateStore",
    "NoopCircuitBreaker",
    "NoopRateLimiter",
    "RateLimiter",
    "SlidingWindowRateLimiter",
    "State",
    "StateStore",
    "counts_as_fault",
]
