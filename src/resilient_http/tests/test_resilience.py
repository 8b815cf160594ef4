"""Tests for the circuit breaker and sliding-window rate limiter."""

from __future__ import annotations

import pytest

from resilient_http.foundation.errors import CircuitOpenError, HttpStatusError, NetworkError
from resilient_http.runtime.resilience import CircuitBreaker, KeyedCircuitBreaker, SlidingWindowRateLimiter, State

from conftest import ManualClock, RecordingSleep


# ─────────────────────────────────────────────────────────────────────────────
# Circuit breaker
# ─────────────────────────────────────────────────────────────────────────────


def test_breaker_opens_then_half_opens_then_closes() -> None:
    clock = ManualClock()
    cb = CircuitBreaker(failure_threshold=2, recovery_ms=100, success_threshold=2, clock=clock)

    cb.record_failure()
    assert cb.state is State.CLOSED
    cb.record_failure()
    assert cb.state is State.OPEN and not cb.allow()
    assert cb.retry_after_ms == 100

    clock.advance(100)
    assert cb.allow() and cb.state is State.HALF_OPEN
    cb.record_success()
    assert cb.state is State.HALF_OPEN
    cb.record_success()
    assert cb.state is State.CLOSED and cb.failures == 0


def test_half_open_failure_reopens() -> None:
    clock = ManualClock()
    cb = CircuitBreaker(failure_threshold=1, recovery_ms=50, clock=clock)
    cb.record_failure()
    clock.advance(50)
    assert cb.state is State.HALF_OPEN
    cb.record_failure()
    assert cb.state is State.OPEN


@pytest.mark.asyncio
async def test_keyed_breaker_isolates_keys() -> None:
    breaker = KeyedCircuitBreaker(failure_threshold=1, recovery_ms=1000, clock=ManualClock())
    await breaker.on_failure("GET:/a", HttpStatusError("boom", status=502))

    with pytest.raises(CircuitOpenError) as exc:
        await breaker.before_request("GET:/a")
    assert exc.value.circuit_key == "GET:/a"
    assert not exc.value.is_retryable
    await breaker.before_request("GET:/b")

    breaker.reset("GET:/a")
    await breaker.before_request("GET:/a")


@pytest.mark.asyncio
async def test_keyed_breaker_counts_only_upstream_faults() -> None:
    breaker = KeyedCircuitBreaker(failure_threshold=1, clock=ManualClock())
    await breaker.on_failure("k", HttpStatusError("bad", status=422))
    assert breaker.state("k") is State.CLOSED
    await breaker.on_failure("k", NetworkError("reset"))
    assert breaker.state("k") is State.OPEN


# ─────────────────────────────────────────────────────────────────────────────
# Rate limiter
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_limiter_waits_for_window_to_slide() -> None:
    clock = ManualClock()
    sleep = RecordingSleep(clock)
    limiter = SlidingWindowRateLimiter(max_calls=2, window_ms=1000, clock=clock, sleep=lambda s: sleep(s * 1000))

    await limiter.throttle("GET:/a")
    clock.advance(100)
    await limiter.throttle("GET:/a")
    assert sleep.delays == []

    await limiter.throttle("GET:/a")
    assert sleep.delays == [pytest.approx(900)]
    assert limiter.pending("GET:/a") == 2


@pytest.mark.asyncio
async def test_limiter_keys_are_independent_unless_global() -> None:
    clock = ManualClock()
    sleep = RecordingSleep(clock)
    per_key = SlidingWindowRateLimiter(max_calls=1, window_ms=1000, clock=clock, sleep=sleep)
    await per_key.throttle("a")
    await per_key.throttle("b")
    assert sleep.delays == []

    shared = SlidingWindowRateLimiter(max_calls=1, window_ms=1000, per_key=False, clock=clock, sleep=sleep)
    await shared.throttle("a")
    assert shared.pending("b") == 1


@pytest.mark.asyncio
async def test_limiter_honors_server_advised_block() -> None:
    clock = ManualClock()
    sleep = RecordingSleep(clock)
    limiter = SlidingWindowRateLimiter(max_calls=100, window_ms=1000, clock=clock,
                                       sleep=lambda s: sleep(s * 1000))

    await limiter.on_error("k", HttpStatusError("slow down", status=429, retry_after_ms=2000))
    await limiter.throttle("k")
    assert sleep.delays == [pytest.approx(2000)]

    await limiter.on_error("k", HttpStatusError("boom", status=500, retry_after_ms=5000))
    await limiter.throttle("k")
    assert len(sleep.delays) == 1
