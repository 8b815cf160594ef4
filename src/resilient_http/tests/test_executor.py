"""Tests for the request executor: retries, backoff, caching, breaker, deadlines."""

from __future__ import annotations

import asyncio
import time

import pytest

from resilient_http.foundation.errors import (
    CircuitOpenError,
    DecodeError,
    ErrorCategory,
    HttpStatusError,
    NetworkError,
    RetriesExhaustedError,
)
from resilient_http.http import BearerAuth, ClientConfig, RequestDescriptor, RequestExecutor, json_decoder
from resilient_http.io.cache import MemoryCache
from resilient_http.runtime.observability import InMemoryMetricsSink
from resilient_http.runtime.resilience import KeyedCircuitBreaker, SlidingWindowRateLimiter, State
from resilient_http.runtime.retry import FullJitterBackoff, RetryPolicy

from conftest import FakeResponse, FakeTransport, ManualClock, RecordingSleep


def make_executor(transport: FakeTransport, sleep: RecordingSleep, *, max_retries: int = 3,
                  base: float = 500.0, **kw: object) -> RequestExecutor:
    config = ClientConfig(
        name="test",
        base_url="https://api.test",
        retry=RetryPolicy(max_retries=max_retries, backoff=FullJitterBackoff(base=base)),
        **kw.pop("config", {}),  # type: ignore[arg-type]
    )
    return RequestExecutor(config, transport=transport, sleep=sleep, **kw)  # type: ignore[arg-type]


# ─────────────────────────────────────────────────────────────────────────────
# Retry bound and idempotency
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_idempotent_500_exhausts_after_max_retries_plus_one(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(500, "boom")])
    executor = make_executor(transport, sleep, max_retries=3)

    with pytest.raises(RetriesExhaustedError) as exc:
        await executor.execute(RequestDescriptor(path="/v1/items"))

    assert transport.count == 4
    assert len(sleep.delays) == 3
    err = exc.value
    assert err.status == 500
    assert err.attempts == 4
    assert err.category is ErrorCategory.SERVER
    assert isinstance(err.last_error, HttpStatusError)
    assert err.__cause__ is err.last_error
    assert err.body == "boom"
    assert err.outcome is not None and err.outcome.attempts == 4 and not err.outcome.ok


@pytest.mark.asyncio
async def test_non_idempotent_write_fails_after_one_call(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(500)])
    executor = make_executor(transport, sleep)

    with pytest.raises(HttpStatusError) as exc:
        await executor.execute(RequestDescriptor(method="POST", path="/v1/orders", body={"qty": 1}))

    assert transport.count == 1
    assert type(exc.value) is HttpStatusError
    assert exc.value.status == 500
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_explicit_idempotent_write_is_retried(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(503), FakeResponse(200, {"ok": True})])
    executor = make_executor(transport, sleep)

    result = await executor.execute(RequestDescriptor(method="PUT", path="/v1/orders/1", body={}, idempotent=True))

    assert result == {"ok": True}
    assert transport.count == 2


@pytest.mark.asyncio
async def test_non_retryable_status_fails_immediately(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(404, "missing")])
    executor = make_executor(transport, sleep)

    with pytest.raises(HttpStatusError) as exc:
        await executor.execute(RequestDescriptor(path="/v1/items/9"))

    assert transport.count == 1
    assert exc.value.category is ErrorCategory.NOT_FOUND
    assert exc.value.body == "missing"


@pytest.mark.asyncio
async def test_network_error_is_retried_like_5xx(sleep: RecordingSleep) -> None:
    transport = FakeTransport([ConnectionError("reset"), FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep)

    assert await executor.execute(RequestDescriptor(path="/v1/items")) == {"v": 1}
    assert transport.count == 2
    assert len(sleep.delays) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Backoff and Retry-After
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_retry_after_seconds_takes_precedence(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(429, headers={"Retry-After": "2"}), FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep, base=10.0)

    await executor.execute(RequestDescriptor(path="/v1/quotes"))

    assert transport.count == 2
    assert sleep.delays[0] >= 2.0


@pytest.mark.asyncio
async def test_backoff_grows_within_jitter_window(sleep: RecordingSleep) -> None:
    base = 100.0
    transport = FakeTransport([FakeResponse(503)] * 3 + [FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep, base=base)

    await executor.execute(RequestDescriptor(path="/v1/items"))

    assert len(sleep.delays) == 3
    for attempt, seconds in enumerate(sleep.delays):
        low = base * 2 ** attempt
        assert low - 1e-6 <= seconds * 1000.0 < low + base + 1e-6


# ─────────────────────────────────────────────────────────────────────────────
# Cache
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cache_hit_within_ttl_and_miss_after(sleep: RecordingSleep) -> None:
    clock = ManualClock()
    transport = FakeTransport([FakeResponse(200, {"price": 10})])
    metrics = InMemoryMetricsSink()
    executor = make_executor(transport, sleep, cache=MemoryCache(clock=clock), metrics=metrics)
    descriptor = RequestDescriptor(path="/v1/quotes", query={"symbol": "ACME"}, cache_ttl_ms=1000)

    assert await executor.execute(descriptor) == {"price": 10}
    clock.advance(500)
    assert await executor.execute(descriptor) == {"price": 10}
    assert transport.count == 1
    assert [r.cache_hit for r in metrics.records] == [False, True]

    clock.advance(501)
    await executor.execute(descriptor)
    assert transport.count == 2


@pytest.mark.asyncio
async def test_query_order_does_not_change_cache_key(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep, cache=MemoryCache())

    await executor.execute(RequestDescriptor(path="/v1/q", query={"a": 1, "b": [1, 2]}, cache_ttl_ms=1000))
    await executor.execute(RequestDescriptor(path="/v1/q", query={"b": [1, 2], "a": 1}, cache_ttl_ms=1000))

    assert transport.count == 1
    assert transport.calls[0].url == "https://api.test/v1/q?a=1&b=1&b=2"


@pytest.mark.asyncio
async def test_writes_are_not_cached_without_explicit_key(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep, cache=MemoryCache())
    descriptor = RequestDescriptor(method="POST", path="/v1/search", body={"q": "x"}, cache_ttl_ms=1000)

    await executor.execute(descriptor)
    await executor.execute(descriptor)
    assert transport.count == 2

    keyed = descriptor.model_copy(update={"cache_key": "search:x"})
    await executor.execute(keyed)
    await executor.execute(keyed)
    assert transport.count == 3


class BrokenCache:
    async def get(self, key: str) -> None:
        return None

    async def set(self, key: str, value: object, ttl_ms: float | None = None) -> None:
        raise ConnectionError("cache down")

    async def delete(self, key: str) -> bool:
        return False


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_call(sleep: RecordingSleep, captured_logs) -> None:
    transport = FakeTransport([FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep, cache=BrokenCache())

    assert await executor.execute(RequestDescriptor(path="/v1/items", cache_ttl_ms=1000)) == {"v": 1}
    assert "http.cache.write_failed" in captured_logs.events()


# ─────────────────────────────────────────────────────────────────────────────
# Circuit breaker
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_open_circuit_refuses_without_network(sleep: RecordingSleep) -> None:
    clock = ManualClock()
    breaker = KeyedCircuitBreaker(failure_threshold=2, recovery_ms=1000, success_threshold=1, clock=clock)
    transport = FakeTransport([FakeResponse(500), FakeResponse(500), FakeResponse(200, {"v": 1})])
    executor = make_executor(transport, sleep, max_retries=0, breaker=breaker)
    descriptor = RequestDescriptor(path="/v1/items", query={"page": 1})

    for _ in range(2):
        with pytest.raises(RetriesExhaustedError):
            await executor.execute(descriptor)
    assert breaker.state("GET:/v1/items") is State.OPEN

    with pytest.raises(CircuitOpenError) as exc:
        await executor.execute(descriptor.with_query(page=2))
    assert transport.count == 2
    assert exc.value.retry_after_ms == 1000
    assert exc.value.category is ErrorCategory.CIRCUIT_OPEN

    clock.advance(1000)
    assert await executor.execute(descriptor) == {"v": 1}
    assert breaker.state("GET:/v1/items") is State.CLOSED


@pytest.mark.asyncio
async def test_client_errors_do_not_trip_breaker(sleep: RecordingSleep) -> None:
    breaker = KeyedCircuitBreaker(failure_threshold=1, clock=ManualClock())
    transport = FakeTransport([FakeResponse(400)])
    executor = make_executor(transport, sleep, breaker=breaker)

    for _ in range(3):
        with pytest.raises(HttpStatusError):
            await executor.execute(RequestDescriptor(path="/v1/items"))
    assert transport.count == 3
    assert breaker.state("GET:/v1/items") is State.CLOSED


# ─────────────────────────────────────────────────────────────────────────────
# Deadlines and cancellation
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_attempt_timeout_surfaces_as_status_zero(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(200, {"v": 1})], delay=1.0)
    executor = make_executor(transport, sleep, max_retries=1, config={"timeout_ms": 20})

    with pytest.raises(RetriesExhaustedError) as exc:
        await executor.execute(RequestDescriptor(path="/v1/slow"))

    assert transport.count == 2
    assert exc.value.status == 0
    assert exc.value.category is ErrorCategory.TIMEOUT
    assert isinstance(exc.value.last_error, NetworkError)


@pytest.mark.asyncio
async def test_cancel_signal_aborts_attempt(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(200, {"v": 1})], delay=1.0)
    executor = make_executor(transport, sleep)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(NetworkError) as exc:
        await executor.execute(RequestDescriptor(method="POST", path="/v1/orders", body={}), cancel=cancel)

    assert exc.value.category is ErrorCategory.CANCELLED
    assert transport.count <= 1


# ─────────────────────────────────────────────────────────────────────────────
# Request construction and decoding
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_headers_auth_and_body_encoding(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(200, {"id": "r1"})])
    auth = BearerAuth(token="sk-test-123456", organization="org_1", project="proj_1")
    executor = make_executor(transport, sleep, config={"auth": auth, "default_headers": {"X-Client": "t"}})

    await executor.execute(RequestDescriptor(method="POST", path="/v1/responses", body={"input": "hi"}))

    init = transport.calls[0].init
    assert init.method == "POST"
    assert init.headers["Authorization"] == "Bearer sk-test-123456"
    assert init.headers["OpenAI-Organization"] == "org_1"
    assert init.headers["OpenAI-Project"] == "proj_1"
    assert init.headers["Accept"] == "application/json"
    assert init.headers["Content-Type"] == "application/json"
    assert init.headers["X-Client"] == "t"
    assert init.content == b'{"input":"hi"}'
    assert init.timeout_ms == 30_000.0


@pytest.mark.asyncio
async def test_json_decoder_falls_back_to_text_for_non_json() -> None:
    assert await json_decoder(FakeResponse(200, "plain", headers={"content-type": "text/plain"})) == "plain"
    assert await json_decoder(FakeResponse(200, '{"a": 1}')) == {"a": 1}


@pytest.mark.asyncio
async def test_bad_json_body_raises_decode_error(sleep: RecordingSleep) -> None:
    transport = FakeTransport([FakeResponse(200, "{not json", headers={"content-type": "application/json"})])
    executor = make_executor(transport, sleep)

    with pytest.raises(DecodeError) as exc:
        await executor.execute(RequestDescriptor(path="/v1/items"))
    assert exc.value.category is ErrorCategory.DECODE
    assert transport.count == 1


@pytest.mark.asyncio
async def test_request_raw_returns_open_response_with_outcome(sleep: RecordingSleep) -> None:
    body = FakeResponse(200, {"v": 1}, headers={"x-ratelimit-remaining": "7"})
    transport = FakeTransport([FakeResponse(502), body])
    executor = make_executor(transport, sleep)

    async with await executor.request_raw(RequestDescriptor(path="/v1/items")) as raw:
        assert raw.outcome.ok and raw.outcome.attempts == 2
        assert raw.outcome.rate_limit is not None and raw.outcome.rate_limit.remaining == 7
        assert await raw.response.json() == {"v": 1}
        assert not body.closed
    assert body.closed


@pytest.mark.asyncio
async def test_circuit_refusal_is_recorded_in_metrics(sleep: RecordingSleep) -> None:
    breaker = KeyedCircuitBreaker(failure_threshold=1, recovery_ms=1000, clock=ManualClock())
    metrics = InMemoryMetricsSink()
    transport = FakeTransport([FakeResponse(502)])
    executor = make_executor(transport, sleep, max_retries=0, breaker=breaker, metrics=metrics)

    with pytest.raises(RetriesExhaustedError):
        await executor.execute(RequestDescriptor(path="/v1/items"))
    with pytest.raises(CircuitOpenError) as exc:
        await executor.execute(RequestDescriptor(path="/v1/items"))

    refused = metrics.records[-1]
    assert len(metrics.records) == 2
    assert refused.status == 0
    assert refused.error_category == "circuit_open"
    assert exc.value.outcome is not None and not exc.value.outcome.ok
    assert transport.count == 1


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_retrying() -> None:
    cancel = asyncio.Event()

    async def slow_sleep(_: float) -> None:
        cancel.set()
        await asyncio.sleep(10)

    transport = FakeTransport([FakeResponse(503), FakeResponse(200, {"v": 1})])
    executor = RequestExecutor(ClientConfig(base_url="https://api.test"), transport=transport, sleep=slow_sleep)

    started = time.monotonic()
    with pytest.raises(NetworkError) as exc:
        await executor.execute(RequestDescriptor(path="/v1/items"), cancel=cancel)

    assert time.monotonic() - started < 5
    assert exc.value.category is ErrorCategory.CANCELLED
    assert isinstance(exc.value.__cause__, HttpStatusError)
    assert transport.count == 1


# ─────────────────────────────────────────────────────────────────────────────
# Shared collaborators under concurrent calls
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_concurrent_calls_share_cache_breaker_and_limiter() -> None:
    def reply(url: str, _init: object) -> FakeResponse:
        return FakeResponse(200, {"url": url})

    transport = FakeTransport([reply], delay=0.005)
    cache = MemoryCache()
    breaker = KeyedCircuitBreaker(failure_threshold=3, recovery_ms=1000)
    limiter = SlidingWindowRateLimiter(max_calls=5, window_ms=50, per_key=False)
    metrics = InMemoryMetricsSink()
    executor = RequestExecutor(ClientConfig(name="test", base_url="https://api.test"), transport=transport,
                               cache=cache, breaker=breaker, rate_limiter=limiter, metrics=metrics)
    descriptors = [RequestDescriptor(path=f"/v1/items/{i % 3}", query={"n": i}, cache_ttl_ms=60_000)
                   for i in range(15)]

    started = time.monotonic()
    results = await asyncio.gather(*(executor.execute(d) for d in descriptors))
    elapsed = time.monotonic() - started

    assert [r["url"] for r in results] == [executor.build_url(d) for d in descriptors]
    assert transport.count == 15
    assert elapsed >= 0.095
    assert limiter.pending("any") <= 5
    assert cache.size == 15
    assert all(breaker.state(f"GET:/v1/items/{i}") is State.CLOSED for i in range(3))

    again = await asyncio.gather(*(executor.execute(d) for d in descriptors))
    assert again == results
    assert transport.count == 15
    assert sum(r.cache_hit for r in metrics.records) == 15


@pytest.mark.asyncio
async def test_concurrent_failures_open_shared_breaker() -> None:
    transport = FakeTransport([FakeResponse(500)], delay=0.01)
    breaker = KeyedCircuitBreaker(failure_threshold=3, recovery_ms=60_000)
    metrics = InMemoryMetricsSink()
    executor = RequestExecutor(ClientConfig(base_url="https://api.test"), transport=transport, breaker=breaker,
                               metrics=metrics)
    descriptor = RequestDescriptor(method="POST", path="/v1/orders", body={"qty": 1})

    outcomes = await asyncio.gather(*(executor.execute(descriptor) for _ in range(10)), return_exceptions=True)

    assert all(type(o) is HttpStatusError for o in outcomes)
    assert transport.count == 10
    assert breaker.state("POST:/v1/orders") is State.OPEN

    with pytest.raises(CircuitOpenError):
        await executor.execute(descriptor)
    assert transport.count == 10
    assert [r.error_category for r in metrics.records].count("circuit_open") == 1
