"""Tests for environment settings, settings-driven wiring and logging output."""

from __future__ import annotations

import io

import orjson
import pytest

from resilient_http.foundation.config import ResilientHttpSettings, clear_settings_cache, get_settings
from resilient_http.http import ClientConfig, RequestDescriptor, RequestExecutor
from resilient_http.io.cache import MemoryCache
from resilient_http.runtime.observability import (
    CaptureRenderer,
    InMemoryMetricsSink,
    JsonRenderer,
    LogMetricsSink,
    RequestMetrics,
    configure_logging,
    get_logger,
    log_context,
)
from resilient_http.runtime.resilience import KeyedCircuitBreaker, NoopCircuitBreaker
from resilient_http.state import BoundedStateCache

from conftest import FakeResponse, FakeTransport


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────


def test_defaults() -> None:
    s = ResilientHttpSettings()
    assert s.retry.max_retries == 3
    assert s.retry.base_delay_ms == 500.0
    assert s.cache.backend == "memory"
    assert s.state.max_size == 1000 and s.state.ttl_ms == 3_600_000.0
    assert s.stream.on_malformed == "skip"


def test_group_prefixes_and_nested_delimiter(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_RETRY_MAX_RETRIES", "5")
    monkeypatch.setenv("RESILIENT_HTTP_HTTP_BASE_URL", "https://api.test/")
    monkeypatch.setenv("RESILIENT_HTTP_BREAKER__ENABLED", "true")
    monkeypatch.setenv("RESILIENT_HTTP_CLIENT_NAME", "market-data")

    s = ResilientHttpSettings()

    assert s.retry.max_retries == 5
    assert s.http.base_url == "https://api.test"
    assert s.breaker.enabled
    assert s.client_name == "market-data"


def test_secret_redis_url_selects_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_CACHE_REDIS_URL", "redis://:hunter2@cache:6379/0")
    s = ResilientHttpSettings()
    assert s.cache.backend == "redis"
    assert "hunter2" not in repr(s.cache)


def test_get_settings_is_cached_until_cleared(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("RESILIENT_HTTP_RETRY_MAX_RETRIES", "7")
    assert get_settings().retry.max_retries == first.retry.max_retries
    clear_settings_cache()
    assert get_settings().retry.max_retries == 7


def test_out_of_range_values_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_RETRY_MAX_RETRIES", "50")
    with pytest.raises(ValueError):
        ResilientHttpSettings()


# ─────────────────────────────────────────────────────────────────────────────
# Wiring from settings
# ─────────────────────────────────────────────────────────────────────────────


def test_client_config_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_RETRY_MAX_RETRIES", "1")
    monkeypatch.setenv("RESILIENT_HTTP_RETRY_BASE_DELAY_MS", "250")
    monkeypatch.setenv("RESILIENT_HTTP_HTTP_TIMEOUT_MS", "1500")

    config = ClientConfig.from_settings(name="override")

    assert config.name == "override"
    assert config.timeout_ms == 1500
    assert config.retry.max_retries == 1
    assert config.retry.backoff.base == 250


@pytest.mark.asyncio
async def test_executor_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_HTTP_BASE_URL", "https://api.test")
    monkeypatch.setenv("RESILIENT_HTTP_BREAKER_ENABLED", "true")
    monkeypatch.setenv("RESILIENT_HTTP_CACHE_MAX_ENTRIES", "10")
    transport = FakeTransport([FakeResponse(200, {"v": 1})])

    executor = RequestExecutor.from_settings(transport=transport)

    assert isinstance(executor.cache, MemoryCache)
    assert isinstance(executor.breaker, KeyedCircuitBreaker)
    assert await executor.execute(RequestDescriptor(path="/v1/items")) == {"v": 1}
    assert transport.calls[0].url == "https://api.test/v1/items"


def test_executor_from_settings_with_features_off(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_CACHE_ENABLED", "false")
    executor = RequestExecutor.from_settings(transport=FakeTransport())
    assert executor.cache is None
    assert isinstance(executor.breaker, NoopCircuitBreaker)


def test_state_cache_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_HTTP_STATE_MAX_SIZE", "2")
    with BoundedStateCache.from_settings() as store:
        for key in "abc":
            store.set(key, key)
        assert len(store) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Logging and metrics
# ─────────────────────────────────────────────────────────────────────────────


def test_json_renderer_writes_one_line_per_entry() -> None:
    out = io.StringIO()
    configure_logging(level="INFO", renderer=JsonRenderer(output=out))
    log = get_logger("resilient_http.test", client="c")

    with log_context(request_id="r1"):
        log.info("http.request.success", status=200)
    log.debug("hidden")

    lines = out.getvalue().splitlines()
    assert len(lines) == 1
    entry = orjson.loads(lines[0])
    assert entry["event"] == "http.request.success"
    assert entry["level"] == "info"
    assert entry["request_id"] == "r1"
    assert entry["client"] == "c" and entry["status"] == 200


def test_bound_context_merges(captured_logs: CaptureRenderer) -> None:
    log = get_logger("x").bind(operation="quotes.list")
    log.warning("http.retry.scheduled", attempt=1)
    entry = captured_logs.entries[-1]
    assert entry.context == {"logger": "x", "operation": "quotes.list", "attempt": 1}


def test_unknown_log_format_rejected() -> None:
    with pytest.raises(ValueError):
        configure_logging(format="xml")


def test_metrics_sinks(captured_logs: CaptureRenderer) -> None:
    record = RequestMetrics(client="c", operation="GET /v1", duration_ms=1.5, status=200, cache_hit=False, attempt=0)
    sink = InMemoryMetricsSink()
    sink.record_request(record)
    sink.record_request(record)
    assert sink.by_operation() == {"GET /v1": [record, record]}
    sink.clear()
    assert sink.records == []

    LogMetricsSink().record_request(record)
    assert captured_logs.entries[-1].event == "http.metrics"
    assert captured_logs.entries[-1].context["status"] == 200
