"""Per-attempt request metrics.

The executor reports exactly one RequestMetrics record per attempt,
including cache hits (duration 0, attempt 0). Sinks are plain objects
implementing `record_request`; plug in statsd, Prometheus or anything
else by adapting that one method.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Protocol, runtime_checkable

from .logger import BoundLogger, get_logger


@dataclass(frozen=True, slots=True)
class RequestMetrics:
    """One attempt (or cache hit) of a logical call."""
    client: str
    operation: str
    duration_ms: float
    status: int
    cache_hit: bool
    attempt: int
    error_category: str | None = None


@runtime_checkable
class MetricsSink(Protocol):
    """Protocol for metrics collection backends."""

    def record_request(self, metrics: RequestMetrics) -> None: ...


class NoopMetricsSink:
    """Discards every record (default)."""

    __slots__ = ()

    def record_request(self, metrics: RequestMetrics) -> None:
        pass


@dataclass(slots=True)
class LogMetricsSink:
    """Logs each record at debug level as `http.metrics`."""

    log: BoundLogger = field(default_factory=lambda: get_logger("resilient_http.metrics"))

    def record_request(self, metrics: RequestMetrics) -> None:
        self.log.debug("http.metrics", **asdict(metrics))


class InMemoryMetricsSink:
    """Keeps records in memory, thread-safe. Useful for tests and ad-hoc inspection."""

    __slots__ = ("_records", "_lock")

    def __init__(self) -> None:
        self._records: list[RequestMetrics] = []
        self._lock = threading.Lock()

    def record_request(self, metrics: RequestMetrics) -> None:
        with self._lock:
            self._records.append(metrics)

    @property
    def records(self) -> list[RequestMetrics]:
        with self._lock:
            return list(self._records)

    def by_operation(self) -> dict[str, list[RequestMetrics]]:
        grouped: dict[str, list[RequestMetrics]] = defaultdict(list)
        for record in self.records:
            grouped[record.operation].append(record)
        return dict(grouped)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
