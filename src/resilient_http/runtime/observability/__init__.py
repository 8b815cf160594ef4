"""Structured logging and request metrics."""

from .logger import (
    BoundLogger,
    CaptureRenderer,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    NoOpRenderer,
    configure_logging,
    get_logger,
    log_context,
)
from .metrics import InMemoryMetricsSink, LogMetricsSink, MetricsSink, NoopMetricsSink, RequestMetrics

__all__ = [
    "BoundLogger",
    "CaptureRenderer",
    "ConsoleRenderer",
    "InMemoryMetricsSink",
    "JsonRenderer",
    "LogEntry",
    "LogMetricsSink",
    "LogRenderer",
    "MetricsSink",
    "NoOpRenderer",
    "NoopMetricsSink",
    "RequestMetrics",
    "configure_logging",
    "get_logger",
    "log_context",
]
