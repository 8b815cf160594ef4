"""resilient-http - Resilient async API client core.

One request executor runs every outbound call through cache, circuit
breaker, rate limiter and a bounded retry loop with jittered backoff that
honors Retry-After. On top of it sit an SSE streaming decoder, a
pagination engine and a bounded state cache for conversation chaining.

Quick Start:
    >>> from resilient_http import RequestExecutor, RequestDescriptor, BearerAuth
    >>>
    >>> executor = RequestExecutor.from_settings(auth=BearerAuth(token="sk-..."))
    >>> models = await executor.execute(RequestDescriptor(path="/v1/models", cache_ttl_ms=60_000))

Streaming:
    >>> stream = await stream_request(executor, RequestDescriptor(method="POST", path="/v1/responses",
    ...                                                           body={"input": "hi", "stream": True}))
    >>> async for event in stream:
    ...     if event.kind is StreamEventKind.TEXT_DELTA:
    ...         print(event.text, end="")
    >>> result = await stream.final()

Pagination:
    >>> result = await Paginator(executor).paginate(
    ...     RequestDescriptor(path="/v1/files"), CursorStrategy("after", "last_id"), ArrayFieldExtractor("data"))

Configuration comes from RESILIENT_HTTP_* environment variables (or .env),
see `ResilientHttpSettings`.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Errors
from .foundation.errors import (
    CircuitOpenError,
    DecodeError,
    ErrorCategory,
    HttpStatusError,
    NetworkError,
    RequestError,
    RetriesExhaustedError,
    StreamFailedError,
)

# Configuration
from .foundation.config import ResilientHttpSettings, clear_settings_cache, get_settings

# HTTP
from .http import (
    ApiKeyAuth,
    BearerAuth,
    ClientConfig,
    HttpxTransport,
    IdempotencyKeyInterceptor,
    Interceptor,
    RateLimitFeedback,
    RawResponse,
    RequestDescriptor,
    RequestExecutor,
    RequestOutcome,
    Transport,
    aggregate_outcomes,
)

# Cache
from .io.cache import Cache, MemoryCache, RedisCache

# Streaming
from .io.streaming import (
    ChatCompletionsPayloadDecoder,
    ResponseResult,
    ResponsesPayloadDecoder,
    ResponseStream,
    StreamEvent,
    StreamEventKind,
    decode_stream,
    stream_request,
)

# Pagination
from .pagination import (
    ArrayFieldExtractor,
    CursorStrategy,
    OffsetLimitStrategy,
    PageNumberStrategy,
    PaginationLimits,
    PaginationResult,
    Paginator,
    TruncationReason,
)

# Resilience
from .runtime.resilience import KeyedCircuitBreaker, SlidingWindowRateLimiter
from .runtime.retry import FullJitterBackoff, RetryPolicy

# Observability
from .runtime.observability import InMemoryMetricsSink, LogMetricsSink, configure_logging, get_logger

# State
from .state import BoundedStateCache, ConversationChain

__all__ = [
    "__version__",
    # Errors
    "RequestError", "NetworkError", "HttpStatusError", "DecodeError", "RetriesExhaustedError",
    "CircuitOpenError", "StreamFailedError", "ErrorCategory",
    # Configuration
    "ResilientHttpSettings", "get_settings", "clear_settings_cache",
    # HTTP
    "RequestExecutor", "RequestDescriptor", "ClientConfig", "RawResponse", "RequestOutcome",
    "RateLimitFeedback", "aggregate_outcomes", "Transport", "HttpxTransport", "BearerAuth", "ApiKeyAuth",
    "Interceptor", "IdempotencyKeyInterceptor",
    # Cache
    "Cache", "MemoryCache", "RedisCache",
    # Streaming
    "ResponseStream", "StreamEvent", "StreamEventKind", "ResponseResult", "ResponsesPayloadDecoder",
    "ChatCompletionsPayloadDecoder", "decode_stream", "stream_request",
    # Pagination
    "Paginator", "PaginationResult", "PaginationLimits", "TruncationReason",
    "OffsetLimitStrategy", "CursorStrategy", "PageNumberStrategy", "ArrayFieldExtractor",
    # Resilience
    "RetryPolicy", "FullJitterBackoff", "KeyedCircuitBreaker", "SlidingWindowRateLimiter",
    # Observability
    "configure_logging", "get_logger", "LogMetricsSink", "InMemoryMetricsSink",
    # State
    "BoundedStateCache", "ConversationChain",
]
