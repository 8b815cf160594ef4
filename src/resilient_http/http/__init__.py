"""HTTP layer: request descriptors, auth, transport seam and the request executor."""

from .auth import ApiKeyAuth, Auth, BearerAuth
from .executor import ClientConfig, RawResponse, RequestExecutor, ResponseDecoder, json_decoder
from .interceptors import IdempotencyKeyInterceptor, InterceptContext, Interceptor
from .outcome import RateLimitFeedback, RequestOutcome, aggregate_outcomes
from .request import READ_METHODS, HttpMethod, RequestDescriptor, encode_query, join_url
from .transport import HttpxResponse, HttpxTransport, RequestInit, Transport, TransportResponse

__all__ = [
    "READ_METHODS",
    "ApiKeyAuth",
    "Auth",
    "BearerAuth",
    "ClientConfig",
    "HttpMethod",
    "HttpxResponse",
    "HttpxTransport",
    "IdempotencyKeyInterceptor",
    "InterceptContext",
    "Interceptor",
    "RateLimitFeedback",
    "RawResponse",
    "RequestDescriptor",
    "RequestExecutor",
    "RequestInit",
    "RequestOutcome",
    "ResponseDecoder",
    "Transport",
    "TransportResponse",
    "aggregate_outcomes",
    "encode_query",
    "join_url",
    "json_decoder",
]
