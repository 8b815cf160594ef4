"""Error taxonomy and JSON type aliases."""

from .errors import (
    RETRYABLE_STATUSES,
    CircuitOpenError,
    DecodeError,
    ErrorCategory,
    HttpStatusError,
    NetworkError,
    RequestError,
    RetriesExhaustedError,
    StreamFailedError,
    categorize_status,
)
from .types import JsonDict, JsonMapping, JsonPrimitive, JsonValue

__all__ = [
    "RETRYABLE_STATUSES",
    "CircuitOpenError",
    "DecodeError",
    "ErrorCategory",
    "HttpStatusError",
    "JsonDict",
    "JsonMapping",
    "JsonPrimitive",
    "JsonValue",
    "NetworkError",
    "RequestError",
    "RetriesExhaustedError",
    "StreamFailedError",
    "categorize_status",
]
