"""orjson codec for request bodies, response payloads, SSE records and cache values.

orjson is a core dependency - no fallback to stdlib json.
"""

from __future__ import annotations

from typing import Any

import orjson
from pydantic import BaseModel

from resilient_http.foundation.errors import JsonValue

CONTENT_TYPE = "application/json"

_OPTIONS = orjson.OPT_NON_STR_KEYS | orjson.OPT_UTC_Z


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def encode(data: Any) -> bytes:
    """Serialize to JSON bytes. Pydantic models are dumped in JSON mode."""
    return orjson.dumps(data, default=_default, option=_OPTIONS)


def encode_str(data: Any) -> str:
    return encode(data).decode()


def decode(data: bytes | bytearray | memoryview | str) -> JsonValue:
    """Parse JSON. Raises orjson.JSONDecodeError (a ValueError) on bad input."""
    return orjson.loads(data)
