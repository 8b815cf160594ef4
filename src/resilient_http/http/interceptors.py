"""Request interceptors: hooks around every attempt of a logical call.

Interceptors are listed on ClientConfig and run in order on each attempt:

    before_send      may edit `ctx.headers` before the attempt goes out
    after_response   sees every transport response, successful or not
    on_error         sees every failed attempt, including breaker refusals

A `before_send` failure aborts the call. Failures in the two observing hooks
are logged and do not change the outcome. `ctx.data` lives for the whole
logical call, so state kept there is shared by all of its attempts.

Example:
    >>> class TraceHeader(Interceptor):
    ...     async def before_send(self, ctx):
    ...         ctx.headers["X-Trace"] = ctx.data.setdefault("trace", new_trace_id())
    >>> config = ClientConfig(interceptors=[TraceHeader(), IdempotencyKeyInterceptor()])
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from resilient_http.foundation.errors import RequestError

    from .request import RequestDescriptor
    from .transport import TransportResponse


@dataclass(slots=True)
class InterceptContext:
    """Per-call state handed to every hook.

    Attributes:
        descriptor: The logical request
        url: Fully built request URL
        headers: Headers of the current attempt (editable in before_send)
        attempt: Zero-based attempt index
        data: Scratch space shared across the call's attempts
    """
    descriptor: RequestDescriptor
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    attempt: int = 0
    data: dict[str, object] = field(default_factory=dict)


class Interceptor:
    """Base interceptor; override only the hooks you need."""

    async def before_send(self, ctx: InterceptContext) -> None:
        return None

    async def after_response(self, ctx: InterceptContext, response: TransportResponse) -> None:
        return None

    async def on_error(self, ctx: InterceptContext, error: RequestError) -> None:
        return None


class IdempotencyKeyInterceptor(Interceptor):
    """Sends an idempotency key header on every attempt of a write.

    The key is `descriptor.idempotency_key` when set. Otherwise, with
    `generate=True`, a random key is created once per logical call and
    reused on each retry. Read methods and requests that already carry the
    header are left alone.

    Args:
        header_name: Header to set
        generate: Create a key for writes that do not supply one
    """

    __slots__ = ("header_name", "generate")

    def __init__(self, header_name: str = "Idempotency-Key", *, generate: bool = False) -> None:
        self.header_name = header_name
        self.generate = generate

    async def before_send(self, ctx: InterceptContext) -> None:
        descriptor = ctx.descriptor
        if descriptor.is_read or any(k.lower() == self.header_name.lower() for k in ctx.headers):
            return
        key = descriptor.idempotency_key
        if key is None and self.generate:
            key = str(ctx.data.setdefault("idempotency_key", uuid.uuid4().hex))
        if key is not None:
            ctx.headers[self.header_name] = key
