"""Transport boundary.

The executor talks to the network only through `Transport.send`, which
returns a response-like object with a lazily readable body. Swapping the
transport is the one seam needed for tests. `HttpxTransport` is the
production default built on httpx.AsyncClient.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx

from resilient_http.foundation.errors import ErrorCategory, JsonValue, NetworkError
from resilient_http.io import codec


@dataclass(frozen=True, slots=True)
class RequestInit:
    """Everything the transport needs besides the URL."""
    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes | None = None
    timeout_ms: float | None = None


@runtime_checkable
class TransportResponse(Protocol):
    """Response-like object returned by a transport."""

    @property
    def status(self) -> int: ...
    @property
    def ok(self) -> bool: ...
    @property
    def headers(self) -> Mapping[str, str]: ...

    async def aread(self) -> bytes: ...
    async def text(self) -> str: ...
    async def json(self) -> JsonValue: ...
    def aiter_bytes(self) -> AsyncIterator[bytes]: ...
    async def aclose(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    """Sends one request and returns once response headers are available."""

    async def send(self, url: str, init: RequestInit) -> TransportResponse: ...


# ─────────────────────────────────────────────────────────────────────────────
# httpx implementation
# ─────────────────────────────────────────────────────────────────────────────


class HttpxResponse:
    """Adapts a streamed httpx.Response to TransportResponse."""

    __slots__ = ("_response",)

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def ok(self) -> bool:
        return 200 <= self._response.status_code < 300

    @property
    def headers(self) -> Mapping[str, str]:
        return self._response.headers

    async def aread(self) -> bytes:
        try:
            return await self._response.aread()
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed reading response body: {e}") from e

    async def text(self) -> str:
        await self.aread()
        return self._response.text

    async def json(self) -> JsonValue:
        return codec.decode(await self.aread())

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise NetworkError(f"Stream interrupted: {e}") from e

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxTransport:
    """Default transport on httpx.AsyncClient.

    Connection pooling, TLS and proxies are whatever the client is
    configured with. When no client is given one is created lazily and
    closed by `aclose()`.

    Example:
        >>> async with HttpxTransport() as transport:
        ...     executor = RequestExecutor(config, transport=transport)
    """

    __slots__ = ("_client", "_owns_client", "_follow_redirects", "_user_agent")

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        follow_redirects: bool = True,
        user_agent: str | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._follow_redirects = follow_redirects
        self._user_agent = user_agent

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": self._user_agent} if self._user_agent else None
            self._client = httpx.AsyncClient(follow_redirects=self._follow_redirects, headers=headers)
        return self._client

    async def send(self, url: str, init: RequestInit) -> HttpxResponse:
        client = self._get_client()
        timeout = httpx.Timeout(init.timeout_ms / 1000.0) if init.timeout_ms else httpx.USE_CLIENT_DEFAULT
        request = client.build_request(init.method, url, headers=dict(init.headers), content=init.content,
                                       timeout=timeout)
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}", category=ErrorCategory.TIMEOUT, url=url) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Network error: {e}", url=url) from e
        return HttpxResponse(response)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
