"""Redis cache backend for sharing cached responses across processes.

Adapts an existing async redis client (redis.asyncio). Values are stored
as orjson-encoded JSON; TTL is handled natively with PSETEX.

Requires: pip install resilient-http[redis]
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from resilient_http.io import codec


@runtime_checkable
class AsyncRedisClient(Protocol):
    """Protocol for the subset of redis.asyncio.Redis used here."""
    async def get(self, name: str) -> bytes | None: ...
    async def set(self, name: str, value: bytes) -> bool | None: ...
    async def psetex(self, name: str, time_ms: int, value: bytes) -> bool | None: ...
    async def delete(self, *names: str) -> int: ...


def _import_redis() -> Any:
    """Lazy import redis with clear error."""
    try:
        import redis.asyncio as redis_asyncio
    except ImportError as e:
        raise ImportError(
            "Redis cache requires the redis package. Install with: pip install resilient-http[redis]"
        ) from e
    return redis_asyncio


class RedisCache:
    """Redis-backed response cache.

    Args:
        client: Existing async Redis client
        prefix: Key prefix for namespacing (default: "resilient_http:")

    Example:
        >>> cache = RedisCache.from_url("redis://localhost:6379/0")
        >>> executor = RequestExecutor(config, transport=t, cache=cache)
    """

    __slots__ = ("_client", "_prefix")

    def __init__(self, client: AsyncRedisClient, prefix: str = "resilient_http:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "resilient_http:", **redis_kwargs: Any) -> RedisCache:
        """Create cache from a Redis URL (redis://host:port/db)."""
        return cls(_import_redis().from_url(url, **redis_kwargs), prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self._key(key))
        return codec.decode(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_ms: float | None = None) -> None:
        data = codec.encode(value)
        if ttl_ms:
            await self._client.psetex(self._key(key), max(1, int(ttl_ms)), data)
        else:
            await self._client.set(self._key(key), data)

    async def delete(self, key: str) -> bool:
        return await self._client.delete(self._key(key)) > 0
