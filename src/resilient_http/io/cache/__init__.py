"""Response cache contract and backends."""

from .cache import Cache, CacheEntry, MemoryCache
from .redis import RedisCache

__all__ = ["Cache", "CacheEntry", "MemoryCache", "RedisCache"]
