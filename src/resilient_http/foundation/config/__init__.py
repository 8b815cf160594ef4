from .settings import (
    BreakerSettings,
    CacheSettings,
    HttpSettings,
    LoggingSettings,
    RateLimitSettings,
    ResilientHttpSettings,
    RetrySettings,
    StateSettings,
    StreamSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "BreakerSettings",
    "CacheSettings",
    "HttpSettings",
    "LoggingSettings",
    "RateLimitSettings",
    "ResilientHttpSettings",
    "RetrySettings",
    "StateSettings",
    "StreamSettings",
    "clear_settings_cache",
    "get_settings",
]
