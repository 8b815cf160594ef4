"""Environment-based configuration using pydantic-settings.

Every knob of the client core can be set through environment variables
with the RESILIENT_HTTP_ prefix. Groups are nested settings classes so
they can also be loaded on their own.

Example:
    >>> from resilient_http.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.retry.max_retries
    3

    # Or with environment variables:
    # RESILIENT_HTTP_RETRY_MAX_RETRIES=5
    # RESILIENT_HTTP_HTTP_TIMEOUT_MS=10000
    # RESILIENT_HTTP_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, PositiveFloat, PositiveInt, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HttpSettings(BaseSettings):
    """Transport and request defaults."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_HTTP_", extra="ignore")

    base_url: str = Field(default="", description="Base URL prepended to request paths")
    timeout_ms: PositiveFloat = Field(default=30_000.0, description="Per-attempt timeout in milliseconds")
    user_agent: str = "resilient-http/0.1"
    follow_redirects: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RetrySettings(BaseSettings):
    """Retry and backoff defaults."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_RETRY_", extra="ignore")

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    base_delay_ms: PositiveFloat = Field(default=500.0, description="Backoff base delay in milliseconds")
    max_delay_ms: PositiveFloat | None = Field(default=None, description="Cap for computed backoff (None = uncapped)")


class CacheSettings(BaseSettings):
    """Response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_CACHE_", extra="ignore")

    enabled: bool = True
    max_entries: PositiveInt = Field(default=1000, description="Max in-memory cache entries")
    redis_url: SecretStr | None = Field(default=None, description="Redis URL for a shared cache")

    @computed_field
    @property
    def backend(self) -> Literal["memory", "redis"]:
        """Determine cache backend from configuration."""
        return "redis" if self.redis_url else "memory"


class RateLimitSettings(BaseSettings):
    """Client-side rate limiting."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_RATELIMIT_", extra="ignore")

    enabled: bool = False
    max_calls: PositiveInt = Field(default=60, description="Max calls per window per circuit key")
    window_ms: PositiveFloat = Field(default=60_000.0, description="Sliding window length in milliseconds")


class BreakerSettings(BaseSettings):
    """Circuit breaker thresholds."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_BREAKER_", extra="ignore")

    enabled: bool = False
    failure_threshold: PositiveInt = 5
    recovery_ms: PositiveFloat = Field(default=30_000.0, description="Open duration before a half-open probe")
    success_threshold: PositiveInt = 2


class StateSettings(BaseSettings):
    """Bounded state cache defaults (conversation continuation)."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_STATE_", extra="ignore")

    max_size: PositiveInt = 1000
    ttl_ms: PositiveFloat = Field(default=3_600_000.0, description="Entry lifetime in milliseconds")
    sweep_interval_ms: PositiveFloat | None = Field(default=None, description="Background sweep period")


class StreamSettings(BaseSettings):
    """Streaming decoder and streaming pagination."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_STREAM_", extra="ignore")

    on_malformed: Literal["skip", "emit"] = "skip"
    page_buffer_size: PositiveInt = Field(default=1, description="Pages prefetched ahead of the consumer")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="RESILIENT_HTTP_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"


class ResilientHttpSettings(BaseSettings):
    """Root settings.

    Example environment variables:
        RESILIENT_HTTP_CLIENT_NAME=market-data
        RESILIENT_HTTP_RETRY_BASE_DELAY_MS=250
        RESILIENT_HTTP_BREAKER_ENABLED=true
    """

    model_config = SettingsConfigDict(
        env_prefix="RESILIENT_HTTP_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    client_name: str = Field(default="http", description="Label used for cache keys and metrics")

    http: HttpSettings = Field(default_factory=HttpSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> ResilientHttpSettings:
    """Get the global settings instance (cached)."""
    return ResilientHttpSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
