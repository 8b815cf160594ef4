"""Request executor: one logical call through cache, breaker, limiter and retries.

Per call:
    1. Compute circuit key (METHOD:path) and cache key (explicit or client:url)
    2. Serve from cache when eligible and live
    3. Attempt loop, at most max_retries + 1 times:
       breaker pre-flight → limiter throttle → interceptors → transport send under deadline
       → on failure notify limiter/breaker, retry or raise
       → on success decode, notify, cache, return

Network failures, timeouts and caller cancellation are all NetworkError
(status 0) and retry exactly like a 5xx. Only idempotent requests retry.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import dataclass, replace
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat

from resilient_http.foundation.config import ResilientHttpSettings, get_settings
from resilient_http.foundation.errors import (
    CircuitOpenError,
    DecodeError,
    ErrorCategory,
    HttpStatusError,
    JsonValue,
    NetworkError,
    RequestError,
    RetriesExhaustedError,
)
from resilient_http.io import codec
from resilient_http.io.cache import Cache, MemoryCache, RedisCache
from resilient_http.runtime.concurrency import run_with_deadline
from resilient_http.runtime.observability import BoundLogger, MetricsSink, NoopMetricsSink, RequestMetrics, get_logger
from resilient_http.runtime.resilience import (
    CircuitBreakerContract,
    KeyedCircuitBreaker,
    NoopCircuitBreaker,
    NoopRateLimiter,
    RateLimiter,
    SlidingWindowRateLimiter,
)
from resilient_http.runtime.retry import FullJitterBackoff, RetryPolicy, retry_after_from_headers

from .auth import Auth
from .interceptors import InterceptContext, Interceptor
from .outcome import RateLimitFeedback, RequestOutcome
from .request import RequestDescriptor
from .transport import HttpxTransport, RequestInit, Transport, TransportResponse

T = TypeVar("T")

ResponseDecoder = Callable[[TransportResponse], Awaitable[Any]]

_JSON_MARKERS = ("json", "+json")


class ClientConfig(BaseModel):
    """Static configuration of one executor (one upstream API).

    Attributes:
        name: Client label used in cache keys, metrics and logs
        base_url: Prefix for relative request paths
        timeout_ms: Default per-attempt timeout
        retry: Retry policy (max retries, backoff, retryable statuses)
        default_headers: Headers sent with every request
        auth: Credential strategy applied to every request
        interceptors: Hooks run around every attempt, in order
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    name: str = "http"
    base_url: str = ""
    timeout_ms: PositiveFloat = 30_000.0
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    default_headers: dict[str, str] = Field(default_factory=dict)
    auth: Auth | None = Field(default=None, repr=False)
    interceptors: tuple[Interceptor, ...] = ()

    @classmethod
    def from_settings(cls, settings: ResilientHttpSettings | None = None, *, auth: Auth | None = None,
                      **overrides: Any) -> ClientConfig:
        s = settings or get_settings()
        retry = RetryPolicy(
            max_retries=s.retry.max_retries,
            backoff=FullJitterBackoff(base=s.retry.base_delay_ms, max_delay=s.retry.max_delay_ms),
        )
        values: dict[str, Any] = {
            "name": s.client_name, "base_url": s.http.base_url, "timeout_ms": s.http.timeout_ms,
            "retry": retry, "auth": auth,
        }
        return cls(**{**values, **overrides})


@dataclass(slots=True)
class RawResponse:
    """Undecoded successful response. The caller owns it and must close it."""
    response: TransportResponse
    outcome: RequestOutcome
    request: RequestDescriptor
    url: str

    async def aclose(self) -> None:
        await self.response.aclose()

    async def __aenter__(self) -> RawResponse:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


async def json_decoder(response: TransportResponse) -> JsonValue:
    """Decode JSON bodies with orjson, return text for non-JSON content types.

    Raises DecodeError when a JSON content type carries an unparsable body.
    """
    body = await response.aread()
    content_type = next((v for k, v in response.headers.items() if k.lower() == "content-type"), "")
    if not body.strip():
        return None
    if content_type and not any(m in content_type.lower() for m in _JSON_MARKERS):
        return body.decode("utf-8", errors="replace")
    try:
        return codec.decode(body)
    except ValueError as e:
        if not content_type:
            return body.decode("utf-8", errors="replace")
        raise DecodeError(f"Response body is not valid JSON: {e}", status=response.status,
                          body=body[:2048].decode("utf-8", errors="replace")) from e


class RequestExecutor:
    """Runs logical calls against one upstream API.

    All collaborators are injected; the rate limiter, breaker, cache and
    metrics sink may be shared by many executors and concurrent calls.

    Args:
        config: Client configuration
        transport: Network seam (required; see `from_settings` for the wired default)
        cache: Response cache; None disables caching
        rate_limiter: Throttle consulted before each attempt
        breaker: Circuit breaker consulted before each attempt
        metrics: Receives one record per attempt
        sleep: Awaitable sleep in seconds (injectable for tests)
        clock: Epoch-seconds clock for outcomes and durations

    Example:
        >>> executor = RequestExecutor(ClientConfig(base_url="https://api.example.com"), transport=transport)
        >>> quotes = await executor.execute(RequestDescriptor(path="/v1/quotes", query={"symbol": ["ACME", "INIT"]}))
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport,
        cache: Cache | None = None,
        rate_limiter: RateLimiter | None = None,
        breaker: CircuitBreakerContract | None = None,
        metrics: MetricsSink | None = None,
        logger: BoundLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ClientConfig()
        self.transport = transport
        self.cache = cache
        self.rate_limiter = rate_limiter or NoopRateLimiter()
        self.breaker = breaker or NoopCircuitBreaker()
        self.metrics = metrics or NoopMetricsSink()
        self._log = logger or get_logger("resilient_http.http", client=self.config.name)
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: ResilientHttpSettings | None = None,
        *,
        auth: Auth | None = None,
        transport: Transport | None = None,
        metrics: MetricsSink | None = None,
    ) -> RequestExecutor:
        """Build a fully wired executor from settings (httpx transport unless one is given)."""
        s = settings or get_settings()
        cache: Cache | None = None
        if s.cache.enabled:
            if s.cache.redis_url is not None:
                cache = RedisCache.from_url(s.cache.redis_url.get_secret_value())
            else:
                cache = MemoryCache(max_entries=s.cache.max_entries)
        limiter = (SlidingWindowRateLimiter(s.rate_limit.max_calls, s.rate_limit.window_ms)
                   if s.rate_limit.enabled else None)
        breaker = (KeyedCircuitBreaker(s.breaker.failure_threshold, s.breaker.recovery_ms, s.breaker.success_threshold)
                   if s.breaker.enabled else None)
        return cls(
            ClientConfig.from_settings(s, auth=auth),
            transport=transport or HttpxTransport(follow_redirects=s.http.follow_redirects, user_agent=s.http.user_agent),
            cache=cache,
            rate_limiter=limiter,
            breaker=breaker,
            metrics=metrics,
        )

    # ─────────────────────────────────────────────────────────────────
    # Keys and request construction
    # ─────────────────────────────────────────────────────────────────

    def build_url(self, descriptor: RequestDescriptor) -> str:
        return descriptor.url(self.config.base_url)

    def cache_key(self, descriptor: RequestDescriptor, url: str | None = None) -> str:
        return descriptor.cache_key or f"{self.config.name}:{url or self.build_url(descriptor)}"

    def is_cache_eligible(self, descriptor: RequestDescriptor) -> bool:
        return (self.cache is not None and descriptor.cache_ttl_ms > 0
                and (descriptor.is_read or descriptor.cache_key is not None))

    def build_init(self, descriptor: RequestDescriptor) -> RequestInit:
        headers: dict[str, str] = {"Accept": "application/json", **self.config.default_headers}
        if self.config.auth is not None:
            headers = self.config.auth.apply(headers)
        headers.update(descriptor.headers)
        content: bytes | None = None
        if descriptor.body is not None:
            body = descriptor.body
            content = body if isinstance(body, bytes) else body.encode() if isinstance(body, str) else codec.encode(body)
            if not any(k.lower() == "content-type" for k in headers):
                headers["Content-Type"] = codec.CONTENT_TYPE
        return RequestInit(descriptor.method, headers, content, descriptor.timeout_ms or self.config.timeout_ms)

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    async def execute(
        self,
        descriptor: RequestDescriptor,
        *,
        decode: ResponseDecoder | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Any:
        """Run one logical call and return the decoded payload.

        Raises:
            HttpStatusError: Non-retryable status, or a non-idempotent request failed
            NetworkError: Non-retryable transport failure (non-idempotent request)
            RetriesExhaustedError: Every permitted attempt failed with a retryable status
            CircuitOpenError: Breaker refused the attempt
            DecodeError: Successful response whose body could not be decoded
        """
        url = self.build_url(descriptor)
        log = self._log.bind_request(descriptor.operation_label, descriptor.method, url)
        eligible = self.is_cache_eligible(descriptor)
        key = self.cache_key(descriptor, url) if eligible else None

        if key is not None and (cached := await self._cache_get(key, log)) is not None:
            log.debug("http.cache.hit", cache_key=key)
            self._record(descriptor, 0.0, 200, attempt=0, cache_hit=True)
            return cached

        decoder = decode or json_decoder

        async def finalize(response: TransportResponse) -> Any:
            try:
                return await decoder(response)
            finally:
                await response.aclose()

        value, _ = await self._run(descriptor, url, log, cancel=cancel, read_body=True, finalize=finalize)
        if key is not None and value is not None:
            await self._cache_set(key, value, descriptor.cache_ttl_ms, log)
        return value

    async def request_raw(self, descriptor: RequestDescriptor, *, cancel: asyncio.Event | None = None) -> RawResponse:
        """Run the attempt loop without decoding or caching.

        Returns the open successful response; the body is unread so it can be
        streamed. Failures raise exactly as in `execute`.
        """
        url = self.build_url(descriptor)
        log = self._log.bind_request(descriptor.operation_label, descriptor.method, url)

        async def keep_open(response: TransportResponse) -> TransportResponse:
            return response

        response, outcome = await self._run(descriptor, url, log, cancel=cancel, read_body=False, finalize=keep_open)
        return RawResponse(response, outcome, descriptor, url)

    async def aclose(self) -> None:
        if (close := getattr(self.transport, "aclose", None)) is not None:
            await close()

    async def __aenter__(self) -> RequestExecutor:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────
    # Attempt loop
    # ─────────────────────────────────────────────────────────────────

    async def _run(
        self,
        descriptor: RequestDescriptor,
        url: str,
        log: BoundLogger,
        *,
        cancel: asyncio.Event | None,
        read_body: bool,
        finalize: Callable[[TransportResponse], Awaitable[T]],
    ) -> tuple[T, RequestOutcome]:
        policy = self.config.retry
        circuit_key = descriptor.circuit_key
        idempotent = descriptor.is_idempotent
        base_init = self.build_init(descriptor)
        ctx = InterceptContext(descriptor, url, dict(base_init.headers))
        started = self._clock()

        for attempt in range(policy.max_attempts):
            ctx.attempt = attempt
            try:
                await self.breaker.before_request(circuit_key)
            except CircuitOpenError as e:
                e.operation, e.url, e.attempts = descriptor.operation_label, url, attempt
                e.outcome = self._outcome(0, False, attempt, started, e.category, None)
                self._record(descriptor, 0.0, 0, attempt, category=ErrorCategory.CIRCUIT_OPEN)
                log.warning("http.circuit.open", circuit=circuit_key, attempt=attempt, retry_after_ms=e.retry_after_ms)
                await self._observe("on_error", ctx, e, log)
                raise
            await self.rate_limiter.throttle(circuit_key)
            init = await self._before_send(ctx, base_init)

            attempt_started = self._clock()
            log.debug("http.request.attempt", attempt=attempt)
            try:
                response = await run_with_deadline(
                    self._send(url, init, read_body), init.timeout_ms, cancel=cancel,
                    description=f"{descriptor.method} {descriptor.path}",
                )
            except NetworkError as e:
                error: RequestError = e
                error.operation, error.url = descriptor.operation_label, url
                feedback = None
            else:
                feedback = RateLimitFeedback.from_response(response.status, response.headers, now=self._clock())
                await self._observe("after_response", ctx, response, log)
                if response.ok:
                    try:
                        value = await finalize(response)
                    except DecodeError as e:
                        e.operation, e.url, e.attempts = descriptor.operation_label, url, attempt + 1
                        e.outcome = self._outcome(e.status, False, attempt + 1, started, e.category, feedback)
                        self._record(descriptor, self._elapsed_ms(attempt_started), response.status, attempt,
                                     category=ErrorCategory.DECODE)
                        log.error("http.request.decode_failed", status=response.status, error=e.message)
                        raise
                    outcome = self._outcome(response.status, True, attempt + 1, started, None, feedback)
                    await self.rate_limiter.on_success(circuit_key)
                    await self.breaker.on_success(circuit_key)
                    self._record(descriptor, self._elapsed_ms(attempt_started), response.status, attempt)
                    log.debug("http.request.success", status=response.status, attempts=attempt + 1,
                             duration_ms=round(outcome.duration_ms, 2))
                    return value, outcome
                error = await self._status_error(descriptor, url, response, init.timeout_ms)

            error.attempts = attempt + 1
            error.outcome = self._outcome(error.status, False, attempt + 1, started, error.category, feedback)
            await self.rate_limiter.on_error(circuit_key, error)
            await self.breaker.on_failure(circuit_key, error)
            self._record(descriptor, self._elapsed_ms(attempt_started), error.status, attempt, category=error.category)
            await self._observe("on_error", ctx, error, log)

            if not policy.should_retry(error, idempotent=idempotent, attempt=attempt):
                log.warning("http.request.failed", status=error.status, category=error.category.value,
                            attempts=attempt + 1, idempotent=idempotent, error=error.message)
                if idempotent and policy.is_retryable_status(error.status):
                    exhausted = RetriesExhaustedError(
                        f"{descriptor.method} {descriptor.path} failed after {attempt + 1} attempts: {error.message}",
                        last_error=error, attempts=attempt + 1,
                    )
                    exhausted.outcome = error.outcome
                    raise exhausted from error
                raise error

            delay_ms = policy.get_delay(error, attempt)
            log.info("http.request.retry", attempt=attempt, status=error.status, delay_ms=round(delay_ms, 1),
                     server_advised=bool(error.retry_after_ms))
            try:
                await run_with_deadline(self._sleep(delay_ms / 1000.0), None, cancel=cancel,
                                        description=f"{descriptor.method} {descriptor.path} backoff")
            except NetworkError as e:
                e.operation, e.url, e.attempts = descriptor.operation_label, url, attempt + 1
                e.outcome = self._outcome(0, False, attempt + 1, started, e.category, None)
                log.warning("http.request.cancelled", attempt=attempt, during="backoff")
                raise e from error

        raise RetriesExhaustedError(operation=descriptor.operation_label, url=url, attempts=policy.max_attempts)

    async def _before_send(self, ctx: InterceptContext, init: RequestInit) -> RequestInit:
        if not self.config.interceptors:
            return init
        ctx.headers = dict(init.headers)
        for interceptor in self.config.interceptors:
            await interceptor.before_send(ctx)
        return replace(init, headers=ctx.headers)

    async def _observe(self, hook: str, ctx: InterceptContext, arg: Any, log: BoundLogger) -> None:
        for interceptor in self.config.interceptors:
            try:
                await getattr(interceptor, hook)(ctx, arg)
            except Exception as e:
                log.warning("http.interceptor.failed", hook=hook, interceptor=type(interceptor).__name__, error=str(e))

    async def _send(self, url: str, init: RequestInit, read_body: bool) -> TransportResponse:
        try:
            response = await self.transport.send(url, init)
        except OSError as e:
            raise NetworkError(f"Transport failure: {e}", url=url) from e
        if read_body and response.ok:
            try:
                await response.aread()
            except BaseException:
                await response.aclose()
                raise
        return response

    async def _status_error(self, descriptor: RequestDescriptor, url: str, response: TransportResponse,
                            timeout_ms: float | None) -> HttpStatusError:
        body: str | None
        try:
            body = await run_with_deadline(response.text(), timeout_ms, description="error body read")
        except (NetworkError, UnicodeDecodeError):
            body = None
        finally:
            await response.aclose()
        return HttpStatusError(
            f"{descriptor.method} {descriptor.path} failed with status {response.status}",
            status=response.status,
            body=body,
            retry_after_ms=retry_after_from_headers(response.headers),
            operation=descriptor.operation_label,
            url=url,
        )

    # ─────────────────────────────────────────────────────────────────
    # Cache, metrics, outcome helpers
    # ─────────────────────────────────────────────────────────────────

    async def _cache_get(self, key: str, log: BoundLogger) -> Any | None:
        assert self.cache is not None
        try:
            return await self.cache.get(key)
        except Exception as e:
            log.warning("http.cache.read_failed", cache_key=key, error=str(e))
            return None

    async def _cache_set(self, key: str, value: Any, ttl_ms: float, log: BoundLogger) -> None:
        assert self.cache is not None
        try:
            await self.cache.set(key, value, ttl_ms)
        except Exception as e:
            log.warning("http.cache.write_failed", cache_key=key, error=str(e))

    def _record(self, descriptor: RequestDescriptor, duration_ms: float, status: int, attempt: int, *,
                cache_hit: bool = False, category: ErrorCategory | None = None) -> None:
        record = RequestMetrics(self.config.name, descriptor.operation_label, duration_ms, status, cache_hit, attempt,
                                category.value if category else None)
        try:
            self.metrics.record_request(record)
        except Exception as e:
            self._log.warning("http.metrics.failed", operation=record.operation, error=str(e))

    def _outcome(self, status: int, ok: bool, attempts: int, started: float, category: ErrorCategory | None,
                 feedback: RateLimitFeedback | None) -> RequestOutcome:
        return RequestOutcome(status, ok, attempts, started, self._clock(), category, feedback)

    def _elapsed_ms(self, since: float) -> float:
        return max(0.0, (self._clock() - since) * 1000.0)
