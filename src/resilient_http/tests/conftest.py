"""Shared fixtures: scripted transport, recording sleep, manual clock."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from resilient_http.foundation.config import clear_settings_cache
from resilient_http.foundation.errors import JsonValue
from resilient_http.http import RequestInit
from resilient_http.io import codec
from resilient_http.runtime.observability import CaptureRenderer, configure_logging


# ─────────────────────────────────────────────────────────────────────────────
# Transport doubles
# ─────────────────────────────────────────────────────────────────────────────


class FakeResponse:
    """In-memory TransportResponse. `chunks` feed aiter_bytes; body is their concatenation."""

    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        chunks: Iterable[bytes | str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.status = status
        self.delay = delay
        self.closed = False
        self.headers: dict[str, str] = dict(headers or {})
        if chunks is not None:
            self._chunks = [c.encode() if isinstance(c, str) else c for c in chunks]
        elif body is None:
            self._chunks = []
        elif isinstance(body, bytes):
            self._chunks = [body]
        elif isinstance(body, str):
            self._chunks = [body.encode()]
        else:
            self._chunks = [codec.encode(body)]
            self.headers.setdefault("content-type", "application/json")

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def aread(self) -> bytes:
        return b"".join(self._chunks)

    async def text(self) -> str:
        return (await self.aread()).decode()

    async def json(self) -> JsonValue:
        return codec.decode(await self.aread())

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class Call:
    url: str
    init: RequestInit


@dataclass
class FakeTransport:
    """Replays scripted responses (or raises scripted exceptions) in order.

    The last script item repeats once the script runs out. A callable item
    is invoked with (url, init) and may be a coroutine function.
    """
    script: list[Any] = field(default_factory=list)
    calls: list[Call] = field(default_factory=list)
    delay: float = 0.0

    async def send(self, url: str, init: RequestInit) -> Any:
        self.calls.append(Call(url, init))
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.script[min(len(self.calls) - 1, len(self.script) - 1)]
        if callable(item) and not isinstance(item, FakeResponse):
            item = item(url, init)
            if asyncio.iscoroutine(item):
                item = await item
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def count(self) -> int:
        return len(self.calls)


class RecordingSleep:
    """Async sleep replacement that records requested delays (seconds) and returns at once."""

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.delays: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class ManualClock:
    """Settable clock. Call it for the current time; `advance` moves it forward."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def captured_logs() -> Iterable[CaptureRenderer]:
    """Route log output into memory for every test."""
    renderer = CaptureRenderer()
    configure_logging(level="DEBUG", renderer=renderer)
    yield renderer
    configure_logging(format="none")


@pytest.fixture(autouse=True)
def clean_settings() -> Iterable[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def response_factory() -> type[FakeResponse]:
    return FakeResponse
