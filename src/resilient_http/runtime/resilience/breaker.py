"""Circuit breaker contract and the default implementations.

State Machine:
    CLOSED → failures reach threshold → OPEN
    OPEN → recovery_ms elapses → HALF_OPEN
    HALF_OPEN → success_threshold successes → CLOSED
    HALF_OPEN → failure → OPEN

The executor consults the breaker through the async `CircuitBreakerContract`
keyed by circuit key (`METHOD:path`). `KeyedCircuitBreaker` keeps one
`CircuitBreaker` state machine per key in a shared `StateStore`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Protocol, TypedDict, runtime_checkable

from resilient_http.foundation.errors import CircuitOpenError, RequestError


class State(IntEnum):
    """Circuit breaker states."""
    CLOSED, OPEN, HALF_OPEN = 0, 1, 2


class CircuitStateDict(TypedDict):
    state: int
    failures: int
    successes: int
    last_failure: float
    last_state_change: float


@dataclass(slots=True)
class CircuitState:
    """Per-circuit state tracking. Timestamps are in clock milliseconds."""
    state: State = State.CLOSED
    failures: int = 0
    successes: int = 0
    last_failure: float = 0.0
    last_state_change: float = 0.0

    def to_dict(self) -> CircuitStateDict:
        return {
            "state": int(self.state), "failures": self.failures, "successes": self.successes,
            "last_failure": self.last_failure, "last_state_change": self.last_state_change,
        }

    @classmethod
    def from_dict(cls, d: CircuitStateDict) -> CircuitState:
        return cls(State(d["state"]), int(d["failures"]), int(d["successes"]),
                   float(d["last_failure"]), float(d["last_state_change"]))


@runtime_checkable
class StateStore(Protocol):
    """Protocol for circuit state storage backends."""
    def get(self, key: str) -> CircuitState | None: ...
    def set(self, key: str, state: CircuitState) -> None: ...
    def delete(self, key: str) -> bool: ...
    def keys(self) -> list[str]: ...


class MemoryStateStore:
    """In-memory state store (default)."""
    __slots__ = ("_states",)

    def __init__(self) -> None:
        self._states: dict[str, CircuitState] = {}

    def get(self, key: str) -> CircuitState | None:
        return self._states.get(key)

    def set(self, key: str, state: CircuitState) -> None:
        self._states[key] = state

    def delete(self, key: str) -> bool:
        return self._states.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._states)


def _now_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True)
class CircuitBreaker:
    """Standalone circuit breaker state machine for a single key.

    Args:
        failure_threshold: Failures before opening circuit (default: 5)
        recovery_ms: Milliseconds before a half-open probe (default: 30000)
        success_threshold: Successes in half-open to close (default: 2)
        store: State storage backend
        key: Circuit identifier
        clock: Millisecond clock, injectable for tests
    """

    failure_threshold: int = 5
    recovery_ms: float = 30_000.0
    success_threshold: int = 2
    store: StateStore = field(default_factory=MemoryStateStore, repr=False)
    key: str = "_default_"
    clock: Callable[[], float] = field(default=_now_ms, repr=False)

    def _circuit(self) -> CircuitState:
        if (state := self.store.get(self.key)) is None:
            state = CircuitState(last_state_change=self.clock())
            self.store.set(self.key, state)
        return state

    def _evaluate_state(self, circuit: CircuitState) -> State:
        if circuit.state == State.OPEN and self.clock() - circuit.last_state_change >= self.recovery_ms:
            circuit.state, circuit.successes, circuit.last_state_change = State.HALF_OPEN, 0, self.clock()
            self.store.set(self.key, circuit)
        return circuit.state

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    def allow(self) -> bool:
        """True if a request may proceed. Moves OPEN → HALF_OPEN once recovery elapsed."""
        return self._evaluate_state(self._circuit()) != State.OPEN

    def record_success(self) -> None:
        circuit = self._circuit()
        if circuit.state == State.HALF_OPEN:
            circuit.successes += 1
            if circuit.successes >= self.success_threshold:
                circuit.state, circuit.failures, circuit.last_state_change = State.CLOSED, 0, self.clock()
            self.store.set(self.key, circuit)
        elif circuit.state == State.CLOSED and circuit.failures > 0:
            circuit.failures = 0
            self.store.set(self.key, circuit)

    def record_failure(self) -> None:
        circuit = self._circuit()
        circuit.failures += 1
        circuit.last_failure = self.clock()
        if circuit.state == State.HALF_OPEN or (circuit.state == State.CLOSED and circuit.failures >= self.failure_threshold):
            circuit.state, circuit.last_state_change = State.OPEN, self.clock()
        self.store.set(self.key, circuit)

    def reset(self) -> None:
        self.store.set(self.key, CircuitState(last_state_change=self.clock()))

    @property
    def state(self) -> State:
        return self._evaluate_state(self._circuit())

    @property
    def failures(self) -> int:
        return self._circuit().failures

    @property
    def retry_after_ms(self) -> float | None:
        """Milliseconds until a half-open probe is allowed, None if not open."""
        circuit = self._circuit()
        if circuit.state != State.OPEN:
            return None
        return max(0.0, self.recovery_ms - (self.clock() - circuit.last_state_change))


# ─────────────────────────────────────────────────────────────────────────────
# Executor contract
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class CircuitBreakerContract(Protocol):
    """What the executor needs from a breaker, keyed by circuit key."""

    async def before_request(self, key: str) -> None:
        """Raise CircuitOpenError to refuse the attempt."""
        ...

    async def on_success(self, key: str) -> None: ...
    async def on_failure(self, key: str, error: RequestError) -> None: ...


class NoopCircuitBreaker:
    """Never refuses; default when no breaker is configured."""

    __slots__ = ()

    async def before_request(self, key: str) -> None:
        pass

    async def on_success(self, key: str) -> None:
        pass

    async def on_failure(self, key: str, error: RequestError) -> None:
        pass


def counts_as_fault(error: RequestError) -> bool:
    """Upstream faults trip the breaker; client errors (4xx other than 429) do not."""
    return error.status == 0 or error.status == 429 or error.status >= 500


class KeyedCircuitBreaker:
    """One CircuitBreaker state machine per circuit key, shared by concurrent calls.

    Example:
        >>> breaker = KeyedCircuitBreaker(failure_threshold=3, recovery_ms=10_000)
        >>> executor = RequestExecutor(config, transport=t, breaker=breaker)
    """

    __slots__ = ("failure_threshold", "recovery_ms", "success_threshold", "store", "clock", "_lock")

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_ms: float = 30_000.0,
        success_threshold: int = 2,
        *,
        store: StateStore | None = None,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_ms = recovery_ms
        self.success_threshold = success_threshold
        self.store = store or MemoryStateStore()
        self.clock = clock
        self._lock = threading.Lock()

    def circuit(self, key: str) -> CircuitBreaker:
        return CircuitBreaker(self.failure_threshold, self.recovery_ms, self.success_threshold,
                              self.store, key, self.clock)

    async def before_request(self, key: str) -> None:
        with self._lock:
            breaker = self.circuit(key)
            if breaker.allow():
                return
            retry_after = breaker.retry_after_ms
        raise CircuitOpenError(key, retry_after_ms=retry_after)

    async def on_success(self, key: str) -> None:
        with self._lock:
            self.circuit(key).record_success()

    async def on_failure(self, key: str, error: RequestError) -> None:
        if not counts_as_fault(error):
            return
        with self._lock:
            self.circuit(key).record_failure()

    def state(self, key: str) -> State:
        with self._lock:
            return self.circuit(key).state

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            for k in ([key] if key else self.store.keys()):
                self.circuit(k).reset()
