"""
Circuit breaker to temporarily stop probing failing lines.
One breaker per (site, line); the registry creates them on first use.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from loguru import logger

from .models import BreakerState, LineType

T = TypeVar("T")

StateListener = Callable[[str, BreakerState, BreakerState], None]


class CircuitOpenError(Exception):
    """Raised instead of running the probe while the circuit is open."""

    def __init__(self, name: str, state: BreakerState):
        self.name = name
        self.state = state
        super().__init__(f"circuit breaker '{name}' is {state.label}")


class CircuitBreaker:
    """Closed -> Open after max_failures, Open -> Half-Open after reset_timeout."""

    def __init__(
        self,
        name: str,
        max_failures: int = 3,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateListener] = None,
    ):
        self.name = name
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._on_state_change = on_state_change
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._last_failure: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    async def execute(self, probe_fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run probe_fn if the breaker allows it.

        An exception from probe_fn counts as a failure and is re-raised;
        a normal return counts as a success.
        """
        transition = self._acquire()
        self._notify(transition)

        try:
            value = await probe_fn()
        except asyncio.CancelledError:
            self._release_trial()
            raise
        except Exception:
            self._notify(self._record_failure())
            raise

        self._notify(self._record_success())
        return value

    def _acquire(self):
        with self._lock:
            transition = None
            if self._state is BreakerState.OPEN:
                elapsed = self._clock() - (self._last_failure or 0.0)
                if elapsed < self.reset_timeout:
                    raise CircuitOpenError(self.name, self._state)
                transition = self._set_state(BreakerState.HALF_OPEN)

            if self._state is BreakerState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.name, self._state)
                self._trial_in_flight = True
            return transition

    def _release_trial(self):
        with self._lock:
            self._trial_in_flight = False

    def _record_failure(self):
        with self._lock:
            self._trial_in_flight = False
            self._failures += 1
            self._last_failure = self._clock()

            if self._state is BreakerState.HALF_OPEN:
                return self._set_state(BreakerState.OPEN)
            if self._state is BreakerState.CLOSED and self._failures >= self.max_failures:
                return self._set_state(BreakerState.OPEN)
            return None

    def _record_success(self):
        with self._lock:
            self._trial_in_flight = False
            self._failures = 0
            if self._state is BreakerState.HALF_OPEN:
                return self._set_state(BreakerState.CLOSED)
            return None

    def _set_state(self, new_state: BreakerState):
        # caller holds the lock
        old_state = self._state
        self._state = new_state
        if old_state is new_state:
            return None
        return old_state, new_state

    def _notify(self, transition):
        # never called with the lock held
        if transition is None or self._on_state_change is None:
            return
        old_state, new_state = transition
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._on_state_change(self.name, old_state, new_state)
        else:
            loop.call_soon(self._on_state_change, self.name, old_state, new_state)


@dataclass(frozen=True)
class BreakerStats:
    name: str
    state: BreakerState
    failures: int


class CircuitBreakerRegistry:
    """Lazily creates one breaker per (site, line) pair."""

    def __init__(
        self,
        max_failures: int = 3,
        reset_timeout: float = 60.0,
        metrics=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self.metrics = metrics
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, site_id: str, line: LineType) -> CircuitBreaker:
        key = f"{site_id}-{line.value}"
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    f"{site_id}/{line.value}",
                    max_failures=self.max_failures,
                    reset_timeout=self.reset_timeout,
                    clock=self._clock,
                    on_state_change=self._state_listener(site_id, line),
                )
                self._breakers[key] = breaker
                logger.info(
                    f"Created circuit breaker {breaker.name} "
                    f"(max_failures={self.max_failures}, reset_timeout={self.reset_timeout}s)"
                )
            return breaker

    def _state_listener(self, site_id: str, line: LineType) -> StateListener:
        def on_change(name: str, old: BreakerState, new: BreakerState):
            logger.info(f"Circuit breaker {name}: {old.label} → {new.label}")
            if self.metrics is not None:
                self.metrics.record_breaker_transition(site_id, line, new)
        return on_change

    def stats(self) -> Dict[str, BreakerStats]:
        with self._lock:
            breakers = dict(self._breakers)
        return {
            key: BreakerStats(name=b.name, state=b.state, failures=b.failures)
            for key, b in breakers.items()
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)
