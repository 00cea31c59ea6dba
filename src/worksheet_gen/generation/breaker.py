"""Process-wide circuit breaker guarding provider retries."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from worksheet_gen.generation.models import CircuitState

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True, slots=True)
class CircuitBreakerSnapshot:
    """Point-in-time view of breaker state."""

    state: CircuitState
    consecutive_failures: int
    last_failure_time: float | None
    last_state_change: float
    failure_threshold: int
    reset_timeout: float


class CircuitBreaker:
    """Three-state breaker: CLOSED, OPEN, HALF_OPEN.

    One instance is shared by every episode of the process. All mutations go
    through one lock, so concurrent episodes see a consistent failure count.
    OPEN turns into HALF_OPEN lazily, on the first `is_open()` call after
    `reset_timeout` seconds have passed since the last failure.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1.")
        if reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0.")
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float | None = None
        self._last_state_change = clock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return False
            last_failure = self._last_failure_time
            if last_failure is None or self._clock() - last_failure >= self._reset_timeout:
                self._transition(CircuitState.HALF_OPEN)
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._last_failure_time = None
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_failure_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            return CircuitBreakerSnapshot(
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                last_failure_time=self._last_failure_time,
                last_state_change=self._last_state_change,
                failure_threshold=self._failure_threshold,
                reset_timeout=self._reset_timeout,
            )

    def reset(self) -> None:
        """Return to a fresh CLOSED state."""

        with self._lock:
            self._consecutive_failures = 0
            self._last_failure_time = None
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def _transition(self, new_state: CircuitState) -> None:
        # Caller holds the lock.
        previous = self._state
        self._state = new_state
        self._last_state_change = self._clock()
        level = logging.WARNING if new_state == CircuitState.OPEN else logging.INFO
        logger.log(
            level,
            "Circuit breaker %s -> %s (consecutive_failures=%d)",
            previous.value,
            new_state.value,
            self._consecutive_failures,
        )
