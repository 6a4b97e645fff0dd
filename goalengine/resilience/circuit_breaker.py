"""
Circuit breaker for a single downstream dependency.

States:
- CLOSED: calls pass through, consecutive failures are counted
- OPEN: calls are rejected until the reset timeout elapses
- HALF_OPEN: exactly one probe call is admitted

A rejected caller gets CircuitOpenError, never the operation's own error,
so a retry policy above the breaker can tell "dependency is down" from
"this call failed".
"""

import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from goalengine.config.settings import CircuitBreakerSettings
from goalengine.core.exceptions import CircuitOpenError, ConfigurationError
from goalengine.observability.logging import get_logger

T = TypeVar("T")

logger = get_logger("goalengine.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Counters are guarded by a lock so one breaker can be shared by
    concurrent callers. ``clock`` is injectable for deterministic tests.
    """

    def __init__(
        self,
        max_failures: int = 3,
        reset_timeout: float = 30.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_failures < 1:
            raise ConfigurationError("max_failures must be >= 1", context={"max_failures": max_failures})
        if reset_timeout < 0:
            raise ConfigurationError("reset_timeout must be >= 0", context={"reset_timeout": reset_timeout})

        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time = 0.0
        self._last_state_change = clock()
        self._probe_in_flight = False
        self._times_opened = 0
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: CircuitBreakerSettings, name: str = "default") -> "CircuitBreaker":
        return cls(max_failures=settings.max_failures, reset_timeout=settings.reset_timeout, name=name)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        """Current consecutive failure count."""
        with self._lock:
            return self._failures

    @property
    def last_state_change(self) -> float:
        with self._lock:
            return self._last_state_change

    def allow_request(self) -> bool:
        """
        Admission check.

        In OPEN, the first call after ``reset_timeout`` moves the breaker to
        HALF_OPEN and is admitted as the probe; further calls are rejected
        until the probe settles.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._clock() - self._last_failure_time >= self.reset_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                    self._probe_in_flight = True
                    return True
                return False

            # HALF_OPEN
            if not self._probe_in_flight:
                self._probe_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._probe_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock()
            self._probe_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failures >= self.max_failures:
                self._transition(CircuitState.OPEN)

    def _abandon_probe(self) -> None:
        """Re-open after a probe that never settled (cancelled). Other calls are not counted."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._probe_in_flight:
                self._probe_in_flight = False
                self._last_failure_time = self._clock()
                self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Return to CLOSED with cleared counters."""
        with self._lock:
            self._failures = 0
            self._probe_in_flight = False
            self._last_failure_time = 0.0
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    async def execute(self, operation: Callable[[], Awaitable[T]], name: str = "") -> T:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: the breaker rejected the call
        """
        operation_name = name or self.name
        if not self.allow_request():
            logger.warning("circuit_breaker.rejected", breaker=self.name, operation=operation_name)
            raise CircuitOpenError(
                f"circuit breaker open for {operation_name}",
                dependency=self.name,
                context={"operation": operation_name, "failures": self.failures},
            )

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            self._abandon_probe()
            raise

        self.record_success()
        return result

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failures": self._failures,
                "max_failures": self.max_failures,
                "reset_timeout": self.reset_timeout,
                "times_opened": self._times_opened,
            }

    def _transition(self, new_state: CircuitState) -> None:
        # Caller holds the lock.
        old_state = self._state
        self._state = new_state
        self._last_state_change = self._clock()
        if new_state == CircuitState.OPEN:
            self._times_opened += 1

        logger.info(
            "circuit_breaker.state_change",
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
            failures=self._failures,
        )

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._state.value}, failures={self._failures}/{self.max_failures})"
