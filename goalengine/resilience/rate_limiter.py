"""
Token-bucket rate limiter.

Capacity is the burst size; tokens refill continuously at
requests_per_minute / 60 per second. Refill is lazy, computed from the
time elapsed since the previous admission check.
"""

import asyncio
import threading
import time
from typing import Callable

from goalengine.config.settings import RateLimitSettings
from goalengine.core.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    RateLimitExceededError,
)
from goalengine.observability.logging import get_logger
from goalengine.resilience.cancellation import sleep_or_cancelled

logger = get_logger("goalengine.rate_limiter")


class RateLimiter:
    """Admission control for calls to a rate-limited dependency."""

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_size: int = 10,
        poll_interval: float = 0.1,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests_per_minute <= 0:
            raise ConfigurationError("requests_per_minute must be > 0")
        if burst_size < 1:
            raise ConfigurationError("burst_size must be >= 1")
        if poll_interval <= 0:
            raise ConfigurationError("poll_interval must be > 0")

        self.capacity = float(burst_size)
        self.refill_rate = requests_per_minute / 60.0
        self.poll_interval = poll_interval
        self.name = name
        self._clock = clock

        self._tokens = float(burst_size)
        self._last_refill = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings, name: str = "default") -> "RateLimiter":
        return cls(
            requests_per_minute=settings.requests_per_minute,
            burst_size=settings.burst_size,
            poll_interval=settings.poll_interval,
            name=name,
        )

    @property
    def tokens(self) -> float:
        """Tokens currently available, after refill."""
        with self._lock:
            self._refill()
            return self._tokens

    def allow(self) -> bool:
        """Consume one token if a whole token is available."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self) -> None:
        """
        Non-blocking admission.

        Raises:
            RateLimitExceededError: no token available
        """
        if not self.allow():
            raise RateLimitExceededError(
                f"rate limit exceeded for {self.name}",
                context={"limiter": self.name, "refill_rate": self.refill_rate},
            )

    async def wait(self, cancel_event: asyncio.Event | None = None) -> None:
        """
        Block until admitted, polling every ``poll_interval`` seconds.

        Raises:
            OperationCancelledError: cancellation fired while waiting
        """
        waited = False
        while not self.allow():
            if not waited:
                logger.debug("rate_limiter.waiting", limiter=self.name)
                waited = True
            if await sleep_or_cancelled(self.poll_interval, cancel_event):
                raise OperationCancelledError(
                    f"rate limiter wait cancelled for {self.name}",
                    operation=self.name,
                )

    def _refill(self) -> None:
        # Caller holds the lock.
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now
