"""
Retry Strategy

Runs a fallible async operation with bounded exponential backoff.

Design decisions:
- Immutable configuration, safe to share across concurrent callers
- Retryability decided by case-sensitive substring match on the error text
- Non-retryable failures abort at once, wrapped so the caller sees the policy decision
- Backoff waits observe a cancellation event
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from goalengine.config.settings import DEFAULT_RETRYABLE_ERRORS, RetrySettings
from goalengine.core.exceptions import (
    ConfigurationError,
    NonRetryableError,
    OperationCancelledError,
    RetriesExhaustedError,
)
from goalengine.observability.logging import get_logger
from goalengine.resilience.cancellation import sleep_or_cancelled

T = TypeVar("T")

RetryableOperation = Callable[[int], Awaitable[Any]]

logger = get_logger("goalengine.retry")


@dataclass(frozen=True)
class RetryStrategy:
    """
    Bounded exponential backoff.

    Attempt 0 runs immediately; attempt n (1..max_retries) waits
    ``initial_delay * backoff_factor ** (n - 1)`` seconds, capped at
    ``max_delay`` and jittered by up to ``±jitter`` of the delay.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: float = 0.25
    retryable_errors: tuple[str, ...] = field(default=tuple(DEFAULT_RETRYABLE_ERRORS))

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", context={"max_retries": self.max_retries})
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must be >= 0")
        if self.backoff_factor <= 0:
            raise ConfigurationError("backoff_factor must be > 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ConfigurationError("jitter must be within [0, 1]", context={"jitter": self.jitter})
        # Accept any iterable of patterns but store an immutable tuple.
        object.__setattr__(self, "retryable_errors", tuple(self.retryable_errors))

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryStrategy":
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
            jitter=settings.jitter,
            retryable_errors=tuple(settings.retryable_errors),
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def base_delay(self, attempt: int) -> float:
        """Un-jittered delay before ``attempt`` (attempt >= 1), already capped."""
        raw = self.initial_delay * self.backoff_factor ** (attempt - 1)
        return min(self.max_delay, raw)

    def backoff_delay(self, attempt: int) -> float:
        """Jittered delay before ``attempt``; stays within ±jitter of base_delay and <= max_delay."""
        delay = self.base_delay(attempt)
        delay += delay * self.jitter * random.uniform(-1.0, 1.0)
        return max(0.0, min(self.max_delay, delay))

    def is_retryable(self, error: BaseException | None) -> bool:
        if error is None:
            return False
        message = str(error)
        return any(pattern in message for pattern in self.retryable_errors)

    async def execute(
        self,
        operation: RetryableOperation,
        name: str,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Run ``operation`` under the policy, discarding its result."""
        await self.execute_with_result(operation, name, cancel_event)

    async def execute_with_result(
        self,
        operation: Callable[[int], Awaitable[T]],
        name: str,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """
        Run ``operation`` under the policy and return its result.

        Raises:
            NonRetryableError: the failure did not match a retryable pattern
            RetriesExhaustedError: every attempt failed with a retryable error
            OperationCancelledError: cancellation fired during a backoff wait
        """
        if operation is None:
            raise ValueError("cannot execute retry: operation is None")
        if not name:
            raise ValueError("cannot execute retry: name is empty")

        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.backoff_delay(attempt)
                logger.info("retry.waiting", operation=name, attempt=attempt, delay=round(delay, 3))

                if await sleep_or_cancelled(delay, cancel_event):
                    raise OperationCancelledError(
                        f"operation {name} cancelled during retry backoff",
                        operation=name,
                        attempts=attempt,
                        cause=last_error,
                    )

            logger.debug("retry.attempt", operation=name, attempt=attempt, max_retries=self.max_retries)

            try:
                result = await operation(attempt)
            except Exception as exc:
                last_error = exc
            else:
                if attempt > 0:
                    logger.info("retry.success", operation=name, attempt=attempt)
                return result

            if not self.is_retryable(last_error):
                logger.warning("retry.non_retryable_error", operation=name, error=str(last_error), attempt=attempt)
                raise NonRetryableError(
                    f"non-retryable error: {last_error}",
                    operation=name,
                    attempts=attempt + 1,
                    cause=last_error,
                )

            logger.warning(
                "retry.failed_attempt",
                operation=name,
                error=str(last_error),
                attempt=attempt,
                will_retry=attempt < self.max_retries,
            )

        raise RetriesExhaustedError(
            f"operation {name} failed after {self.max_retries + 1} attempts: {last_error}",
            operation=name,
            attempts=self.max_retries + 1,
            cause=last_error,
        )
