"""
Exception Hierarchy

Defines all exceptions raised by the goal engine.
Exceptions are organized by concern and carry context for debugging.

Design decisions:
- All exceptions inherit from GoalEngineError for easy catching
- Exceptions carry structured context, not just messages
- Error codes enable programmatic handling
- Wrapping exceptions keep the original failure on __cause__
"""

from typing import Any


class GoalEngineError(Exception):
    """
    Base exception for all goal engine errors.

    Provides structured error information including:
    - Human-readable message
    - Machine-readable error code
    - Additional context for debugging
    """

    error_code: str = "GOAL_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        """The wrapped original failure, if any."""
        return self.__cause__

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logs and results."""
        data: dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }
        if self.__cause__ is not None:
            data["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return data


# ============================================================
# Configuration / Input Errors
# ============================================================

class ConfigurationError(GoalEngineError):
    """Error in configuration or settings."""

    error_code = "CONFIGURATION_ERROR"


class GoalValidationError(GoalEngineError):
    """Goal is not acceptable for execution."""

    error_code = "GOAL_VALIDATION_ERROR"


# ============================================================
# Resilience Errors
# ============================================================

class RetryError(GoalEngineError):
    """Base error for retry policy outcomes."""

    error_code = "RETRY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        attempts: int = 0,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.attempts = attempts


class NonRetryableError(RetryError):
    """Failure was classified as permanent; no further attempts were made."""

    error_code = "NON_RETRYABLE_ERROR"


class RetriesExhaustedError(RetryError):
    """Every permitted attempt failed with a retryable error."""

    error_code = "RETRIES_EXHAUSTED"


class OperationCancelledError(RetryError):
    """Cancellation was signalled while waiting to retry."""

    error_code = "OPERATION_CANCELLED"


class CircuitOpenError(GoalEngineError):
    """Call rejected because the dependency's circuit is open."""

    error_code = "CIRCUIT_OPEN"

    def __init__(self, message: str, *, dependency: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.dependency = dependency


class RateLimitExceededError(GoalEngineError):
    """No admission token was available."""

    error_code = "RATE_LIMIT_EXCEEDED"


# ============================================================
# Policy Errors
# ============================================================

class ConstraintViolationError(GoalEngineError):
    """A proposed change violates a goal constraint."""

    error_code = "CONSTRAINT_VIOLATION"


# ============================================================
# Collaborator Errors
# ============================================================

class ToolNotFoundError(GoalEngineError):
    """No registered tool can handle the task."""

    error_code = "TOOL_NOT_FOUND"


class PlanningError(GoalEngineError):
    """Planner could not produce or adapt a plan."""

    error_code = "PLANNING_ERROR"


class ReviewError(GoalEngineError):
    """Reviewer could not review the changes."""

    error_code = "REVIEW_ERROR"


# ============================================================
# Engine Errors
# ============================================================

class EngineError(GoalEngineError):
    """Base error for terminal engine failures."""

    error_code = "ENGINE_ERROR"


class MaxIterationsExceededError(EngineError):
    """The execution loop exceeded its iteration cap."""

    error_code = "MAX_ITERATIONS_EXCEEDED"


class ExecutionCancelledError(EngineError):
    """Execution was cancelled."""

    error_code = "EXECUTION_CANCELLED"


class UnknownStateError(EngineError):
    """The agent is in a state with no handler."""

    error_code = "UNKNOWN_STATE"


class PhaseError(EngineError):
    """A phase handler failed and could not be recovered."""

    error_code = "PHASE_ERROR"

    def __init__(self, message: str, *, state: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.state = state


# ============================================================
# Checkpoint Errors
# ============================================================

class CheckpointError(GoalEngineError):
    """Error with checkpoint operations."""

    error_code = "CHECKPOINT_ERROR"


class CheckpointNotFoundError(CheckpointError):
    """Requested checkpoint does not exist."""

    error_code = "CHECKPOINT_NOT_FOUND"
