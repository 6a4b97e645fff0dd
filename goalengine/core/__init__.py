"""
Core Module

Data model, error hierarchy, and collaborator interfaces shared by every
other module of the engine.
"""

from goalengine.core.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    CircuitOpenError,
    ConfigurationError,
    ConstraintViolationError,
    EngineError,
    ExecutionCancelledError,
    GoalEngineError,
    GoalValidationError,
    MaxIterationsExceededError,
    NonRetryableError,
    OperationCancelledError,
    PhaseError,
    PlanningError,
    RateLimitExceededError,
    RetriesExhaustedError,
    RetryError,
    ReviewError,
    ToolNotFoundError,
    UnknownStateError,
)
from goalengine.core.types import (
    AgentState,
    Change,
    ChangeType,
    Decision,
    DecisionType,
    Goal,
    GoalContext,
    Learning,
    Priority,
    ProjectContext,
    Reasoning,
    ReviewComment,
    ReviewDecision,
    ReviewResult,
    Severity,
    Task,
    TaskResult,
    TaskState,
)

__all__ = [
    # Types
    "AgentState",
    "Change",
    "ChangeType",
    "Decision",
    "DecisionType",
    "Goal",
    "GoalContext",
    "Learning",
    "Priority",
    "ProjectContext",
    "Reasoning",
    "ReviewComment",
    "ReviewDecision",
    "ReviewResult",
    "Severity",
    "Task",
    "TaskResult",
    "TaskState",
    # Exceptions
    "GoalEngineError",
    "ConfigurationError",
    "GoalValidationError",
    "RetryError",
    "NonRetryableError",
    "RetriesExhaustedError",
    "OperationCancelledError",
    "CircuitOpenError",
    "RateLimitExceededError",
    "ConstraintViolationError",
    "ToolNotFoundError",
    "PlanningError",
    "ReviewError",
    "EngineError",
    "MaxIterationsExceededError",
    "ExecutionCancelledError",
    "UnknownStateError",
    "PhaseError",
    "CheckpointError",
    "CheckpointNotFoundError",
]
