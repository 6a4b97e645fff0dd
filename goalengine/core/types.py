"""
Core Types and Data Structures

Defines the fundamental types used throughout the goal engine.
These are intentionally simple, immutable where possible, and serializable,
because every one of them can end up inside a checkpoint file.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time used for every timestamp."""
    return datetime.now(timezone.utc)


class AgentState(str, Enum):
    """
    Lifecycle state of the agent execution loop.

    Valid transitions:
    IDLE → ANALYZING → PLANNING → EXECUTING → REVIEWING → REFLECTING → COMPLETE
                          ↑__________________________________|
    Any state → FAILED
    """

    IDLE = "idle"
    ANALYZING = "analyzing"  # perceiving
    PLANNING = "planning"
    EXECUTING = "executing"
    REVIEWING = "reviewing"
    REFLECTING = "reflecting"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.COMPLETE, AgentState.FAILED)


class TaskState(str, Enum):
    """Status of a task in the current plan."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class Priority(str, Enum):
    """Goal and task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChangeType(str, Enum):
    """Kind of file change produced by a tool."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


class ReviewDecision(str, Enum):
    """Outcome of a review."""

    APPROVE = "approve"
    COMMENT = "comment"
    REQUEST_CHANGES = "request_changes"
    REJECT = "reject"


class Severity(str, Enum):
    """Severity of a review comment."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DecisionType(str, Enum):
    """Kind of decision recorded in the audit history."""

    SELECT_TOOL = "select_tool"
    ADAPT_PLAN = "adapt_plan"
    EXECUTE_TASK = "execute_task"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGE = "request_change"
    REFLECT = "reflect"
    CONTINUE_WORK = "continue_work"
    COMPLETE = "complete"


class GoalContext(BaseModel):
    """Optional references that locate the goal's subject."""

    model_config = ConfigDict(frozen=True)

    project_path: str = ""
    source_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class Goal(BaseModel):
    """
    The user-supplied objective.

    Immutable by design; the engine only reads it.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"goal-{uuid4().hex[:8]}")
    description: str
    priority: Priority = Priority.MEDIUM
    constraints: list[str] = Field(default_factory=list)
    deadline: datetime | None = None
    context: GoalContext = Field(default_factory=GoalContext)


class Change(BaseModel):
    """A single file change proposed by a tool, as a unified-diff patch."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    type: ChangeType = ChangeType.MODIFY
    patch: str = ""
    description: str = ""


class ReviewComment(BaseModel):
    """One finding produced by the reviewer."""

    model_config = ConfigDict(frozen=True)

    file_path: str = ""
    line: int = 0
    severity: Severity = Severity.INFO
    category: str = ""
    message: str = ""
    suggestion: str = ""


class ReviewResult(BaseModel):
    """Reviewer verdict over a batch of changes."""

    model_config = ConfigDict(frozen=True)

    decision: ReviewDecision
    score: float = 100.0  # 0-100 scale
    comments: list[ReviewComment] = Field(default_factory=list)
    summary: str = ""


class TaskResult(BaseModel):
    """
    Outcome of one task.

    Created once per task execution; replaced, never edited, when a review
    result is attached.
    """

    model_config = ConfigDict(frozen=True)

    task_id: str
    name: str = ""
    success: bool = False
    tool: str = ""
    duration: float = 0.0  # seconds
    changes: list[Change] = Field(default_factory=list)
    error: str | None = None
    review_result: ReviewResult | None = None


class Task(BaseModel):
    """
    A discrete unit of work derived from a goal.

    Owned by the running agent; only the act phase changes its state.
    """

    id: str
    name: str
    description: str = ""
    prompt: str = ""
    priority: Priority = Priority.MEDIUM
    tool: str = ""
    dependencies: list[str] = Field(default_factory=list)
    state: TaskState = TaskState.PENDING
    result: TaskResult | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class Decision(BaseModel):
    """Append-only audit record of a choice the engine made."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    state: AgentState
    type: DecisionType
    reasoning: str
    action: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class Learning(BaseModel):
    """A lesson extracted from an execution."""

    id: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    context: str = ""
    pattern: str = ""
    lesson: str = ""
    confidence: float = 0.0
    applied_count: int = 0


class Reasoning(BaseModel):
    """Chain-of-thought returned by a planner alongside its tasks."""

    chain_of_thought: list[str] = Field(default_factory=list)
    confidence: float = 0.8
    alternatives: list[str] = Field(default_factory=list)
    selected_path: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ProjectContext(BaseModel):
    """Project facts produced by the project analyzer collaborator."""

    project_path: str = ""
    project_name: str = ""
    project_type: str = ""
    languages: list[str] = Field(default_factory=list)
    frameworks: list[str] = Field(default_factory=list)
    architecture: str = ""
    complexity: str = ""
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
