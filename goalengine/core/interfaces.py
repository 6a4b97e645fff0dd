"""
Core Interfaces and Protocols

Defines the contracts between the engine and its injected collaborators.
All cross-module interactions should use these interfaces.

Design decisions:
- Protocol-based for structural subtyping
- Minimal interface surface
- No implementation details leak through
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from goalengine.core.types import (
    Change,
    Decision,
    Goal,
    Learning,
    ProjectContext,
    Reasoning,
    ReviewResult,
    Task,
)


@dataclass
class ToolResult:
    """Outcome of a single tool invocation."""

    success: bool
    output: Any = None
    changes: list[Change] = field(default_factory=list)
    error: str | None = None
    duration_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# TOOL PROTOCOLS
# =============================================================================

@runtime_checkable
class ToolProtocol(Protocol):
    """
    A capability the agent can delegate a task to.

    Implemented by: coding delegates, source-host wrappers, test runners
    Used by: ToolRegistry, CoreAgent (act phase)
    """

    @property
    def name(self) -> str:
        """Unique tool identifier."""
        ...

    @property
    def description(self) -> str:
        ...

    def can_handle(self, task: Task) -> bool:
        """Whether this tool is able to execute the task."""
        ...

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        """Run the tool."""
        ...


@runtime_checkable
class ToolRegistryProtocol(Protocol):
    """
    Lookup of tools for tasks.

    Implemented by: ToolRegistry
    Used by: CoreAgent (act phase)
    """

    def find_for_task(self, task: Task) -> list[ToolProtocol]:
        """Preferred tool first, else every tool that can handle the task."""
        ...


# =============================================================================
# PLANNER PROTOCOL
# =============================================================================

@runtime_checkable
class PlannerProtocol(Protocol):
    """
    Turns a goal into an ordered task list.

    Implemented by: Planner
    Used by: CoreAgent (plan phase, plan adaptation)
    """

    async def generate_plan(
        self,
        goal: Goal,
        codebase_context: str = "",
        project_context: ProjectContext | None = None,
    ) -> tuple[list[Task], Reasoning | None]:
        ...

    async def adapt_plan(
        self,
        current_plan: list[Task],
        reason: str,
        feedback: str = "",
    ) -> list[Task]:
        ...


# =============================================================================
# REVIEWER PROTOCOL
# =============================================================================

@runtime_checkable
class ReviewerProtocol(Protocol):
    """
    Reviews a batch of proposed changes.

    Used by: CoreAgent (review phase)
    """

    async def review(self, changes: list[Change]) -> ReviewResult:
        ...


# =============================================================================
# MEMORY PROTOCOL
# =============================================================================

@runtime_checkable
class MemoryProtocol(Protocol):
    """
    Long-term learning and decision store.

    Implemented by: LearningStore
    Used by: CoreAgent (perceive, reflect, decision recording)
    """

    async def recall(self, pattern: str) -> list[Learning]:
        ...

    async def store(self, learning: Learning) -> None:
        ...

    async def record_decision(self, decision: Decision) -> None:
        ...


# =============================================================================
# PROJECT ANALYZER PROTOCOL
# =============================================================================

@runtime_checkable
class ProjectAnalyzerProtocol(Protocol):
    """
    Derives project facts from a path. Failures are non-fatal to perception.
    """

    async def analyze(self, path: str) -> ProjectContext:
        ...


# =============================================================================
# TEXT GENERATION PROTOCOL
# =============================================================================

@runtime_checkable
class TextGeneratorProtocol(Protocol):
    """
    Minimal LLM surface needed by the planner.
    """

    async def generate(self, prompt: str) -> str:
        ...
