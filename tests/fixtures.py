"""
Test Fixtures

Fake collaborators for exercising the engine without real services.
"""

from typing import Any, Callable

from goalengine.core.interfaces import ToolResult
from goalengine.core.types import (
    Change,
    ChangeType,
    Goal,
    ProjectContext,
    Reasoning,
    ReviewDecision,
    ReviewResult,
    Task,
)


def make_change(file_path: str = "app/service.py", patch: str = "", type: ChangeType = ChangeType.MODIFY) -> Change:
    return Change(file_path=file_path, type=type, patch=patch or "+x = 1\n")


def make_task(task_id: str = "task-1", name: str = "Do work", tool: str = "", **kwargs: Any) -> Task:
    return Task(id=task_id, name=name, prompt=kwargs.pop("prompt", name), tool=tool, **kwargs)


class FakeTool:
    """
    Tool that replays scripted outcomes.

    Each call pops the next outcome: a ToolResult is returned, an
    exception is raised. Once the script is used up every call succeeds.
    """

    def __init__(
        self,
        name: str = "code",
        outcomes: list[Any] | None = None,
        handles: Callable[[Task], bool] | None = None,
        description: str = "fake tool",
    ):
        self._name = name
        self._description = description
        self._outcomes = list(outcomes or [])
        self._handles = handles
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def can_handle(self, task: Task) -> bool:
        if self._handles is None:
            return True
        return self._handles(task)

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        self.calls.append(dict(params))
        if not self._outcomes:
            return ToolResult(success=True, output="ok")

        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakePlanner:
    """Planner returning fixed tasks, or raising ``error``."""

    def __init__(
        self,
        tasks: list[Task] | None = None,
        reasoning: Reasoning | None = None,
        error: Exception | None = None,
        adapted: list[Task] | None = None,
    ):
        self.tasks = tasks or []
        self.reasoning = reasoning
        self.error = error
        self.adapted = adapted or []
        self.plan_calls: list[tuple[Goal, str, ProjectContext | None]] = []
        self.adapt_calls: list[tuple[list[Task], str, str]] = []

    async def generate_plan(
        self,
        goal: Goal,
        codebase_context: str = "",
        project_context: ProjectContext | None = None,
    ) -> tuple[list[Task], Reasoning | None]:
        self.plan_calls.append((goal, codebase_context, project_context))
        if self.error is not None:
            raise self.error
        return [task.model_copy(deep=True) for task in self.tasks], self.reasoning

    async def adapt_plan(self, current_plan: list[Task], reason: str, feedback: str = "") -> list[Task]:
        self.adapt_calls.append((current_plan, reason, feedback))
        return [task.model_copy(deep=True) for task in self.adapted]


class FakeReviewer:
    """Reviewer replaying decisions; the last one repeats."""

    def __init__(self, *results: ReviewResult, error: Exception | None = None):
        self._results = list(results) or [ReviewResult(decision=ReviewDecision.APPROVE)]
        self.error = error
        self.calls: list[list[Change]] = []

    async def review(self, changes: list[Change]) -> ReviewResult:
        self.calls.append(list(changes))
        if self.error is not None:
            raise self.error
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class FakeAnalyzer:
    def __init__(self, context: ProjectContext | None = None, error: Exception | None = None):
        self.context = context or ProjectContext(project_name="demo", project_type="library")
        self.error = error
        self.paths: list[str] = []

    async def analyze(self, path: str) -> ProjectContext:
        self.paths.append(path)
        if self.error is not None:
            raise self.error
        return self.context.model_copy(update={"project_path": path})


class FakeGenerator:
    """Text generator with a canned response."""

    def __init__(self, response: str = "", error: Exception | None = None):
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


class FailingMemory:
    """Memory collaborator whose every call fails."""

    async def recall(self, pattern: str):
        raise RuntimeError("memory offline")

    async def store(self, learning):
        raise RuntimeError("memory offline")

    async def record_decision(self, decision):
        raise RuntimeError("memory offline")
