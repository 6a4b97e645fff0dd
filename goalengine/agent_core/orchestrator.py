"""
Agent Orchestrator

The execution engine that carries a goal from submission to completion.

Design decisions:
- Fixed state machine with an explicit handler table (state -> phase)
- Each phase handler is retried as a whole, so handlers are safe to re-run
- Handlers return their decisions and next state; the loop records and applies them
- Mutable agent fields are guarded by one lock shared with checkpoint snapshots
- Fatal errors end up on Result.error, never raised out of execute()

State machine:
IDLE -(perceive)-> ANALYZING -(plan)-> PLANNING -(act)-> EXECUTING -(review)-> REVIEWING
    -(reflect)-> REFLECTING -(more work? PLANNING : COMPLETE)
Any unrecovered phase error -> FAILED
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from goalengine.agent_core.checkpoint import AgentSnapshot, Checkpoint, CheckpointManager
from goalengine.agent_core.validator import ConstraintValidator
from goalengine.config.settings import Settings, get_settings
from goalengine.core.exceptions import (
    CheckpointError,
    ConfigurationError,
    EngineError,
    ExecutionCancelledError,
    GoalEngineError,
    GoalValidationError,
    MaxIterationsExceededError,
    OperationCancelledError,
    PhaseError,
    ReviewError,
    ToolNotFoundError,
    UnknownStateError,
)
from goalengine.core.interfaces import (
    MemoryProtocol,
    PlannerProtocol,
    ProjectAnalyzerProtocol,
    ReviewerProtocol,
    ToolRegistryProtocol,
)
from goalengine.core.types import (
    AgentState,
    Decision,
    DecisionType,
    Goal,
    Learning,
    ProjectContext,
    ReviewDecision,
    Task,
    TaskResult,
    TaskState,
    utcnow,
)
from goalengine.memory.learning_store import LearningStore
from goalengine.observability.logging import Logger, get_logger
from goalengine.observability.telemetry import AgentTelemetry
from goalengine.resilience.retry import RetryStrategy

logger = get_logger("goalengine.agent")

DEFAULT_CONFIDENCE = 0.5
PERCEIVE_CONFIDENCE = 0.8
LEARNING_BASELINE_CONFIDENCE = 0.7
LEARNING_SUCCESS_CONFIDENCE = 0.9
PERCENTAGE_SCALE = 100.0

FALLBACK_TASK_NAME = "Execute goal"
FALLBACK_REASONING = "Using fallback simple planning"
MISSING_REASONING = "Planner returned no reasoning"


def _clamp_confidence(value: float) -> float:
    return min(1.0, max(0.0, value))


@dataclass
class AgentConfig:
    """Configuration for the execution engine."""

    max_iterations: int = 20
    dry_run: bool = False
    checkpoint_dir: str = "./checkpoints"
    auto_save: bool = True
    save_interval: float = 300.0
    enable_telemetry: bool = True
    retry_phases: bool = True
    adapt_plan_on_failure: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be >= 1, got {self.max_iterations}",
                context={"max_iterations": self.max_iterations},
            )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AgentConfig":
        agent = (settings or get_settings()).agent
        return cls(
            max_iterations=agent.max_iterations,
            dry_run=agent.dry_run,
            checkpoint_dir=agent.checkpoint_dir,
            auto_save=agent.auto_save,
            save_interval=agent.save_interval_seconds,
            enable_telemetry=agent.enable_telemetry,
            retry_phases=agent.retry_phases,
            adapt_plan_on_failure=agent.adapt_plan_on_failure,
        )


@dataclass
class Result:
    """Outcome of one execution."""

    goal: Goal | None
    success: bool = False
    state: AgentState = AgentState.IDLE
    tasks: list[TaskResult] = field(default_factory=list)
    learnings: list[Learning] = field(default_factory=list)
    iterations: int = 0
    duration: float = 0.0  # seconds
    summary: str = ""
    error: BaseException | None = None

    def raise_for_error(self) -> None:
        """Re-raise the terminal error, if any."""
        if self.error is not None:
            raise self.error


@dataclass
class Progress:
    """Point-in-time progress report."""

    state: AgentState
    current_task: str = ""
    completed_tasks: int = 0
    total_tasks: int = 0
    percentage: float = 0.0
    message: str = ""
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PhaseOutcome:
    """What a phase handler decided: the next state and the decisions behind it."""

    next_state: AgentState
    decisions: list[Decision] = field(default_factory=list)


PhaseHandler = Callable[[], Awaitable[PhaseOutcome]]


class CoreAgent:
    """
    Goal execution engine.

    Composes the injected collaborators (tool registry, planner, reviewer,
    memory, project analyzer) with retry, checkpointing and telemetry.

    Usage:
        agent = CoreAgent(registry, AgentConfig(dry_run=True))
        result = await agent.execute(Goal(description="fix bug"))
    """

    def __init__(
        self,
        tool_registry: ToolRegistryProtocol,
        config: AgentConfig | None = None,
        *,
        planner: PlannerProtocol | None = None,
        reviewer: ReviewerProtocol | None = None,
        memory: MemoryProtocol | None = None,
        analyzer: ProjectAnalyzerProtocol | None = None,
        retry_strategy: RetryStrategy | None = None,
        telemetry: AgentTelemetry | None = None,
        checkpoint_manager: CheckpointManager | None = None,
    ):
        if tool_registry is None:
            raise ConfigurationError("tool_registry is required")

        self._config = config or AgentConfig()
        self._tools = tool_registry
        self._planner = planner
        self._reviewer = reviewer
        self._memory = memory if memory is not None else LearningStore()
        self._analyzer = analyzer
        self._retry = retry_strategy or RetryStrategy()

        if telemetry is not None:
            self._telemetry: AgentTelemetry | None = telemetry
        else:
            self._telemetry = AgentTelemetry() if self._config.enable_telemetry else None

        self._checkpoints = checkpoint_manager or CheckpointManager(
            checkpoint_dir=self._config.checkpoint_dir,
            auto_save=self._config.auto_save,
            save_interval=self._config.save_interval,
        )

        self._constraints: list[str] = []
        self._validator = ConstraintValidator()

        # Guarded by _lock
        self._lock = threading.RLock()
        self._state = AgentState.IDLE
        self._state_entered_at = time.monotonic()
        self._goal: Goal | None = None
        self._plan: list[Task] = []
        self._decisions: list[Decision] = []
        self._iteration = 0
        self._project_context: ProjectContext | None = None
        self._recalled: list[Learning] = []

        # Per-run
        self._result: Result | None = None
        self._cancel_event: asyncio.Event | None = None
        self._running = False

        self._handlers: dict[AgentState, PhaseHandler] = {
            AgentState.IDLE: self._perceive,
            AgentState.ANALYZING: self._make_plan,
            AgentState.PLANNING: self._act,
            AgentState.EXECUTING: self._review,
            AgentState.REVIEWING: self._reflect,
            AgentState.REFLECTING: self._decide_next,
        }

    @classmethod
    def from_settings(
        cls,
        tool_registry: ToolRegistryProtocol,
        settings: Settings | None = None,
        **collaborators: Any,
    ) -> "CoreAgent":
        settings = settings or get_settings()
        collaborators.setdefault("retry_strategy", RetryStrategy.from_settings(settings.retry))
        collaborators.setdefault("checkpoint_manager", CheckpointManager.from_settings(settings.agent))
        return cls(tool_registry, AgentConfig.from_settings(settings), **collaborators)

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def telemetry(self) -> AgentTelemetry | None:
        return self._telemetry

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, goal: Goal, cancel_event: asyncio.Event | None = None) -> Result:
        """
        Run ``goal`` to completion or failure.

        Never raises for engine failures: the terminal error is on
        ``Result.error``. An invalid goal leaves the agent untouched.
        ``cancel_event`` is shared with ``stop()``.
        """
        if goal is None or not goal.description.strip():
            error = GoalValidationError(
                "cannot execute goal: description is empty",
                context={"goal_id": goal.id if goal is not None else None},
            )
            logger.warning("agent.execute.invalid_goal", error=str(error))
            return self._rejected_result(goal, error)

        if self._running:
            error = EngineError("agent is already executing a goal", context={"goal_id": goal.id})
            return self._rejected_result(goal, error)

        with self._lock:
            self._goal = goal
            self._plan = []
            self._decisions = []
            self._iteration = 0
            self._project_context = None
            self._recalled = []
            self._state = AgentState.IDLE
            self._state_entered_at = time.monotonic()

        return await self._run(goal, cancel_event)

    async def resume(self, cancel_event: asyncio.Event | None = None) -> Result:
        """
        Continue the restored goal from the restored state.

        Tasks that were in progress when the checkpoint was taken are
        put back to pending.
        """
        with self._lock:
            goal = self._goal
            state = self._state

        if goal is None:
            return self._rejected_result(None, GoalValidationError("no goal to resume; restore a checkpoint first"))
        if state.is_terminal:
            return self._rejected_result(
                goal, EngineError(f"cannot resume from terminal state {state.value}", context={"state": state.value})
            )
        if self._running:
            return self._rejected_result(goal, EngineError("agent is already executing a goal"))

        with self._lock:
            for task in self._plan:
                if task.state == TaskState.IN_PROGRESS:
                    task.state = TaskState.PENDING

        logger.info("agent.resume", goal_id=goal.id, state=state.value, iteration=self._iteration)
        return await self._run(goal, cancel_event)

    def _rejected_result(self, goal: Goal | None, error: GoalEngineError) -> Result:
        return Result(
            goal=goal,
            success=False,
            state=self.get_state(),
            summary=f"Failed: {error}",
            error=error,
        )

    async def _run(self, goal: Goal, cancel_event: asyncio.Event | None) -> Result:
        self._running = True
        self._cancel_event = cancel_event or asyncio.Event()
        self._result = Result(goal=goal)
        self._validator = ConstraintValidator([*goal.constraints, *self._constraints])
        started = time.perf_counter()

        auto_save_stop = asyncio.Event()
        auto_save_task = self._checkpoints.start_auto_save(self, auto_save_stop)

        error: EngineError | None = None
        try:
            with Logger.context(goal_id=goal.id):
                logger.info(
                    "agent.execute.start",
                    description=goal.description,
                    priority=goal.priority.value,
                )
                error = await self._loop()
        except asyncio.CancelledError:
            logger.warning("agent.execute.cancelled", state=self.get_state().value)
            self._transition(AgentState.FAILED)
            error = ExecutionCancelledError("execution cancelled", context={"iteration": self._iteration})
        finally:
            auto_save_stop.set()
            await CheckpointManager.stop_auto_save(auto_save_task)
            self._running = False

        return self._finalize(started, error)

    async def _loop(self) -> EngineError | None:
        """Drive handlers until a terminal state; return the terminal error, if any."""
        while True:
            state = self.get_state()

            if state.is_terminal:
                logger.info("agent.terminal_state_reached", state=state.value, iteration=self._iteration)
                return None

            if self._iteration >= self._config.max_iterations:
                logger.warning("agent.max_iterations_reached", iterations=self._iteration)
                self._transition(AgentState.FAILED)
                return MaxIterationsExceededError(
                    f"max iterations ({self._config.max_iterations}) reached",
                    context={"iterations": self._iteration, "state": state.value},
                )

            if self._cancel_event is not None and self._cancel_event.is_set():
                logger.warning("agent.execute.cancelled", state=state.value, iteration=self._iteration)
                self._transition(AgentState.FAILED)
                return ExecutionCancelledError(
                    "execution cancelled",
                    context={"iteration": self._iteration, "state": state.value},
                )

            with self._lock:
                self._iteration += 1
            logger.debug("agent.iteration.start", iteration=self._iteration, state=state.value)

            try:
                await self._run_phase(state)
            except OperationCancelledError as exc:
                self._transition(AgentState.FAILED)
                return ExecutionCancelledError(
                    f"execution cancelled during {state.value} retry backoff",
                    context={"iteration": self._iteration, "state": state.value},
                    cause=exc,
                )
            except EngineError as exc:
                logger.error("agent.state.error", error=exc, state=state.value)
                self._transition(AgentState.FAILED)
                return exc
            except Exception as exc:
                logger.error("agent.state.error", error=exc, state=state.value)
                self._transition(AgentState.FAILED)
                return PhaseError(f"{state.value} phase failed: {exc}", state=state.value, cause=exc)

    async def _run_phase(self, state: AgentState) -> None:
        handler = self._handlers.get(state)
        if handler is None:
            raise UnknownStateError(f"unknown state: {state}", context={"state": str(state)})

        started = time.perf_counter()
        if self._config.retry_phases:
            outcome = await self._retry.execute_with_result(
                lambda attempt: handler(),
                f"state-{state.value}",
                self._cancel_event,
            )
        else:
            outcome = await handler()
        latency = time.perf_counter() - started

        # Recorded only after the handler succeeded, so a retried handler
        # never duplicates its decisions.
        for decision in outcome.decisions:
            await self._record_decision(decision, latency)
        self._transition(outcome.next_state)

    def _finalize(self, started: float, error: EngineError | None) -> Result:
        result = self._result or Result(goal=self._goal)
        result.duration = time.perf_counter() - started
        result.state = self.get_state()
        result.iterations = self._iteration
        result.error = error

        with self._lock:
            result.tasks = [task.result for task in self._plan if task.result is not None]

        if error is None and result.state == AgentState.COMPLETE:
            result.success = True
            result.summary = "Completed successfully"
            logger.info("agent.execute.complete", duration=round(result.duration, 3), iterations=result.iterations)
        else:
            result.success = False
            result.summary = f"Failed: {error}" if error is not None else f"Failed: ended in state {result.state.value}"
            logger.error("agent.execute.failed", error=error, state=result.state.value)

        if self._telemetry is not None:
            self._telemetry.record_execution(result.success, result.duration)

        self._result = None
        self._cancel_event = None
        return result

    # =========================================================================
    # Phases
    # =========================================================================

    async def _perceive(self) -> PhaseOutcome:
        goal = self._current_goal()
        logger.info("agent.perceive.start")

        project_context: ProjectContext | None = None
        if goal.context.project_path and self._analyzer is not None:
            logger.info("agent.perceive.analyzing_project", path=goal.context.project_path)
            try:
                project_context = await self._analyzer.analyze(goal.context.project_path)
            except Exception as exc:
                logger.warning("agent.perceive.project_analysis_failed", error=str(exc))
            else:
                logger.info(
                    "agent.perceive.project_analyzed",
                    name=project_context.project_name,
                    type=project_context.project_type,
                    languages=len(project_context.languages),
                )

        learnings: list[Learning] = []
        if self._memory is not None:
            try:
                learnings = list(await self._memory.recall(goal.description))
            except Exception as exc:
                logger.warning("agent.perceive.memory_recall_failed", error=str(exc))
            else:
                logger.info("agent.perceive.recalled_learnings", count=len(learnings))

        with self._lock:
            self._project_context = project_context
            self._recalled = learnings

        if self._telemetry is not None:
            for learning in learnings:
                self._telemetry.record_learning(applied=True, confidence=learning.confidence)

        decision = Decision(
            state=AgentState.IDLE,
            type=DecisionType.SELECT_TOOL,
            reasoning=f"Perceived goal: {goal.description}. Found {len(learnings)} relevant learnings.",
            action="Analyze goal",
            confidence=PERCEIVE_CONFIDENCE,
        )
        return PhaseOutcome(AgentState.ANALYZING, [decision])

    async def _make_plan(self) -> PhaseOutcome:
        goal = self._current_goal()
        logger.info("agent.plan.start")

        if self._planner is not None:
            try:
                tasks, reasoning = await self._planner.generate_plan(
                    goal,
                    self._codebase_context(),
                    self._project_context,
                )
            except Exception as exc:
                logger.warning("agent.plan.ai_failed", error=str(exc))
            else:
                self._install_plan(tasks)
                logger.info("agent.plan.ai_complete", tasks=len(tasks))

                reasoning_text = MISSING_REASONING
                confidence = DEFAULT_CONFIDENCE
                if reasoning is not None:
                    confidence = reasoning.confidence
                    if reasoning.chain_of_thought and reasoning.chain_of_thought[0]:
                        reasoning_text = reasoning.chain_of_thought[0]

                decision = Decision(
                    state=AgentState.ANALYZING,
                    type=DecisionType.SELECT_TOOL,
                    reasoning=reasoning_text,
                    action=f"Generated AI plan with {len(tasks)} task(s)",
                    confidence=_clamp_confidence(confidence),
                )
                return PhaseOutcome(AgentState.PLANNING, [decision])

        logger.info("agent.plan.fallback")
        task = Task(
            id="task-1",
            name=FALLBACK_TASK_NAME,
            description=goal.description,
            prompt=goal.description,
            priority=goal.priority,
        )
        self._install_plan([task])

        decision = Decision(
            state=AgentState.ANALYZING,
            type=DecisionType.SELECT_TOOL,
            reasoning=FALLBACK_REASONING,
            action="Single task plan forwarding the goal description",
            confidence=DEFAULT_CONFIDENCE,
        )
        return PhaseOutcome(AgentState.PLANNING, [decision])

    async def _act(self) -> PhaseOutcome:
        with self._lock:
            plan_size = len(self._plan)
            task = next((t for t in self._plan if t.state == TaskState.PENDING), None)
            if task is not None:
                task.state = TaskState.IN_PROGRESS

        logger.info("agent.act.start", tasks=plan_size)

        if plan_size == 0:
            decision = Decision(
                state=AgentState.PLANNING,
                type=DecisionType.EXECUTE_TASK,
                reasoning="Plan has no tasks",
                action="Skip execution",
                confidence=1.0,
            )
            return PhaseOutcome(AgentState.REVIEWING, [decision])

        if task is None:
            decision = Decision(
                state=AgentState.PLANNING,
                type=DecisionType.EXECUTE_TASK,
                reasoning="No pending tasks remain",
                action="Proceed to review",
                confidence=1.0,
            )
            return PhaseOutcome(AgentState.EXECUTING, [decision])

        logger.info("agent.act.task", task_id=task.id, name=task.name)
        try:
            task_result = await self._execute_task(task)
        except BaseException:
            # Leave the task runnable for a retried handler.
            with self._lock:
                task.state = TaskState.PENDING
            raise

        with self._lock:
            task.result = task_result
            task.state = TaskState.COMPLETE if task_result.success else TaskState.FAILED

        outcome = "succeeded" if task_result.success else f"failed: {task_result.error}"
        decision = Decision(
            state=AgentState.PLANNING,
            type=DecisionType.EXECUTE_TASK,
            reasoning=f"Task {task.name} {outcome}",
            action=f"Executed {task.id} with {task_result.tool}",
            confidence=1.0 if task_result.success else DEFAULT_CONFIDENCE,
        )
        return PhaseOutcome(AgentState.EXECUTING, [decision])

    async def _execute_task(self, task: Task) -> TaskResult:
        tools = self._tools.find_for_task(task)

        if self._config.dry_run:
            tool_name = tools[0].name if tools else (task.tool or "dry-run")
            logger.info("agent.act.dry_run", task_id=task.id, tool=tool_name)
            if self._telemetry is not None:
                self._telemetry.record_tool_invocation(tool_name, True, 0.0)
                self._telemetry.record_task(completed=True, duration=0.0)
            return TaskResult(task_id=task.id, name=task.name, success=True, tool=tool_name)

        if not tools:
            raise ToolNotFoundError(
                f"no tool found for task: {task.name}",
                context={"task_id": task.id, "tool": task.tool},
            )

        tool = tools[0]
        params = self._tool_parameters(task)

        started = time.perf_counter()
        try:
            tool_result = await tool.execute(params)
        except Exception as exc:
            duration = time.perf_counter() - started
            logger.error("agent.act.tool_failed", error=exc, task_id=task.id, tool=tool.name)
            if self._telemetry is not None:
                self._telemetry.record_tool_invocation(tool.name, False, duration)
                self._telemetry.record_task(failed=True)
            return TaskResult(
                task_id=task.id,
                name=task.name,
                success=False,
                tool=tool.name,
                duration=duration,
                error=f"{type(exc).__name__}: {exc}",
            )
        duration = time.perf_counter() - started

        error = None
        if not tool_result.success:
            error = tool_result.error or "tool reported failure"

        task_result = TaskResult(
            task_id=task.id,
            name=task.name,
            success=tool_result.success,
            tool=tool.name,
            duration=duration,
            changes=list(tool_result.changes),
            error=error,
        )

        # Advisory: violations are logged, the task is not blocked.
        for violation in self._validator.validate_changes(task_result.changes):
            logger.warning(
                "agent.act.constraint_violation",
                constraint=violation.constraint,
                file_path=violation.file_path,
                violation=violation.message,
            )

        if self._telemetry is not None:
            self._telemetry.record_tool_invocation(tool.name, task_result.success, duration)
            self._telemetry.record_task(
                completed=task_result.success,
                failed=not task_result.success,
                duration=duration,
            )

        logger.info(
            "agent.act.task_complete",
            task_id=task.id,
            success=task_result.success,
            duration=round(duration, 3),
        )
        return task_result

    def _tool_parameters(self, task: Task) -> dict[str, Any]:
        params: dict[str, Any] = dict(task.context)
        params.update(
            prompt=task.prompt or task.description or task.name,
            task_id=task.id,
            task_name=task.name,
        )

        with self._lock:
            goal = self._goal
            project_context = self._project_context

        if goal is not None and goal.context.source_id:
            params["source_id"] = goal.context.source_id
        if project_context is not None and project_context.project_path:
            params["project_path"] = project_context.project_path
        return params

    async def _review(self) -> PhaseOutcome:
        logger.info("agent.review.start")

        with self._lock:
            changes = [change for task in self._plan if task.result for change in task.result.changes]

        if not changes:
            logger.info("agent.review.no_changes")
            decision = Decision(
                state=AgentState.EXECUTING,
                type=DecisionType.APPROVE,
                reasoning="No changes to review",
                action="Skip review",
                confidence=1.0,
            )
            return PhaseOutcome(AgentState.REVIEWING, [decision])

        if self._reviewer is None:
            logger.info("agent.review.no_reviewer", changes=len(changes))
            decision = Decision(
                state=AgentState.EXECUTING,
                type=DecisionType.APPROVE,
                reasoning="No reviewer configured",
                action="Accept changes without review",
                confidence=DEFAULT_CONFIDENCE,
            )
            return PhaseOutcome(AgentState.REVIEWING, [decision])

        try:
            review = await self._reviewer.review(changes)
        except Exception as exc:
            logger.error("agent.review.failed", error=exc)
            raise ReviewError(f"review failed: {exc}", context={"changes": len(changes)}, cause=exc) from exc

        logger.info(
            "agent.review.complete",
            decision=review.decision.value,
            score=review.score,
            comments=len(review.comments),
        )
        if self._telemetry is not None:
            self._telemetry.record_review(review.decision, review.score)

        with self._lock:
            for task in self._plan:
                if task.result is not None:
                    task.result = task.result.model_copy(update={"review_result": review})

        reasoning = review.summary or f"Review decision: {review.decision.value}"
        confidence = _clamp_confidence(review.score / PERCENTAGE_SCALE)

        if review.decision == ReviewDecision.REJECT:
            with self._lock:
                for task in self._plan:
                    if task.state != TaskState.FAILED:
                        task.state = TaskState.PENDING
            decision = Decision(
                state=AgentState.EXECUTING,
                type=DecisionType.REJECT,
                reasoning=reasoning,
                action="Reject changes and retry",
                confidence=confidence,
            )
            return PhaseOutcome(AgentState.PLANNING, [decision])

        if review.decision == ReviewDecision.REQUEST_CHANGES:
            # Accepted with a warning.
            logger.warning("agent.review.changes_requested", comments=len(review.comments))
            decision = Decision(
                state=AgentState.EXECUTING,
                type=DecisionType.REQUEST_CHANGE,
                reasoning=reasoning,
                action="Request improvements",
                confidence=confidence,
            )
            return PhaseOutcome(AgentState.REVIEWING, [decision])

        decision = Decision(
            state=AgentState.EXECUTING,
            type=DecisionType.APPROVE,
            reasoning=reasoning,
            action="Approve changes",
            confidence=confidence,
        )
        return PhaseOutcome(AgentState.REVIEWING, [decision])

    async def _reflect(self) -> PhaseOutcome:
        goal = self._current_goal()
        logger.info("agent.reflect.start")

        with self._lock:
            results = [task.result for task in self._plan if task.result is not None]

        succeeded = sum(1 for r in results if r.success)
        tools_used = sorted({r.tool for r in results if r.tool})

        lesson = f"Completed {len(results)} tasks"
        confidence = LEARNING_BASELINE_CONFIDENCE
        if succeeded == len(results):
            confidence = LEARNING_SUCCESS_CONFIDENCE
            lesson += " - all tasks succeeded"

        learning = Learning(
            context=goal.description,
            pattern=f"{', '.join(tools_used) or 'task'} execution",
            lesson=lesson,
            confidence=confidence,
        )

        if self._memory is not None:
            try:
                await self._memory.store(learning)
            except Exception as exc:
                logger.warning("agent.reflect.store_learning_failed", error=str(exc))
            else:
                if self._telemetry is not None:
                    self._telemetry.record_learning(stored=True, confidence=confidence)

        if self._result is not None:
            self._result.tasks = list(results)
            self._result.learnings.append(learning)

        logger.info("agent.reflect.complete", succeeded=succeeded, total=len(results))

        decision = Decision(
            state=AgentState.REVIEWING,
            type=DecisionType.REFLECT,
            reasoning=f"{succeeded} of {len(results)} task(s) succeeded",
            action=lesson,
            confidence=confidence,
        )
        return PhaseOutcome(AgentState.REFLECTING, [decision])

    async def _decide_next(self) -> PhaseOutcome:
        decisions: list[Decision] = []

        with self._lock:
            failed = [t for t in self._plan if t.state == TaskState.FAILED]

        if failed and self._config.adapt_plan_on_failure and self._planner is not None:
            adapted = await self._adapt_plan(failed)
            if adapted is not None:
                decisions.append(adapted)

        with self._lock:
            failed_count = sum(1 for t in self._plan if t.state == TaskState.FAILED)
            pending_count = sum(1 for t in self._plan if t.state == TaskState.PENDING)

        if failed_count or pending_count:
            logger.info("agent.reflect.more_work", pending=pending_count, failed=failed_count)
            decisions.append(
                Decision(
                    state=AgentState.REFLECTING,
                    type=DecisionType.CONTINUE_WORK,
                    reasoning=f"{pending_count} pending and {failed_count} failed task(s) remain",
                    action="Start another planning cycle",
                    confidence=DEFAULT_CONFIDENCE,
                )
            )
            return PhaseOutcome(AgentState.PLANNING, decisions)

        decisions.append(
            Decision(
                state=AgentState.REFLECTING,
                type=DecisionType.COMPLETE,
                reasoning="All tasks complete",
                action="Finish execution",
                confidence=1.0,
            )
        )
        return PhaseOutcome(AgentState.COMPLETE, decisions)

    async def _adapt_plan(self, failed: list[Task]) -> Decision | None:
        """Replace failed tasks with the planner's adapted tasks. Non-fatal."""
        with self._lock:
            current = [task.model_copy(deep=True) for task in self._plan]

        reason = f"{len(failed)} task(s) failed"
        feedback = "; ".join(
            f"{task.name}: {task.result.error}" for task in failed if task.result and task.result.error
        )

        try:
            adapted = await self._planner.adapt_plan(current, reason, feedback)
        except Exception as exc:
            logger.warning("agent.plan.adapt_failed", error=str(exc))
            return None

        if not adapted:
            logger.info("agent.plan.adapt_empty")
            return None

        new_tasks = [task.model_copy(update={"state": TaskState.PENDING, "result": None}, deep=True) for task in adapted]
        with self._lock:
            self._plan = [task for task in self._plan if task.state != TaskState.FAILED] + new_tasks

        if self._telemetry is not None:
            for _ in new_tasks:
                self._telemetry.record_task(created=True)

        logger.info("agent.plan.adapted", replaced=len(failed), new_tasks=len(new_tasks))
        return Decision(
            state=AgentState.REFLECTING,
            type=DecisionType.ADAPT_PLAN,
            reasoning=f"Adapted plan after {reason}",
            action=f"Replaced failed tasks with {len(new_tasks)} new task(s)",
            confidence=DEFAULT_CONFIDENCE,
        )

    # =========================================================================
    # State helpers
    # =========================================================================

    def _current_goal(self) -> Goal:
        with self._lock:
            goal = self._goal
        if goal is None:
            raise EngineError("no goal is being executed")
        return goal

    def _install_plan(self, tasks: list[Task]) -> None:
        plan = [task.model_copy(deep=True) for task in tasks]
        with self._lock:
            self._plan = plan
        if self._telemetry is not None:
            for _ in plan:
                self._telemetry.record_task(created=True)

    def _codebase_context(self) -> str:
        with self._lock:
            recalled = list(self._recalled)
        if not recalled:
            return ""
        lines = ["Relevant learnings from previous executions:"]
        lines.extend(f"- {learning.lesson or learning.pattern}" for learning in recalled[:5])
        return "\n".join(lines)

    def _transition(self, new_state: AgentState) -> None:
        with self._lock:
            old_state = self._state
            now = time.monotonic()
            elapsed = now - self._state_entered_at
            self._state = new_state
            self._state_entered_at = now

        logger.info("agent.state.transition", from_state=old_state.value, to_state=new_state.value)
        if self._telemetry is not None:
            self._telemetry.record_state_transition(old_state, new_state, elapsed)

    async def _record_decision(self, decision: Decision, latency: float) -> None:
        with self._lock:
            decision = decision.model_copy(update={"id": f"decision-{len(self._decisions) + 1}"})
            self._decisions.append(decision)

        if self._telemetry is not None:
            self._telemetry.record_decision(decision.type, latency)

        if self._memory is not None:
            try:
                await self._memory.record_decision(decision)
            except Exception as exc:
                logger.error("agent.decision.record_failed", error=exc, decision_id=decision.id)

    # =========================================================================
    # Public surface
    # =========================================================================

    def get_state(self) -> AgentState:
        with self._lock:
            return self._state

    def get_history(self) -> list[Decision]:
        with self._lock:
            return list(self._decisions)

    def get_plan(self) -> list[Task]:
        with self._lock:
            return [task.model_copy(deep=True) for task in self._plan]

    def get_progress(self) -> Progress:
        with self._lock:
            state = self._state
            total = len(self._plan)
            completed = sum(1 for t in self._plan if t.state == TaskState.COMPLETE)
            current = next((t.name for t in self._plan if t.state == TaskState.IN_PROGRESS), "")

        percentage = completed / total * PERCENTAGE_SCALE if total else 0.0
        return Progress(
            state=state,
            current_task=current,
            completed_tasks=completed,
            total_tasks=total,
            percentage=percentage,
            message=f"State: {state.value}",
        )

    def stop(self) -> None:
        """Request cancellation; honoured at the next iteration or backoff wait."""
        if self._cancel_event is not None:
            logger.info("agent.stop.requested", state=self.get_state().value)
            self._cancel_event.set()

    def set_constraints(self, constraints: list[str]) -> None:
        """Extra constraints checked alongside the goal's own."""
        self._constraints = [c for c in constraints if c.strip()]
        with self._lock:
            goal_constraints = list(self._goal.constraints) if self._goal else []
        self._validator = ConstraintValidator([*goal_constraints, *self._constraints])

    def get_telemetry_summary(self) -> dict[str, Any]:
        if self._telemetry is None:
            return {}
        return self._telemetry.summary()

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def snapshot(self) -> AgentSnapshot:
        """Deep copy of the mutable fields, consistent under the state lock."""
        with self._lock:
            return AgentSnapshot(
                state=self._state,
                goal=self._goal.model_copy(deep=True) if self._goal else None,
                plan=[task.model_copy(deep=True) for task in self._plan],
                decisions=list(self._decisions),
                iteration=self._iteration,
            )

    def load_snapshot(self, snapshot: AgentSnapshot) -> None:
        """Overwrite the mutable fields. Not allowed while executing."""
        if self._running:
            raise CheckpointError("cannot restore while the agent is executing")

        with self._lock:
            self._state = snapshot.state
            self._state_entered_at = time.monotonic()
            self._goal = snapshot.goal
            self._plan = [task.model_copy(deep=True) for task in snapshot.plan]
            self._decisions = list(snapshot.decisions)
            self._iteration = snapshot.iteration
            self._project_context = None
            self._recalled = []

    async def save_checkpoint(self, metadata: dict[str, Any] | None = None) -> Checkpoint:
        return await self._checkpoints.save(self, metadata)

    async def get_checkpoints(self) -> list[Checkpoint]:
        return await self._checkpoints.list_checkpoints()

    async def restore_from_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        if self._running:
            raise CheckpointError("cannot restore while the agent is executing")
        return await self._checkpoints.restore(checkpoint_id, self)
