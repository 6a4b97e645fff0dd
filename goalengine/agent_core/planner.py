"""
Task Planner

Goal decomposition on top of a text generator.

Design decisions:
- Plain-text response format (REASONING / TASKS sections), parsed line by line
- Dependencies given as task numbers are resolved to task ids
- Adaptation re-plans with the current plan's status in the prompt
- Generator failures surface as PlanningError; the engine decides on fallback
"""

import re

from goalengine.core.exceptions import PlanningError
from goalengine.core.interfaces import TextGeneratorProtocol
from goalengine.core.types import Goal, Priority, ProjectContext, Reasoning, Task, TaskState
from goalengine.observability.logging import get_logger

logger = get_logger("goalengine.planner")

_SECTION = re.compile(r"^\s*(REASONING|ADAPTED TASKS|TASKS)\s*:\s*(.*)$")
_TASK_HEADER = re.compile(r"^Task\s+\d+\s*:\s*(.*)$")
_TASK_ID = re.compile(r"^task-(\d+)$")
_DEFAULT_REASONING_CONFIDENCE = 0.8

# Field label -> (Task attribute or context key, goes into context)
_TASK_FIELDS = {
    "Description:": ("description", False),
    "Tool:": ("tool", False),
    "Dependencies:": ("dependencies", False),
    "Success Criteria:": ("success_criteria", True),
    "Risk:": ("risk", True),
    "Estimated Duration:": ("estimated_duration", True),
}

PLANNING_PROMPT = """You are an expert AI agent planner. Generate a detailed, step-by-step execution plan to achieve the following goal.

GOAL: {description}
PRIORITY: {priority}{constraints}{deadline}{project}

CODEBASE CONTEXT:
{codebase}

INSTRUCTIONS:
1. Use chain-of-thought reasoning to break down the goal
2. Create specific, actionable tasks with clear success criteria
3. Identify dependencies between tasks
4. Consider edge cases and potential issues
5. Recommend an appropriate tool for each task
6. Estimate complexity and risk for each task
7. Take the project analysis into account when planning

OUTPUT FORMAT:
REASONING:
[Your chain-of-thought reasoning]

TASKS:
Task 1: [name]
Description: [detailed description]
Tool: [recommended tool]
Dependencies: [comma-separated task numbers, or "none"]
Success Criteria: [clear criteria]
Risk: [LOW/MEDIUM/HIGH]
Estimated Duration: [estimate]

Task 2: ...

Generate the plan now."""

ADAPTATION_PROMPT = """You are adapting an execution plan based on new information.

CURRENT PLAN:{plan}

ADAPTATION REASON: {reason}

FEEDBACK: {feedback}

INSTRUCTIONS:
1. Analyze what went wrong or what changed
2. Determine which tasks need to be modified, added, or removed
3. Maintain dependencies and task ordering
4. Explain each change in your reasoning

OUTPUT FORMAT:
REASONING:
[Your analysis]

ADAPTED TASKS:
Task 1: [name]
Description: [description]
Tool: [tool]
Dependencies: [task numbers, or "none"]
Success Criteria: [criteria]
Risk: [risk]
Estimated Duration: [duration]

Generate the adapted plan now."""


class Planner:
    """
    Planner collaborator backed by an LLM.

    Usage:
        planner = Planner(generator)
        tasks, reasoning = await planner.generate_plan(goal)
    """

    def __init__(self, generator: TextGeneratorProtocol):
        if generator is None:
            raise ValueError("generator cannot be None")
        self._generator = generator

    async def generate_plan(
        self,
        goal: Goal,
        codebase_context: str = "",
        project_context: ProjectContext | None = None,
    ) -> tuple[list[Task], Reasoning | None]:
        """
        Decompose ``goal`` into ordered tasks.

        Raises:
            PlanningError: empty goal, generator failure, or unparseable response
        """
        if not goal.description.strip():
            raise PlanningError("cannot generate plan: goal description is empty")

        logger.info("planner.generate_plan.start", goal=goal.description)

        prompt = self.build_planning_prompt(goal, codebase_context, project_context)
        response = await self._generate(prompt, "generate plan")
        tasks, reasoning = self.parse_response(response, goal.priority)

        logger.info("planner.generate_plan.complete", tasks=len(tasks))
        return tasks, reasoning

    async def adapt_plan(
        self,
        current_plan: list[Task],
        reason: str,
        feedback: str = "",
    ) -> list[Task]:
        """
        Re-plan given the current plan's status.

        Returned task ids continue after the highest numbered id in the
        current plan so they never collide with tasks that are kept.
        """
        if not current_plan:
            raise PlanningError("cannot adapt plan: current plan is empty")
        if not reason.strip():
            raise PlanningError("cannot adapt plan: reason is empty")

        logger.info("planner.adapt_plan.start", reason=reason)

        prompt = self.build_adaptation_prompt(current_plan, reason, feedback)
        response = await self._generate(prompt, "adapt plan")
        priority = current_plan[0].priority
        tasks, _ = self.parse_response(response, priority, id_offset=_highest_task_number(current_plan))

        logger.info("planner.adapt_plan.complete", new_tasks=len(tasks))
        return tasks

    async def _generate(self, prompt: str, purpose: str) -> str:
        try:
            return await self._generator.generate(prompt)
        except Exception as exc:
            raise PlanningError(f"failed to {purpose}: {exc}", cause=exc) from exc

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    @staticmethod
    def build_planning_prompt(
        goal: Goal,
        codebase_context: str = "",
        project_context: ProjectContext | None = None,
    ) -> str:
        constraints = ""
        if goal.constraints:
            constraints = "\n\nCONSTRAINTS:\n" + "\n".join(goal.constraints)

        deadline = ""
        if goal.deadline is not None:
            deadline = f"\n\nDEADLINE: {goal.deadline.isoformat()}"

        project = ""
        if project_context is not None:
            project = (
                "\n\nPROJECT ANALYSIS:"
                f"\nName: {project_context.project_name}"
                f"\nType: {project_context.project_type}"
                f"\nLanguages: {', '.join(project_context.languages)}"
                f"\nFrameworks: {', '.join(project_context.frameworks)}"
                f"\nArchitecture: {project_context.architecture}"
                f"\nComplexity: {project_context.complexity}"
                f"\nDependencies: {len(project_context.dependencies)} packages"
            )

        return PLANNING_PROMPT.format(
            description=goal.description,
            priority=goal.priority.value,
            constraints=constraints,
            deadline=deadline,
            project=project,
            codebase=codebase_context,
        )

    @staticmethod
    def build_adaptation_prompt(current_plan: list[Task], reason: str, feedback: str = "") -> str:
        summary = "".join(
            f"\nTask {i}: {task.name} (Status: {task.state.value})"
            for i, task in enumerate(current_plan, start=1)
        )
        return ADAPTATION_PROMPT.format(plan=summary, reason=reason, feedback=feedback)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def split_sections(response: str) -> dict[str, str]:
        """Section header -> body. ADAPTED TASKS is folded into TASKS."""
        sections: dict[str, list[str]] = {}
        current: str | None = None

        for line in response.splitlines():
            match = _SECTION.match(line)
            if match:
                current = "TASKS" if match.group(1) == "ADAPTED TASKS" else match.group(1)
                sections[current] = [match.group(2)] if match.group(2) else []
                continue
            if current is not None:
                sections[current].append(line)

        return {name: "\n".join(lines).strip() for name, lines in sections.items()}

    @classmethod
    def parse_response(
        cls,
        response: str,
        priority: Priority = Priority.MEDIUM,
        id_offset: int = 0,
    ) -> tuple[list[Task], Reasoning]:
        sections = cls.split_sections(response)
        if "TASKS" not in sections:
            raise PlanningError("failed to parse plan: no TASKS section found in response")

        reasoning_text = sections.get("REASONING", "")
        reasoning = Reasoning(
            chain_of_thought=[reasoning_text] if reasoning_text else [],
            confidence=_DEFAULT_REASONING_CONFIDENCE,
            selected_path=reasoning_text,
        )
        return cls.parse_tasks(sections["TASKS"], priority, id_offset), reasoning

    @staticmethod
    def parse_tasks(section: str, priority: Priority = Priority.MEDIUM, id_offset: int = 0) -> list[Task]:
        tasks: list[Task] = []
        current: Task | None = None

        for raw in section.splitlines():
            line = raw.strip()
            if not line:
                continue

            header = _TASK_HEADER.match(line)
            if header:
                current = Task(
                    id=f"task-{id_offset + len(tasks) + 1}",
                    name=header.group(1).strip(),
                    priority=priority,
                    state=TaskState.PENDING,
                )
                tasks.append(current)
                continue

            if current is None:
                continue

            for label, (attr, in_context) in _TASK_FIELDS.items():
                if not line.startswith(label):
                    continue
                value = line[len(label):].strip()
                if in_context:
                    current.context[attr] = value
                elif attr == "tool":
                    current.tool = value.lower()
                elif attr == "dependencies":
                    current.dependencies = _parse_dependencies(value, id_offset)
                else:
                    current.description = value
                break

        for task in tasks:
            task.prompt = f"{task.name}: {task.description}" if task.description else task.name

        return tasks


def _highest_task_number(tasks: list[Task]) -> int:
    numbers = [int(match.group(1)) for match in (_TASK_ID.match(task.id) for task in tasks) if match]
    return max([len(tasks), *numbers])


def _parse_dependencies(value: str, id_offset: int) -> list[str]:
    if value.lower() in ("", "none", "n/a"):
        return []

    deps = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        # "2" or "Task 2" refers to the second task in this response
        number = re.fullmatch(r"(?:task[\s-]*)?(\d+)", part, flags=re.IGNORECASE)
        deps.append(f"task-{id_offset + int(number.group(1))}" if number else part)
    return deps
