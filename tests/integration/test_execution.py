"""
Integration Tests - Goal Execution

End-to-end runs through the real planner, memory, registry and checkpoints.
"""

import pytest

from goalengine.core.interfaces import ToolResult
from goalengine.core.types import AgentState, Goal, GoalContext, ReviewDecision, ReviewResult
from tests.fixtures import FakeAnalyzer, FakeGenerator, FakeReviewer, FakeTool, make_change

PLAN = """REASONING:
Fix the handler first, then add a regression test.

TASKS:
Task 1: Fix handler
Description: Return 404 for unknown ids
Tool: code
Dependencies: none

Task 2: Add regression test
Description: Cover the unknown id case
Tool: code
Dependencies: 1
"""


class TestGoalExecution:
    """Full engine runs."""

    @pytest.mark.asyncio
    async def test_planned_goal_with_review(self, tmp_path):
        """Test a planned goal runs to completion and leaves reusable learnings."""
        from goalengine.agent_core import AgentConfig, CoreAgent, Planner
        from goalengine.memory import LearningStore
        from goalengine.resilience import RetryStrategy
        from goalengine.tools import ToolRegistry

        tool = FakeTool(
            "code",
            outcomes=[
                ToolResult(success=True, changes=[make_change("api/handlers.py", "+    return 404\n")]),
                ToolResult(success=True, changes=[make_change("tests/test_handlers.py", "+def test_404(): ...\n")]),
            ],
        )
        memory = LearningStore()
        generator = FakeGenerator(PLAN)
        agent = CoreAgent(
            ToolRegistry([tool]),
            AgentConfig(checkpoint_dir=str(tmp_path), auto_save=False),
            planner=Planner(generator),
            reviewer=FakeReviewer(ReviewResult(decision=ReviewDecision.APPROVE, score=92, summary="looks good")),
            memory=memory,
            analyzer=FakeAnalyzer(),
            retry_strategy=RetryStrategy(max_retries=1, initial_delay=0.001, max_delay=0.001),
        )

        goal = Goal(
            description="return 404 for unknown ids",
            constraints=["Include tests"],
            context=GoalContext(project_path=str(tmp_path)),
        )
        result = await agent.execute(goal)

        assert result.success is True, result.summary
        assert [t.name for t in result.tasks] == ["Fix handler", "Add regression test"]
        assert all(t.review_result.score == 92 for t in result.tasks)
        assert tool.calls[0]["prompt"] == "Fix handler: Return 404 for unknown ids"
        assert "PROJECT ANALYSIS" in generator.prompts[0]

        # Learnings from this run are recalled by the next one.
        recalled = await memory.recall("return 404")
        assert recalled and recalled[0].confidence == 0.9
        assert len(await memory.get_decision_history()) == len(agent.get_history())

        second = await agent.execute(goal)
        assert second.success is True
        assert "Relevant learnings" in generator.prompts[1]

        summary = agent.get_telemetry_summary()
        assert summary["executions"]["total"] == 2
        assert summary["learning"]["applied"] >= 1

    @pytest.mark.asyncio
    async def test_checkpoint_then_resume(self, tmp_path):
        """Test a run stopped mid-way can be checkpointed and resumed elsewhere."""
        from goalengine.agent_core import AgentConfig, CoreAgent, Planner
        from goalengine.core.exceptions import ExecutionCancelledError
        from goalengine.tools import ToolRegistry

        config = AgentConfig(checkpoint_dir=str(tmp_path), auto_save=False)

        first = None

        class StoppingTool(FakeTool):
            async def execute(self, params):
                result = await super().execute(params)
                first.stop()
                return result

        first = CoreAgent(ToolRegistry([StoppingTool("code")]), config, planner=Planner(FakeGenerator(PLAN)))
        stopped = await first.execute(Goal(description="return 404 for unknown ids"))

        assert isinstance(stopped.error, ExecutionCancelledError)
        checkpoint = await first.save_checkpoint({"reason": "operator stop"})
        assert checkpoint.state == AgentState.FAILED

        # A cancelled run ends in FAILED; resume from the last working state.
        snapshot = checkpoint.to_snapshot()
        snapshot.state = AgentState.EXECUTING

        tool = FakeTool("code")
        second = CoreAgent(ToolRegistry([tool]), config, planner=Planner(FakeGenerator(PLAN)))
        second.load_snapshot(snapshot)
        resumed = await second.resume()

        assert resumed.success is True
        assert [call["task_id"] for call in tool.calls] == ["task-2"]
        assert len(resumed.tasks) == 2
