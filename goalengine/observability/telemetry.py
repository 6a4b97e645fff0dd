"""
Agent Telemetry

Aggregates execution, decision, tool, state, task, review and learning
metrics across every goal an agent runs, on top of MetricsCollector.
"""

from goalengine.core.types import AgentState, DecisionType, ReviewDecision
from goalengine.observability.metrics import MetricsCollector


class AgentTelemetry:
    """
    Telemetry recorder for the execution engine.

    Rates and averages are derived from the underlying counters and
    histograms, so the summary is always consistent with the raw metrics.
    """

    def __init__(self, collector: MetricsCollector | None = None):
        self.collector = collector or MetricsCollector()
        c = self.collector

        self._executions = c.counter("executions_total")
        self._execution_duration = c.histogram("execution_duration_seconds")
        self._decisions = c.counter("decisions_total")
        self._decision_latency = c.histogram("decision_latency_seconds")
        self._tool_calls = c.counter("tool_calls_total")
        self._tool_duration = c.histogram("tool_call_duration_seconds")
        self._transitions = c.counter("state_transitions_total")
        self._time_in_state = c.gauge("time_in_state_seconds")
        self._tasks = c.counter("tasks_total")
        self._task_duration = c.histogram("task_duration_seconds")
        self._reviews = c.counter("reviews_total")
        self._review_score = c.histogram("review_score")
        self._learnings = c.counter("learnings_total")
        self._learning_confidence = c.histogram("learning_confidence")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_execution(self, success: bool, duration: float) -> None:
        status = "success" if success else "failure"
        self._executions.inc(labels={"status": status})
        self._execution_duration.observe(duration)

    def record_decision(self, decision_type: DecisionType, latency: float) -> None:
        labels = {"type": decision_type.value}
        self._decisions.inc(labels=labels)
        self._decision_latency.observe(latency, labels)

    def record_tool_invocation(self, tool_name: str, success: bool, latency: float) -> None:
        status = "success" if success else "failure"
        self._tool_calls.inc(labels={"tool": tool_name, "status": status})
        self._tool_duration.observe(latency, {"tool": tool_name})

    def record_state_transition(
        self, from_state: AgentState, to_state: AgentState, duration: float
    ) -> None:
        self._time_in_state.inc(duration, {"state": from_state.value})
        self._transitions.inc(labels={"transition": f"{from_state.value}->{to_state.value}"})

    def record_task(
        self,
        created: bool = False,
        completed: bool = False,
        failed: bool = False,
        duration: float = 0.0,
    ) -> None:
        if created:
            self._tasks.inc(labels={"outcome": "created"})
        if completed:
            self._tasks.inc(labels={"outcome": "completed"})
            self._task_duration.observe(duration)
        if failed:
            self._tasks.inc(labels={"outcome": "failed"})

    def record_review(self, decision: ReviewDecision, score: float) -> None:
        self._reviews.inc(labels={"decision": decision.value})
        self._review_score.observe(score)

    def record_learning(self, stored: bool = False, applied: bool = False, confidence: float = 0.0) -> None:
        if stored:
            self._learnings.inc(labels={"event": "stored"})
            self._learning_confidence.observe(confidence)
        if applied:
            self._learnings.inc(labels={"event": "applied"})

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def total_executions(self) -> int:
        return int(self._executions.total())

    def success_rate(self) -> float:
        """Fraction of executions that succeeded."""
        total = self._executions.total()
        if total == 0:
            return 0.0
        return self._executions.get({"status": "success"}) / total

    def tool_success_rate(self, tool_name: str) -> float:
        ok = self._tool_calls.get({"tool": tool_name, "status": "success"})
        failed = self._tool_calls.get({"tool": tool_name, "status": "failure"})
        if ok + failed == 0:
            return 0.0
        return ok / (ok + failed)

    def average_learning_confidence(self) -> float:
        return self._learning_confidence.average()

    def _decisions_by_type(self) -> dict[str, int]:
        return {k: int(v) for k, v in self._decisions.by_label("type").items()}

    def _tool_stats(self) -> dict[str, dict]:
        invocations = {k: int(v) for k, v in self._tool_calls.by_label("tool").items()}
        return {
            "invocations": invocations,
            "success_rate": {name: self.tool_success_rate(name) for name in invocations},
            "avg_latency": {
                name: self._tool_duration.average({"tool": name}) for name in invocations
            },
        }

    def summary(self) -> dict:
        """Nested key/value summary of every aggregate."""
        by_type = self._decisions_by_type()

        return {
            "executions": {
                "total": self.total_executions,
                "successful": int(self._executions.get({"status": "success"})),
                "failed": int(self._executions.get({"status": "failure"})),
                "success_rate": self.success_rate(),
                "avg_duration": self._execution_duration.average(),
            },
            "decisions": {
                "by_type": by_type,
                "total": sum(by_type.values()),
                "avg_latency": self._decision_latency.average(),
            },
            "tools": self._tool_stats(),
            "states": {
                "transitions": {
                    k: int(v) for k, v in self._transitions.by_label("transition").items()
                },
                "time_in_state": {
                    dict(k)["state"]: v for k, v in self._time_in_state.values().items() if k
                },
            },
            "tasks": {
                "created": int(self._tasks.get({"outcome": "created"})),
                "completed": int(self._tasks.get({"outcome": "completed"})),
                "failed": int(self._tasks.get({"outcome": "failed"})),
                "avg_duration": self._task_duration.average(),
            },
            "reviews": {
                "performed": int(self._reviews.total()),
                "approved": int(self._reviews.get({"decision": ReviewDecision.APPROVE.value})),
                "rejected": int(self._reviews.get({"decision": ReviewDecision.REJECT.value})),
                "avg_score": self._review_score.average(),
            },
            "learning": {
                "stored": int(self._learnings.get({"event": "stored"})),
                "applied": int(self._learnings.get({"event": "applied"})),
                "avg_confidence": self.average_learning_confidence(),
            },
        }
