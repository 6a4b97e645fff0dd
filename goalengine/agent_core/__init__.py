"""
Agent core: the execution engine and its built-in collaborators.
"""

from goalengine.agent_core.checkpoint import AgentSnapshot, Checkpoint, CheckpointManager
from goalengine.agent_core.orchestrator import AgentConfig, CoreAgent, Progress, Result
from goalengine.agent_core.planner import Planner
from goalengine.agent_core.validator import Constraint, ConstraintValidator, ConstraintViolation

__all__ = [
    "AgentConfig",
    "AgentSnapshot",
    "Checkpoint",
    "CheckpointManager",
    "Constraint",
    "ConstraintValidator",
    "ConstraintViolation",
    "CoreAgent",
    "Planner",
    "Progress",
    "Result",
]
