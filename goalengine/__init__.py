"""
GoalEngine: Resilient Agent Execution Engine

Drives a long-running, multi-step goal through a fixed
perceive → plan → act → review → reflect pipeline.

- Resilience: retry with backoff, circuit breaking, rate limiting
- Durability: file-based checkpoints with periodic auto-save
- Observability: structured logging and execution telemetry
- Policy: advisory constraint validation of proposed changes
"""

__version__ = "0.1.0"
__author__ = "GoalEngine Team"
