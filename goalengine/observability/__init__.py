"""
Observability Module

Logging, metrics, and telemetry.

Components:
- Logger: Structured logging
- MetricsCollector: Metrics collection
- AgentTelemetry: Engine-level aggregates
"""

from goalengine.observability.logging import (
    ConsoleHandler,
    FileHandler,
    LogEntry,
    Logger,
    LogLevel,
    MemoryHandler,
    configure_logging,
    get_logger,
)
from goalengine.observability.metrics import Counter, Gauge, Histogram, MetricsCollector
from goalengine.observability.telemetry import AgentTelemetry

__all__ = [
    "Logger",
    "LogLevel",
    "LogEntry",
    "ConsoleHandler",
    "FileHandler",
    "MemoryHandler",
    "get_logger",
    "configure_logging",
    "MetricsCollector",
    "Counter",
    "Histogram",
    "Gauge",
    "AgentTelemetry",
]
