"""
Configuration Module

Centralized configuration management for the goal engine.
"""

from goalengine.config.settings import (
    AgentSettings,
    CircuitBreakerSettings,
    LoggingSettings,
    RateLimitSettings,
    RetrySettings,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "AgentSettings",
    "RetrySettings",
    "CircuitBreakerSettings",
    "RateLimitSettings",
    "LoggingSettings",
]
