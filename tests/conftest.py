"""
Test Configuration

Shared fixtures and test utilities.
"""

import pytest

from goalengine.observability.logging import Logger, LogLevel, MemoryHandler


@pytest.fixture
def log_records():
    """Capture every log entry emitted during the test."""
    handler = MemoryHandler(level=LogLevel.DEBUG)
    Logger.add_handler(handler)
    Logger.configure(level=LogLevel.DEBUG)
    yield handler
    Logger.remove_handler(handler)
    Logger.configure(level=LogLevel.INFO)


@pytest.fixture
def fast_retry():
    """Retry policy with near-zero backoff."""
    from goalengine.resilience import RetryStrategy

    return RetryStrategy(max_retries=2, initial_delay=0.001, max_delay=0.005, jitter=0.0)


@pytest.fixture
def agent_config(tmp_path):
    """Engine config writing checkpoints under tmp_path, auto-save off."""
    from goalengine.agent_core import AgentConfig

    return AgentConfig(checkpoint_dir=str(tmp_path / "checkpoints"), auto_save=False)


@pytest.fixture
def make_agent(agent_config, fast_retry):
    """Factory building a CoreAgent around the given tools and collaborators."""
    from dataclasses import replace

    from goalengine.agent_core import CoreAgent
    from goalengine.tools import ToolRegistry

    def _make(tools=None, **kwargs):
        config_overrides = {
            key: kwargs.pop(key)
            for key in list(kwargs)
            if key in agent_config.__dataclass_fields__
        }
        config = replace(agent_config, **config_overrides)
        kwargs.setdefault("retry_strategy", fast_retry)
        registry = kwargs.pop("registry", None) or ToolRegistry(tools or [])
        return CoreAgent(registry, config, **kwargs)

    return _make
