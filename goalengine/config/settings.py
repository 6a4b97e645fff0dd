"""
Settings Management

Provides centralized, type-safe configuration using Pydantic.
Supports environment variables, .env files, and hierarchical config.

Design decisions:
- Using pydantic-settings for validation and type coercion
- Immutable settings after initialization (frozen model)
- Separate concerns: engine loop vs. resilience vs. logging
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETRYABLE_ERRORS = [
    "timeout",
    "connection refused",
    "temporary failure",
    "rate limit",
    "503",
    "502",
    "504",
]


class AgentSettings(BaseSettings):
    """Execution loop configuration."""

    model_config = SettingsConfigDict(env_prefix="AGENT_")

    max_iterations: int = Field(default=20, ge=1, description="Loop iteration cap")
    dry_run: bool = Field(default=False, description="Synthesize tool results")

    # Checkpointing
    checkpoint_dir: str = Field(default="./checkpoints")
    auto_save: bool = Field(default=True)
    save_interval_seconds: float = Field(default=300.0, gt=0)

    # Behaviour
    enable_telemetry: bool = Field(default=True)
    retry_phases: bool = Field(default=True, description="Wrap phase handlers in retry")
    adapt_plan_on_failure: bool = Field(default=False)


class RetrySettings(BaseSettings):
    """Retry policy configuration."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.25, ge=0.0, le=1.0)
    retryable_errors: list[str] = Field(default_factory=lambda: list(DEFAULT_RETRYABLE_ERRORS))

    @model_validator(mode="after")
    def _check_delays(self) -> "RetrySettings":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class CircuitBreakerSettings(BaseSettings):
    """Circuit breaker configuration."""

    model_config = SettingsConfigDict(env_prefix="BREAKER_")

    max_failures: int = Field(default=3, ge=1)
    reset_timeout: float = Field(default=30.0, gt=0)


class RateLimitSettings(BaseSettings):
    """Token-bucket configuration."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    requests_per_minute: int = Field(default=60, ge=1)
    burst_size: int = Field(default=10, ge=1)
    poll_interval: float = Field(default=0.1, gt=0)


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    """
    Master settings aggregator.

    This is the single source of truth for all configuration.
    Sub-settings are composed here to maintain clear boundaries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,  # Immutable after creation
    )

    app_name: str = Field(default="goalengine")
    environment: Literal["development", "staging", "production"] = "development"

    agent: AgentSettings = Field(default_factory=AgentSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Safe to share because settings are frozen.
    """
    return Settings()
