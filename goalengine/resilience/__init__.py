"""
Resilience primitives: retry, circuit breaker, rate limiting.
"""

from goalengine.resilience.cancellation import sleep_or_cancelled
from goalengine.resilience.circuit_breaker import CircuitBreaker, CircuitState
from goalengine.resilience.rate_limiter import RateLimiter
from goalengine.resilience.retry import RetryStrategy

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RateLimiter",
    "RetryStrategy",
    "sleep_or_cancelled",
]
