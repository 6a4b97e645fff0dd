"""
Unit Tests - Resilience

Tests for retry, circuit breaking, rate limiting and cancellable waits.
"""

import asyncio

import pytest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRetryStrategy:
    """Tests for RetryStrategy."""

    def test_defaults(self):
        """Test default policy values."""
        from goalengine.resilience import RetryStrategy

        strategy = RetryStrategy()
        assert strategy.max_retries == 3
        assert strategy.initial_delay == 1.0
        assert strategy.max_delay == 30.0
        assert strategy.backoff_factor == 2.0
        assert strategy.jitter == 0.25
        assert strategy.max_attempts == 4
        assert "timeout" in strategy.retryable_errors

    def test_invalid_configuration(self):
        """Test invalid values are refused."""
        from goalengine.core.exceptions import ConfigurationError
        from goalengine.resilience import RetryStrategy

        with pytest.raises(ConfigurationError):
            RetryStrategy(max_retries=-1)
        with pytest.raises(ConfigurationError):
            RetryStrategy(jitter=1.5)

    def test_base_delay_growth_and_cap(self):
        """Test exponential growth capped at max_delay."""
        from goalengine.resilience import RetryStrategy

        strategy = RetryStrategy(initial_delay=1.0, max_delay=5.0, backoff_factor=2.0)
        assert [strategy.base_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_backoff_delay_within_jitter_bounds(self):
        """Test jittered delays stay within ±jitter and never exceed max_delay."""
        from goalengine.resilience import RetryStrategy

        strategy = RetryStrategy(initial_delay=1.0, max_delay=3.0, jitter=0.25)
        for attempt in range(1, 6):
            base = strategy.base_delay(attempt)
            for _ in range(50):
                delay = strategy.backoff_delay(attempt)
                assert base * 0.75 - 1e-9 <= delay <= min(3.0, base * 1.25) + 1e-9

    def test_is_retryable_is_case_sensitive(self):
        """Test classification by substring containment."""
        from goalengine.resilience import RetryStrategy

        strategy = RetryStrategy()
        assert strategy.is_retryable(RuntimeError("request timeout after 5s"))
        assert strategy.is_retryable(RuntimeError("upstream returned 503"))
        assert not strategy.is_retryable(RuntimeError("Timeout"))
        assert not strategy.is_retryable(ValueError("invalid input"))
        assert not strategy.is_retryable(None)

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, fast_retry):
        """Test the result is returned without retrying."""
        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            return "done"

        assert await fast_retry.execute_with_result(operation, "op") == "done"
        assert attempts == [0]

    @pytest.mark.asyncio
    async def test_retryable_error_exhausts_attempts(self, fast_retry):
        """Test exactly max_retries + 1 attempts on a permanent retryable failure."""
        from goalengine.core.exceptions import RetriesExhaustedError

        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            raise ConnectionError("connection refused")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await fast_retry.execute_with_result(operation, "op")

        assert attempts == [0, 1, 2]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_non_retryable_error_aborts(self, fast_retry):
        """Test exactly one attempt on a non-retryable failure."""
        from goalengine.core.exceptions import NonRetryableError

        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            raise ValueError("bad request")

        with pytest.raises(NonRetryableError) as exc_info:
            await fast_retry.execute(operation, "op")

        assert attempts == [0]
        assert exc_info.value.operation == "op"
        assert isinstance(exc_info.value.cause, ValueError)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, fast_retry):
        """Test a later attempt's success is returned."""
        async def operation(attempt):
            if attempt < 2:
                raise TimeoutError("timeout")
            return attempt

        assert await fast_retry.execute_with_result(operation, "op") == 2

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff(self):
        """Test a set cancel event aborts the backoff wait."""
        from goalengine.core.exceptions import OperationCancelledError
        from goalengine.resilience import RetryStrategy

        strategy = RetryStrategy(max_retries=3, initial_delay=10.0, max_delay=10.0, jitter=0.0)
        cancel = asyncio.Event()
        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            cancel.set()
            raise TimeoutError("timeout")

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(strategy.execute(operation, "op", cancel), timeout=2.0)

        assert attempts == [0]

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, fast_retry):
        """Test a missing operation or name is refused."""
        with pytest.raises(ValueError):
            await fast_retry.execute_with_result(None, "op")

        async def operation(attempt):
            return None

        with pytest.raises(ValueError):
            await fast_retry.execute_with_result(operation, "")

    def test_from_settings(self):
        """Test building from RetrySettings."""
        from goalengine.config.settings import RetrySettings
        from goalengine.resilience import RetryStrategy

        strategy = RetryStrategy.from_settings(RetrySettings(max_retries=5, retryable_errors=["boom"]))
        assert strategy.max_retries == 5
        assert strategy.retryable_errors == ("boom",)


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_opens_after_max_failures(self):
        """Test consecutive failures open the circuit."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker(max_failures=3, reset_timeout=30.0, clock=FakeClock())
        for _ in range(2):
            breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_success_resets_failure_count(self):
        """Test failures must be consecutive."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker(max_failures=3, clock=FakeClock())
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failures == 1
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_admits_single_probe(self):
        """Test exactly one probe after the reset timeout."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        clock = FakeClock()
        breaker = CircuitBreaker(max_failures=1, reset_timeout=30.0, clock=clock)
        breaker.record_failure()

        clock.advance(29.9)
        assert breaker.allow_request() is False

        clock.advance(0.2)
        assert breaker.allow_request() is True
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request() is False

    def test_probe_success_closes(self):
        """Test a successful probe closes the circuit and clears failures."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        clock = FakeClock()
        breaker = CircuitBreaker(max_failures=2, reset_timeout=5.0, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(5.0)

        assert breaker.allow_request() is True
        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0

    def test_probe_failure_reopens(self):
        """Test a failed probe returns to OPEN."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        clock = FakeClock()
        breaker = CircuitBreaker(max_failures=1, reset_timeout=5.0, clock=clock)
        breaker.record_failure()
        clock.advance(5.0)
        breaker.allow_request()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False
        assert breaker.to_dict()["times_opened"] == 2

    @pytest.mark.asyncio
    async def test_execute_rejects_with_distinct_error(self):
        """Test rejected callers get CircuitOpenError, not the operation's error."""
        from goalengine.core.exceptions import CircuitOpenError
        from goalengine.resilience import CircuitBreaker

        breaker = CircuitBreaker(max_failures=1, name="planner-api", clock=FakeClock())

        async def failing():
            raise ConnectionError("connection refused")

        with pytest.raises(ConnectionError):
            await breaker.execute(failing)

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(failing)
        assert exc_info.value.dependency == "planner-api"

    @pytest.mark.asyncio
    async def test_execute_returns_result(self):
        """Test a successful call passes its result through."""
        from goalengine.resilience import CircuitBreaker

        breaker = CircuitBreaker()

        async def operation():
            return 42

        assert await breaker.execute(operation, "answer") == 42

    @pytest.mark.asyncio
    async def test_cancelled_probe_rearms(self):
        """Test a cancelled probe re-opens the circuit instead of blocking it."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        clock = FakeClock()
        breaker = CircuitBreaker(max_failures=1, reset_timeout=5.0, clock=clock)
        breaker.record_failure()
        clock.advance(5.0)

        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(breaker.execute(slow))
        await started.wait()
        assert breaker.state == CircuitState.HALF_OPEN

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

        clock.advance(5.0)
        assert breaker.allow_request() is True
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_cancelled_call_not_counted_when_closed(self):
        """Test cancellation in CLOSED does not count as a failure."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker(max_failures=1, clock=FakeClock())
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(breaker.execute(slow))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0

    def test_reset(self):
        """Test reset closes the circuit."""
        from goalengine.resilience import CircuitBreaker, CircuitState

        breaker = CircuitBreaker(max_failures=1, clock=FakeClock())
        breaker.record_failure()
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request() is True


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_burst_then_refuse(self):
        """Test exactly burst_size immediate admissions."""
        from goalengine.resilience import RateLimiter

        limiter = RateLimiter(requests_per_minute=60, burst_size=10, clock=FakeClock())
        assert all(limiter.allow() for _ in range(10))
        assert limiter.allow() is False

    def test_refill_over_time(self):
        """Test a token returns after 60 / rpm seconds."""
        from goalengine.resilience import RateLimiter

        clock = FakeClock()
        limiter = RateLimiter(requests_per_minute=60, burst_size=1, clock=clock)
        assert limiter.allow() is True
        assert limiter.allow() is False

        clock.advance(0.5)
        assert limiter.allow() is False

        clock.advance(0.5)
        assert limiter.allow() is True

    def test_tokens_capped_at_burst(self):
        """Test refill never exceeds capacity."""
        from goalengine.resilience import RateLimiter

        clock = FakeClock()
        limiter = RateLimiter(requests_per_minute=600, burst_size=3, clock=clock)
        clock.advance(3600)
        assert limiter.tokens == 3.0

    def test_acquire_raises_when_empty(self):
        """Test non-blocking acquisition."""
        from goalengine.core.exceptions import RateLimitExceededError
        from goalengine.resilience import RateLimiter

        limiter = RateLimiter(burst_size=1, clock=FakeClock())
        limiter.acquire()
        with pytest.raises(RateLimitExceededError):
            limiter.acquire()

    @pytest.mark.asyncio
    async def test_wait_until_refilled(self):
        """Test wait blocks until a token is available."""
        from goalengine.resilience import RateLimiter

        limiter = RateLimiter(requests_per_minute=6000, burst_size=1, poll_interval=0.005)
        limiter.allow()

        await asyncio.wait_for(limiter.wait(), timeout=2.0)

    @pytest.mark.asyncio
    async def test_wait_cancelled(self):
        """Test a cancel event aborts the wait."""
        from goalengine.core.exceptions import OperationCancelledError
        from goalengine.resilience import RateLimiter

        limiter = RateLimiter(requests_per_minute=1, burst_size=1, poll_interval=0.01, clock=FakeClock())
        limiter.allow()
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await limiter.wait(cancel)

    def test_invalid_configuration(self):
        """Test invalid limits are refused."""
        from goalengine.core.exceptions import ConfigurationError
        from goalengine.resilience import RateLimiter

        with pytest.raises(ConfigurationError):
            RateLimiter(requests_per_minute=0)
        with pytest.raises(ConfigurationError):
            RateLimiter(burst_size=0)


class TestSleepOrCancelled:
    """Tests for sleep_or_cancelled."""

    @pytest.mark.asyncio
    async def test_full_sleep(self):
        """Test an unset event lets the sleep complete."""
        from goalengine.resilience import sleep_or_cancelled

        assert await sleep_or_cancelled(0.001, asyncio.Event()) is False

    @pytest.mark.asyncio
    async def test_cancelled_promptly(self):
        """Test a set event ends the wait early."""
        from goalengine.resilience import sleep_or_cancelled

        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, cancel.set)

        assert await asyncio.wait_for(sleep_or_cancelled(30.0, cancel), timeout=2.0) is True
