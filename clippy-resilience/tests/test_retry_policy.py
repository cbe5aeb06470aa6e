"""
Unit Tests for the Retry Policy
===============================
Delay schedule, attempt bound, timeouts, cancellation and classification.
"""

import asyncio
import random

import pytest


class HTTPFailure(Exception):
    """Error carrying a status code like most HTTP client errors."""

    def __init__(self, status_code, message="request failed", retry_after_ms=None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms


def flaky(failures, result="ok", error=None):
    """Operation factory failing ``failures`` times before succeeding."""
    calls = []

    async def operation(attempt):
        calls.append(attempt)
        if len(calls) <= failures:
            raise error or ConnectionError("connection reset")
        return result

    return operation, calls


class TestRetryExecution:
    """Tests for RetryPolicy.execute."""

    @pytest.mark.asyncio
    async def test_fixed_backoff_scenario(self, no_sleep):
        """Should succeed on the third call after two fixed 100ms delays."""
        from clippy_resilience.retry import BackoffStrategy, RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            max_retries=2,
            strategy=BackoffStrategy.FIXED,
            initial_delay_ms=100,
            jitter=0,
        ))
        operation, calls = flaky(2)

        assert await policy.execute(operation) == "ok"
        assert len(calls) == 3
        assert no_sleep == [100, 100]

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self, no_sleep):
        """Should raise RetryExhausted carrying the last error and attempt count."""
        from clippy_resilience.retry import RetryConfig, RetryExhausted, RetryPolicy

        policy = RetryPolicy(RetryConfig(max_retries=2, initial_delay_ms=10, jitter=0))
        operation, calls = flaky(10)

        with pytest.raises(RetryExhausted) as exc_info:
            await policy.execute(operation)

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ConnectionError)
        assert exc_info.value.__cause__ is exc_info.value.last_exception

    @pytest.mark.asyncio
    async def test_zero_retries_runs_once(self, no_sleep):
        """Should invoke the operation exactly once with max_retries=0."""
        from clippy_resilience.retry import RetryConfig, RetryExhausted, RetryPolicy

        policy = RetryPolicy(RetryConfig(max_retries=0))
        operation, calls = flaky(1)

        with pytest.raises(RetryExhausted):
            await policy.execute(operation)

        assert len(calls) == 1
        assert no_sleep == []

    @pytest.mark.asyncio
    async def test_attempt_info_passed_to_factory(self, no_sleep):
        """Should hand each attempt its index, delay and previous error."""
        from clippy_resilience.retry import BackoffStrategy, RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            max_retries=2, strategy=BackoffStrategy.FIXED, initial_delay_ms=50, jitter=0
        ))
        operation, calls = flaky(2)

        await policy.execute(operation)

        assert [a.attempt for a in calls] == [0, 1, 2]
        assert [a.delay_ms for a in calls] == [0, 50, 50]
        assert calls[0].previous_error is None
        assert isinstance(calls[2].previous_error, ConnectionError)

    @pytest.mark.asyncio
    async def test_retry_immediately_skips_first_delay(self, no_sleep):
        """Should fire the first retry without waiting."""
        from clippy_resilience.retry import BackoffStrategy, RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            max_retries=3,
            strategy=BackoffStrategy.FIXED,
            initial_delay_ms=100,
            jitter=0,
            retry_immediately=True,
        ))
        operation, calls = flaky(3)

        await policy.execute(operation)

        assert [a.delay_ms for a in calls] == [0, 0, 100, 100]
        assert no_sleep == [100, 100]

    @pytest.mark.asyncio
    async def test_exponential_delays_capped(self, no_sleep):
        """Should grow delays geometrically up to max_delay_ms."""
        from clippy_resilience.retry import RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            max_retries=5, initial_delay_ms=100, max_delay_ms=1000, jitter=0
        ))
        operation, _ = flaky(5)

        await policy.execute(operation)

        assert no_sleep == [200, 400, 800, 1000, 1000]

    @pytest.mark.asyncio
    async def test_error_type_overrides(self, no_sleep):
        """Should apply per-error-type overrides to bound and delays."""
        from clippy_resilience.errors import ErrorType
        from clippy_resilience.retry import RetryConfig, RetryExhausted, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            max_retries=1,
            jitter=0,
            error_policies={
                ErrorType.RATE_LIMIT: {
                    "max_retries": 3,
                    "initial_delay_ms": 500,
                    "strategy": "fixed",
                },
            },
        ))
        operation, calls = flaky(10)

        with pytest.raises(RetryExhausted):
            await policy.execute(operation, error_type=ErrorType.RATE_LIMIT)

        assert len(calls) == 4
        assert no_sleep == [500, 500, 500]

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_retried(self, no_sleep):
        """Should treat a timed out attempt as a failure and try again."""
        from clippy_resilience.retry import RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(max_retries=1, timeout_ms=20, jitter=0))
        calls = []

        async def operation(attempt):
            calls.append(attempt)
            if attempt.attempt == 0:
                await asyncio.sleep(5)
            return "ok"

        assert await policy.execute(operation) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_exhaustion_reports_timeout(self, no_sleep):
        """Should surface AttemptTimeoutError as the last error."""
        from clippy_resilience.retry import (
            AttemptTimeoutError,
            RetryConfig,
            RetryExhausted,
            RetryPolicy,
        )

        policy = RetryPolicy(RetryConfig(max_retries=0, timeout_ms=10))

        async def operation(attempt):
            await asyncio.sleep(5)

        with pytest.raises(RetryExhausted) as exc_info:
            await policy.execute(operation)

        assert isinstance(exc_info.value.last_exception, AttemptTimeoutError)


class TestCancellation:
    """Tests for the cooperative cancel signal."""

    @pytest.mark.asyncio
    async def test_cancel_preempts_sleep(self):
        """Should abort a long backoff sleep as soon as the signal fires."""
        from clippy_resilience.retry import (
            BackoffStrategy,
            OperationCancelledError,
            RetryConfig,
            RetryPolicy,
        )

        policy = RetryPolicy(RetryConfig(
            max_retries=3,
            strategy=BackoffStrategy.FIXED,
            initial_delay_ms=60000,
            jitter=0,
        ))
        operation, calls = flaky(10)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, cancel.set)

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(policy.execute(operation, cancel_event=cancel), 2)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_preempts_attempt(self):
        """Should stop waiting for a running attempt when the signal fires."""
        from clippy_resilience.retry import (
            OperationCancelledError,
            RetryConfig,
            RetryPolicy,
        )

        policy = RetryPolicy(RetryConfig(max_retries=3, timeout_ms=60000))
        cancel = asyncio.Event()

        async def operation(attempt):
            await asyncio.sleep(60)

        asyncio.get_running_loop().call_later(0.02, cancel.set)

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(policy.execute(operation, cancel_event=cancel), 2)

    @pytest.mark.asyncio
    async def test_already_cancelled_never_invokes(self):
        """Should fail before the first attempt if the signal is already set."""
        from clippy_resilience.retry import (
            OperationCancelledError,
            RetryConfig,
            RetryPolicy,
        )

        policy = RetryPolicy(RetryConfig())
        operation, calls = flaky(0)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await policy.execute(operation, cancel_event=cancel)

        assert calls == []


class TestClassification:
    """Tests for classifier-driven behaviour."""

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self, no_sleep):
        """Should not retry errors classified as non-retryable."""
        from clippy_resilience.errors import ErrorClassifier
        from clippy_resilience.retry import RetryConfig, RetryExhausted, RetryPolicy

        policy = RetryPolicy(RetryConfig(max_retries=3), classifier=ErrorClassifier())
        operation, calls = flaky(10, error=HTTPFailure(404, "not found"))

        with pytest.raises(RetryExhausted) as exc_info:
            await policy.execute(operation)

        assert len(calls) == 1
        assert exc_info.value.attempts == 1
        assert no_sleep == []

    @pytest.mark.asyncio
    async def test_retry_after_hint_sets_floor(self, no_sleep):
        """Should wait at least as long as the server's retry-after hint."""
        from clippy_resilience.errors import ErrorClassifier
        from clippy_resilience.retry import (
            BackoffStrategy,
            RetryConfig,
            RetryPolicy,
        )

        policy = RetryPolicy(
            RetryConfig(
                max_retries=1,
                strategy=BackoffStrategy.FIXED,
                initial_delay_ms=100,
                jitter=0,
            ),
            classifier=ErrorClassifier(),
        )
        operation, _ = flaky(1, error=HTTPFailure(429, "slow down", retry_after_ms=5000))

        await policy.execute(operation)

        assert no_sleep == [5000]


class TestDelayCalculation:
    """Tests for calculate_delay and the planning helpers."""

    def test_linear_delay(self):
        """Should add multiplier seconds per attempt."""
        from clippy_resilience.retry import BackoffStrategy, RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            strategy=BackoffStrategy.LINEAR, initial_delay_ms=100, multiplier=2, jitter=0
        ))

        assert policy.calculate_delay(3) == 6100

    def test_jitter_stays_in_bounds(self):
        """Should perturb by at most jitter * delay in either direction."""
        from clippy_resilience.retry import RetryConfig, RetryPolicy

        policy = RetryPolicy(
            RetryConfig(initial_delay_ms=1000, jitter=0.1),
            rng=random.Random(7),
        )

        delays = {policy.calculate_delay(0) for _ in range(200)}

        assert all(900 <= d <= 1100 for d in delays)
        assert len(delays) > 1

    def test_max_total_time(self):
        """Should sum every delay and every attempt timeout."""
        from clippy_resilience.retry import BackoffStrategy, RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(
            max_retries=2,
            strategy=BackoffStrategy.FIXED,
            initial_delay_ms=100,
            jitter=0,
            timeout_ms=1000,
        ))

        assert policy.get_max_total_time_ms() == 3200

    def test_should_retry(self):
        """Should allow retries only below max_retries."""
        from clippy_resilience.retry import RetryConfig, RetryPolicy

        policy = RetryPolicy(RetryConfig(max_retries=2))

        assert policy.should_retry(None, 0) is True
        assert policy.should_retry(None, 1) is True
        assert policy.should_retry(None, 2) is False

    @pytest.mark.parametrize("overrides", [
        {"max_retries": -1},
        {"jitter": 1.5},
        {"timeout_ms": 0},
        {"error_policies": {"rate_limit": {"retries": 2}}},
    ])
    def test_invalid_config_rejected(self, overrides):
        """Should raise ConfigurationError for bad settings."""
        from clippy_resilience.exceptions import ConfigurationError
        from clippy_resilience.retry import RetryConfig

        with pytest.raises(ConfigurationError):
            RetryConfig(**overrides)


class TestWithRetryDecorator:
    """Tests for the with_retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_decorated_function(self, no_sleep):
        """Should re-invoke the decorated function with the same arguments."""
        from clippy_resilience.retry import RetryConfig, RetryPolicy, with_retry

        seen = []

        @with_retry(RetryPolicy(RetryConfig(max_retries=2, jitter=0)))
        async def fetch_profile(user_id):
            seen.append(user_id)
            if len(seen) < 2:
                raise ConnectionError("connection reset")
            return {"id": user_id}

        assert await fetch_profile("u-1") == {"id": "u-1"}
        assert seen == ["u-1", "u-1"]
        assert fetch_profile.__name__ == "fetch_profile"
