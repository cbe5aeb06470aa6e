"""
Unit Tests for the Circuit Breaker
==================================
State machine, windowing, half-open trials and listeners.
"""

import asyncio

import pytest


async def fail():
    raise ValueError("boom")


async def succeed():
    return "ok"


def make_breaker(clock, **overrides):
    from clippy_resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

    values = dict(
        failure_threshold=0.5,
        request_threshold=4,
        reset_timeout_ms=1000,
        monitoring_window_ms=10000,
        half_open_trial_count=2,
        auto_half_open=False,
    )
    values.update(overrides)
    return CircuitBreaker("search-api", CircuitBreakerConfig(**values), clock=clock)


class TestTripping:
    """Tests for closed -> open transitions."""

    @pytest.mark.asyncio
    async def test_opens_on_threshold_crossing_success(self, clock):
        """Should open after [fail, fail, fail, success] with threshold 0.5 over 4."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)

        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.execute(fail)
        assert breaker.get_state() == CircuitState.CLOSED

        assert await breaker.execute(succeed) == "ok"
        assert breaker.get_state() == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_stays_closed_below_request_threshold(self, clock):
        """Should not open before request_threshold outcomes are seen."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock, request_threshold=5)

        for _ in range(4):
            with pytest.raises(ValueError):
                await breaker.execute(fail)

        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_outcomes_outside_window_are_ignored(self, clock):
        """Should only count outcomes inside the monitoring window."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock, request_threshold=2, monitoring_window_ms=5000)

        with pytest.raises(ValueError):
            await breaker.execute(fail)
        clock.advance(5001)
        with pytest.raises(ValueError):
            await breaker.execute(fail)

        assert breaker.get_state() == CircuitState.CLOSED
        assert breaker.get_stats()["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_sample_cap_bounds_history(self, clock):
        """Should keep at most max_samples outcomes."""
        breaker = make_breaker(clock, request_threshold=2, max_samples=5)

        for _ in range(20):
            await breaker.execute(succeed)

        assert len(breaker.window) == 5

    @pytest.mark.asyncio
    async def test_excluded_exceptions_not_counted(self, clock):
        """Should not record excluded exceptions as failures."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock, request_threshold=1, excluded_exceptions=(KeyError,))

        async def missing():
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await breaker.execute(missing)

        assert breaker.get_state() == CircuitState.CLOSED
        assert breaker.get_stats()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_nested_rejection_not_counted(self, clock):
        """Should not blame the dependency when an inner breaker rejects the call."""
        from clippy_resilience.circuit_breaker import CircuitBreakerError, CircuitState

        outer = make_breaker(clock, request_threshold=1)
        inner = make_breaker(clock)
        inner.force_open()

        async def guarded():
            return await inner.execute(succeed)

        for _ in range(3):
            with pytest.raises(CircuitBreakerError):
                await outer.execute(guarded)

        assert outer.get_state() == CircuitState.CLOSED
        assert outer.total_failures == 0


class TestRejection:
    """Tests for the open state."""

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking(self, clock):
        """Should fail fast without calling the operation or recording."""
        from clippy_resilience.circuit_breaker import CircuitBreakerError, CircuitState

        breaker = make_breaker(clock)
        breaker.force_open("maintenance")
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            return "ok"

        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.execute(operation)

        assert calls == 0
        assert exc_info.value.state == CircuitState.OPEN
        assert exc_info.value.retry_after_ms == 1000
        assert breaker.get_stats()["total_rejections"] == 1
        assert breaker.get_stats()["total_requests"] == 0

    def test_get_state_never_transitions(self, clock):
        """Should keep reporting open after the timeout until execute runs."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        breaker.force_open()
        clock.advance(5000)

        assert breaker.get_state() == CircuitState.OPEN
        assert breaker.get_state() == CircuitState.OPEN


class TestHalfOpen:
    """Tests for trial admission and its outcomes."""

    @pytest.mark.asyncio
    async def test_admits_only_trial_count(self, clock):
        """Should admit exactly half_open_trial_count trials after the timeout."""
        from clippy_resilience.circuit_breaker import CircuitBreakerError, CircuitState

        breaker = make_breaker(clock)
        breaker.force_open()
        clock.advance(1000)
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "ok"

        first = asyncio.create_task(breaker.execute(slow))
        await asyncio.sleep(0)
        assert breaker.get_state() == CircuitState.HALF_OPEN
        assert breaker.get_stats()["half_open_attempts"] == 1

        second = asyncio.create_task(breaker.execute(slow))
        await asyncio.sleep(0)

        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.execute(slow)
        assert exc_info.value.state == CircuitState.HALF_OPEN

        gate.set()
        assert await first == "ok"
        assert await second == "ok"
        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_trial_failure_reopens(self, clock):
        """Should reopen on the first failed trial."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        breaker.force_open()
        clock.advance(1000)

        with pytest.raises(ValueError):
            await breaker.execute(fail)

        assert breaker.get_state() == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_closing_clears_history(self, clock):
        """Should start from an empty window after closing."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        for _ in range(4):
            with pytest.raises(ValueError):
                await breaker.execute(fail)
        assert breaker.get_state() == CircuitState.OPEN

        clock.advance(1000)
        await breaker.execute(succeed)
        await breaker.execute(succeed)

        assert breaker.get_state() == CircuitState.CLOSED
        assert breaker.get_stats()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_uncounted_trial_returns_slot(self, clock):
        """Should give back the trial slot when the outcome is not counted."""
        from clippy_resilience.circuit_breaker import CircuitState
        from clippy_resilience.exceptions import OperationCancelledError

        breaker = make_breaker(clock, half_open_trial_count=1)
        breaker.force_open()
        clock.advance(1000)

        async def cancelled():
            raise OperationCancelledError()

        with pytest.raises(OperationCancelledError):
            await breaker.execute(cancelled)
        assert breaker.get_state() == CircuitState.HALF_OPEN

        assert await breaker.execute(succeed) == "ok"
        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_timer_moves_to_half_open(self):
        """Should switch to half-open on its own once the timeout elapses."""
        from clippy_resilience.circuit_breaker import (
            CircuitBreaker,
            CircuitBreakerConfig,
            CircuitState,
        )

        breaker = CircuitBreaker("timer", CircuitBreakerConfig(reset_timeout_ms=10))
        breaker.force_open()
        await asyncio.sleep(0.05)

        assert breaker.get_state() == CircuitState.HALF_OPEN
        breaker.close()


class TestCancellation:
    """Tests for the count_cancellations switch."""

    @pytest.mark.asyncio
    async def test_cancellation_ignored_by_default(self, clock):
        """Should not count cancelled calls as failures by default."""
        from clippy_resilience.circuit_breaker import CircuitState
        from clippy_resilience.exceptions import OperationCancelledError

        breaker = make_breaker(clock, request_threshold=1)

        async def cancelled():
            raise OperationCancelledError()

        with pytest.raises(OperationCancelledError):
            await breaker.execute(cancelled)

        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancellation_counted_when_enabled(self, clock):
        """Should count cancelled calls when count_cancellations is set."""
        from clippy_resilience.circuit_breaker import CircuitState
        from clippy_resilience.exceptions import OperationCancelledError

        breaker = make_breaker(clock, request_threshold=1, count_cancellations=True)

        async def cancelled():
            raise OperationCancelledError()

        with pytest.raises(OperationCancelledError):
            await breaker.execute(cancelled)

        assert breaker.get_state() == CircuitState.OPEN


class TestControls:
    """Tests for reset, force_open and listeners."""

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, clock):
        """Should close and clear history and counters."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        for _ in range(4):
            with pytest.raises(ValueError):
                await breaker.execute(fail)

        breaker.reset()

        stats = breaker.get_stats()
        assert breaker.get_state() == CircuitState.CLOSED
        assert stats["total_requests"] == 0
        assert stats["half_open_attempts"] == 0

    def test_listeners_receive_changes(self, clock):
        """Should notify listeners with previous and current states."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        changes = []
        breaker.add_listener(changes.append)

        breaker.force_open("drill")
        breaker.reset()

        assert [(c.previous, c.current) for c in changes] == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.CLOSED),
        ]
        assert changes[0].reason == "drill"

    def test_listener_failure_is_swallowed(self, clock):
        """Should keep notifying and transitioning when a listener raises."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        seen = []

        def broken(change):
            raise RuntimeError("listener bug")

        breaker.add_listener(broken)
        breaker.add_listener(seen.append)

        breaker.force_open()

        assert breaker.get_state() == CircuitState.OPEN
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, clock):
        """Should schedule coroutine listeners on the running loop."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        seen = []

        async def record(change):
            await asyncio.sleep(0)
            seen.append(change.current)

        breaker.add_listener(record)
        breaker.force_open()

        for _ in range(3):
            await asyncio.sleep(0)

        assert seen == [CircuitState.OPEN]

    def test_async_listener_without_loop(self, clock):
        """Should skip coroutine listeners when no loop is running."""
        from clippy_resilience.circuit_breaker import CircuitState

        breaker = make_breaker(clock)
        seen = []

        async def record(change):
            seen.append(change.current)

        breaker.add_listener(record)
        breaker.force_open()

        assert breaker.get_state() == CircuitState.OPEN
        assert seen == []

    def test_config_callback_registered(self, clock):
        """Should treat on_state_change as a listener."""
        seen = []
        breaker = make_breaker(clock, on_state_change=seen.append)

        breaker.force_open()

        assert len(seen) == 1


class TestConfigValidation:
    """Tests for CircuitBreakerConfig bounds."""

    @pytest.mark.parametrize("overrides", [
        {"failure_threshold": 0},
        {"failure_threshold": 1.5},
        {"request_threshold": 0},
        {"reset_timeout_ms": 0},
        {"monitoring_window_ms": -1},
        {"half_open_trial_count": 0},
        {"min_failure_threshold": 0.9, "max_failure_threshold": 0.5},
    ])
    def test_invalid_values_rejected(self, overrides):
        """Should raise ConfigurationError for out-of-range values."""
        from clippy_resilience.circuit_breaker import CircuitBreakerConfig
        from clippy_resilience.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError):
            CircuitBreakerConfig(**overrides)
