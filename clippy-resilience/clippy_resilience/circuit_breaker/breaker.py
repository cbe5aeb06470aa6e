"""
Circuit Breaker Core
====================
The main CircuitBreaker class for the failure-rate circuit breaker pattern.

All bookkeeping happens synchronously between awaits, so the breaker needs
no lock on a single event loop. Two callers racing the same breaker may both
see the pre-transition state for one iteration.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar
import structlog

from ..clock import Clock, now_ms
from ..exceptions import OperationCancelledError, RequestRejectedError
from ..observers import ObserverList
from .models import (
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitState,
    RequestOutcome,
    StateChange,
)
from .window import OutcomeWindow

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """
    Failure-rate circuit breaker for a single dependency.

    Example:
        breaker = CircuitBreaker("search-api")

        try:
            result = await breaker.execute(lambda: client.get("/search"))
        except CircuitBreakerError:
            return cached_value
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or now_ms

        self._state = CircuitState.CLOSED
        self._state_changed_at = self._clock()
        self._opened_at: Optional[float] = None
        self._episode = 0
        self._half_open_admitted = 0
        self._half_open_successes = 0
        self._half_open_completed = 0
        self._timer: Optional[asyncio.TimerHandle] = None

        self._failure_threshold = self.config.failure_threshold
        self._reset_timeout_ms = self.config.reset_timeout_ms
        self._window = OutcomeWindow(
            self.config.monitoring_window_ms, self.config.max_samples
        )

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_successes = 0
        self.total_rejections = 0

        self._state_listeners: ObserverList[StateChange] = ObserverList(name)
        self._outcome_listeners: ObserverList[RequestOutcome] = ObserverList(name)
        if self.config.on_state_change:
            self._state_listeners.add(self.config.on_state_change)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    def get_state(self) -> CircuitState:
        """Current circuit state. Never transitions as a side effect."""
        return self._state

    @property
    def failure_threshold(self) -> float:
        return self._failure_threshold

    @failure_threshold.setter
    def failure_threshold(self, value: float) -> None:
        self._failure_threshold = min(1.0, max(1e-6, value))

    @property
    def reset_timeout_ms(self) -> float:
        return self._reset_timeout_ms

    @reset_timeout_ms.setter
    def reset_timeout_ms(self, value: float) -> None:
        self._reset_timeout_ms = max(1.0, value)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def state_changed_at(self) -> float:
        return self._state_changed_at

    @property
    def window(self) -> OutcomeWindow:
        return self._window

    def window_counts(self) -> Tuple[int, int]:
        """(total, failures) for outcomes inside the window, without pruning."""
        cutoff = self._clock() - self._window.window_ms
        total = failures = 0
        for outcome in self._window:
            if outcome.timestamp_ms > cutoff:
                total += 1
                if not outcome.success:
                    failures += 1
        return total, failures

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of the breaker for dashboards and the recovery coordinator."""
        total, failures = self.window_counts()
        trial_rate = None
        if self._half_open_completed:
            trial_rate = self._half_open_successes / self._half_open_completed
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_rate": failures / total if total else 0.0,
            "total_requests": total,
            "failures": failures,
            "successes": total - failures,
            "opened_at": self._opened_at,
            "half_open_attempts": self._half_open_admitted,
            "trial_success_rate": trial_rate,
            "failure_threshold": self._failure_threshold,
            "reset_timeout_ms": self._reset_timeout_ms,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "total_rejections": self.total_rejections,
        }

    @property
    def metrics(self) -> Dict[str, Any]:
        return self.get_stats()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[StateChange], Any]) -> None:
        """Register a state-change callback. Its exceptions are swallowed."""
        self._state_listeners.add(callback)

    def remove_listener(self, callback: Callable[[StateChange], Any]) -> None:
        self._state_listeners.remove(callback)

    def add_outcome_listener(self, callback: Callable[[RequestOutcome], Any]) -> None:
        """Register a callback run after every counted outcome."""
        self._outcome_listeners.add(callback)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` under circuit protection.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            The operation's result, unchanged

        Raises:
            CircuitBreakerError: If the circuit rejects the call
        """
        episode = self._admit()
        started = self._clock()
        try:
            result = await operation()
        except (asyncio.CancelledError, OperationCancelledError) as e:
            if self.config.count_cancellations:
                self._record(episode, False, started, e)
            else:
                self._release_trial(episode)
            raise
        except Exception as e:
            # Guard rejections never reached the dependency
            if isinstance(e, RequestRejectedError) or isinstance(
                e, self.config.excluded_exceptions
            ):
                self._release_trial(episode)
            else:
                self._record(episode, False, started, e)
            raise
        self._record(episode, True, started)
        return result

    def _admit(self) -> int:
        """Decide admission synchronously. Returns the episode the call belongs to."""
        now = self._clock()

        if self._state == CircuitState.OPEN:
            opened_at = self._opened_at if self._opened_at is not None else now
            elapsed = now - opened_at
            if elapsed >= self._reset_timeout_ms:
                self._transition(CircuitState.HALF_OPEN, "reset_timeout_elapsed")
            else:
                self.total_rejections += 1
                raise CircuitBreakerError(
                    self.name, CircuitState.OPEN, self._reset_timeout_ms - elapsed
                )

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_admitted >= self.config.half_open_trial_count:
                self.total_rejections += 1
                raise CircuitBreakerError(self.name, CircuitState.HALF_OPEN, 0)
            self._half_open_admitted += 1

        self.total_calls += 1
        return self._episode

    def _release_trial(self, episode: int) -> None:
        """Give back a half-open slot for a call that produced no outcome."""
        if self._state == CircuitState.HALF_OPEN and episode == self._episode:
            self._half_open_admitted = max(0, self._half_open_admitted - 1)

    def _record(
        self,
        episode: int,
        success: bool,
        started: float,
        error: Optional[BaseException] = None,
    ) -> None:
        now = self._clock()
        outcome = RequestOutcome(timestamp_ms=now, success=success, duration_ms=now - started)
        self._window.prune(now)
        self._window.record(outcome)

        if success:
            self.total_successes += 1
        else:
            self.total_failures += 1

        current_trial = self._state == CircuitState.HALF_OPEN and episode == self._episode

        if current_trial:
            self._half_open_completed += 1
            if success:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_trial_count:
                    self._transition(CircuitState.CLOSED, "trials_succeeded")
            else:
                self._transition(CircuitState.OPEN, f"trial_failed: {error}")
        elif self._state == CircuitState.CLOSED:
            self._evaluate_trip()

        self._outcome_listeners.notify(outcome)

    def _evaluate_trip(self) -> None:
        total = self._window.total
        if total < self.config.request_threshold:
            return
        rate = self._window.failure_rate
        if rate >= self._failure_threshold:
            self._transition(CircuitState.OPEN, f"failure_rate {rate:.2f}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Force the circuit closed and clear all history."""
        self._transition(CircuitState.CLOSED, "manual_reset")
        logger.info("circuit_reset", breaker=self.name)

    def force_open(self, reason: str = "forced") -> None:
        """Open the circuit immediately, regardless of history."""
        self._transition(CircuitState.OPEN, reason)

    def close(self) -> None:
        """Cancel any pending half-open timer."""
        self._cancel_timer()

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        previous = self._state
        now = self._clock()

        self._state = new_state
        self._state_changed_at = now
        self._episode += 1
        self._half_open_admitted = 0
        self._half_open_successes = 0
        self._half_open_completed = 0
        self._cancel_timer()

        episode = self._episode
        if new_state == CircuitState.OPEN:
            self._opened_at = now
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._window.clear()

        if previous != new_state:
            self._announce(previous, new_state, reason, now)

        # Listeners may adjust the reset timeout or transition again
        if self._state == CircuitState.OPEN and self._episode == episode:
            self._schedule_half_open()

    def _announce(
        self,
        previous: CircuitState,
        new_state: CircuitState,
        reason: str,
        now: float,
    ) -> None:
        if new_state == CircuitState.HALF_OPEN:
            logger.info("circuit_half_open", breaker=self.name)
        elif new_state == CircuitState.CLOSED:
            logger.info("circuit_closed", breaker=self.name, reason=reason)
        elif previous == CircuitState.HALF_OPEN:
            logger.warning("circuit_reopened", breaker=self.name, reason=reason)
        else:
            logger.warning("circuit_opened", breaker=self.name, reason=reason)

        self._state_listeners.notify(
            StateChange(
                name=self.name,
                previous=previous,
                current=new_state,
                reason=reason,
                timestamp_ms=now,
            )
        )

    def _schedule_half_open(self) -> None:
        if not self.config.auto_half_open:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next execute() performs the transition lazily
            return
        self._timer = loop.call_later(
            self._reset_timeout_ms / 1000, self._on_reset_timer, self._episode
        )

    def _on_reset_timer(self, episode: int) -> None:
        self._timer = None
        if self._state == CircuitState.OPEN and episode == self._episode:
            self._transition(CircuitState.HALF_OPEN, "reset_timeout_elapsed")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
