"""
Advanced Retry Policy
=====================
Retry budget, circuit breaker coordination and adaptive backoff layered on
top of a RetryPolicy.

The budget is a fixed number of retries per time bucket
(bucket start = now - now % budget_window_ms) shared by every caller of the
policy instance. The first attempt of a call is free; each retry consumes one
unit. A call that finds the current bucket spent is rejected before its first
attempt.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, TypeVar, Union
import structlog

from ..circuit_breaker import AdaptiveCircuitBreaker, CircuitBreaker, CircuitBreakerError
from ..clock import Clock
from ..exceptions import ConfigurationError
from .exceptions import RetryBudgetExhausted, RetryExhausted
from .models import RetryConfig
from .policy import OperationFactory, RetryHooks, RetryPolicy

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Breaker = Union[CircuitBreaker, AdaptiveCircuitBreaker]


@dataclass
class AdvancedRetryConfig:
    """Settings for the gates around the base retry loop."""
    retry_budget: int = 100                 # Retries allowed per budget window
    budget_window_ms: float = 60000
    circuit_breaker_integration: bool = True
    adaptive_backoff: bool = True
    adaptive_threshold: float = 0.7         # Success rate below which backoff grows
    adjustment_interval: int = 10           # Outcomes between adjustments
    adjustment_period_ms: float = 30000     # ...or time between adjustments
    min_multiplier: float = 0.5
    max_multiplier: float = 2.0

    def __post_init__(self):
        if self.retry_budget < 0:
            raise ConfigurationError(
                "retry_budget must be non-negative",
                config_key="retry_budget",
                config_value=self.retry_budget,
            )
        if self.budget_window_ms <= 0:
            raise ConfigurationError(
                "budget_window_ms must be positive",
                config_key="budget_window_ms",
                config_value=self.budget_window_ms,
            )
        if not 0 <= self.adaptive_threshold <= 1:
            raise ConfigurationError(
                "adaptive_threshold must be within [0, 1]",
                config_key="adaptive_threshold",
                config_value=self.adaptive_threshold,
            )
        if not 0 < self.min_multiplier <= 1 <= self.max_multiplier:
            raise ConfigurationError(
                "multiplier bounds must satisfy 0 < min <= 1 <= max",
                config_key="min_multiplier",
                config_value=self.min_multiplier,
            )


@dataclass
class RetryBudgetWindow:
    window_start_ms: float
    consumed: int = 0


@dataclass
class AdaptiveBackoffState:
    success_count: int = 0
    failure_count: int = 0
    last_adjustment_ms: float = 0.0
    multiplier: float = 1.0


@dataclass
class RetryMetrics:
    total_attempts: int = 0
    successful_retries: int = 0     # Succeeded on an attempt after the first
    failed_retries: int = 0         # Calls that exhausted their attempts
    budget_exhausted: int = 0
    circuit_rejections: int = 0
    average_delay_ms: float = 0.0
    success_rate: float = 0.0


class _AdvancedHooks(RetryHooks):
    """Binds one execute() call to the owning policy's shared state."""

    def __init__(self, owner: "AdvancedRetryPolicy"):
        self.owner = owner
        self.retried = False

    def before_retry(self, attempt: int, last_error: Optional[BaseException]) -> None:
        self.owner._consume_budget(last_error)
        self.retried = True

    def scale_delay(self, delay_ms: int, config: RetryConfig) -> int:
        return self.owner._scale_delay(delay_ms, config)

    def on_delay(self, delay_ms: int) -> None:
        self.owner._total_delay_ms += delay_ms

    def after_attempt(self, attempt: int, error: Optional[BaseException]) -> None:
        self.owner.metrics.total_attempts += 1
        self.owner._record_adaptive(error is None)


class AdvancedRetryPolicy:
    """
    Retry policy with a shared retry budget, breaker coordination and an
    adaptive backoff multiplier.

    Example:
        policy = AdvancedRetryPolicy(
            RetryPolicy(RetryConfig(max_retries=3)),
            AdvancedRetryConfig(retry_budget=50),
            circuit_breaker=registry.get("search-api"),
        )
        result = await policy.execute(lambda attempt: client.get("/search"))
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        config: Optional[AdvancedRetryConfig] = None,
        circuit_breaker: Optional[Breaker] = None,
        clock: Optional[Clock] = None,
    ):
        self.policy = policy or RetryPolicy(clock=clock)
        self.config = config or AdvancedRetryConfig()
        self.circuit_breaker = circuit_breaker
        self._clock = clock or self.policy.clock
        self._windows: Dict[float, RetryBudgetWindow] = {}
        self._init_state()

    def _init_state(self) -> None:
        self.metrics = RetryMetrics()
        self.adaptive = AdaptiveBackoffState(last_adjustment_ms=self._clock())
        self._total_delay_ms = 0
        self._windows.clear()

    @property
    def name(self) -> str:
        return self.policy.name

    async def execute(
        self,
        operation_factory: OperationFactory,
        error_type: Optional[Any] = None,
        cancel_event: Optional[asyncio.Event] = None,
        *,
        circuit_breaker: Optional[Breaker] = None,
    ) -> T:
        """
        Run the base retry loop behind the budget and breaker gates.

        Raises:
            RetryBudgetExhausted: If the current budget window is spent
            CircuitBreakerError: If the breaker rejects the whole sequence
            RetryExhausted: When the base loop gives up
        """
        if not self._budget_available():
            self.metrics.budget_exhausted += 1
            logger.warning(
                "retry_budget_exhausted",
                policy=self.name,
                budget=self.config.retry_budget,
            )
            raise RetryBudgetExhausted(self.config.retry_budget, self.config.budget_window_ms)

        hooks = _AdvancedHooks(self)

        async def attempt_loop():
            return await self.policy._run(operation_factory, error_type, cancel_event, hooks)

        breaker = circuit_breaker or self.circuit_breaker
        try:
            if self.config.circuit_breaker_integration and breaker is not None:
                result = await breaker.execute(attempt_loop)
            else:
                result = await attempt_loop()
        except CircuitBreakerError:
            self.metrics.circuit_rejections += 1
            raise
        except RetryBudgetExhausted:
            self.metrics.budget_exhausted += 1
            raise
        except RetryExhausted:
            self.metrics.failed_retries += 1
            raise
        else:
            if hooks.retried:
                self.metrics.successful_retries += 1
            return result
        finally:
            self._update_rates()

    # Budget

    def _bucket_start(self, now: float) -> float:
        return now - (now % self.config.budget_window_ms)

    def _current_window(self) -> RetryBudgetWindow:
        now = self._clock()
        start = self._bucket_start(now)
        cutoff = now - self.config.budget_window_ms
        for key in [k for k in self._windows if k < cutoff]:
            del self._windows[key]
        window = self._windows.get(start)
        if window is None:
            window = RetryBudgetWindow(window_start_ms=start)
            self._windows[start] = window
        return window

    def _budget_available(self) -> bool:
        return self._current_window().consumed < self.config.retry_budget

    def _consume_budget(self, last_error: Optional[BaseException] = None) -> None:
        window = self._current_window()
        if window.consumed >= self.config.retry_budget:
            raise RetryBudgetExhausted(
                self.config.retry_budget, self.config.budget_window_ms
            ) from last_error
        window.consumed += 1

    # Adaptive backoff

    def _scale_delay(self, delay_ms: int, config: RetryConfig) -> int:
        if not self.config.adaptive_backoff:
            return delay_ms
        return int(min(delay_ms * self.adaptive.multiplier, config.max_delay_ms))

    def _record_adaptive(self, success: bool) -> None:
        if not self.config.adaptive_backoff:
            return
        state = self.adaptive
        if success:
            state.success_count += 1
        else:
            state.failure_count += 1

        now = self._clock()
        outcomes = state.success_count + state.failure_count
        if (
            outcomes < self.config.adjustment_interval
            and now - state.last_adjustment_ms < self.config.adjustment_period_ms
        ):
            return

        rate = state.success_count / outcomes
        previous = state.multiplier
        if rate < self.config.adaptive_threshold:
            state.multiplier = min(state.multiplier * 1.5, self.config.max_multiplier)
        else:
            state.multiplier = max(state.multiplier * 0.8, self.config.min_multiplier)
        state.success_count = 0
        state.failure_count = 0
        state.last_adjustment_ms = now
        logger.debug(
            "backoff_multiplier_adjusted",
            policy=self.name,
            success_rate=round(rate, 3),
            previous=round(previous, 3),
            current=round(state.multiplier, 3),
        )

    # Metrics

    def _update_rates(self) -> None:
        m = self.metrics
        finished = m.successful_retries + m.failed_retries
        m.success_rate = m.successful_retries / finished if finished else 0.0
        m.average_delay_ms = self._total_delay_ms / m.total_attempts if m.total_attempts else 0.0

    def get_metrics(self) -> RetryMetrics:
        return RetryMetrics(**asdict(self.metrics))

    def get_adaptive_state(self) -> AdaptiveBackoffState:
        return AdaptiveBackoffState(**asdict(self.adaptive))

    def get_budget_remaining(self) -> int:
        return max(0, self.config.retry_budget - self._current_window().consumed)

    def reset(self) -> None:
        """Clear metrics, adaptive state and budget windows."""
        self._init_state()
        logger.debug("retry_policy_reset", policy=self.name)
