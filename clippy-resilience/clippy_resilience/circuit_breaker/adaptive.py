"""
Adaptive Circuit Breaker
========================
Health-scored wrapper that tunes a CircuitBreaker's failure threshold and
reset timeout from observed traffic.

The wrapper never changes the breaker's state machine. It listens to the
breaker's outcomes and transitions, keeps its own derived metrics, and
writes back only the two tunable parameters.
"""

from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar
import structlog

from ..exceptions import ConfigurationError
from .breaker import CircuitBreaker
from .models import CircuitState, RequestOutcome, StateChange

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class AdaptiveConfig:
    """Tuning knobs for the adaptive wrapper. Durations are milliseconds."""
    adaptive_thresholds: bool = True
    adaptive_timeout: bool = True
    min_failure_threshold: Optional[float] = None   # Falls back to breaker config, then 0.3
    max_failure_threshold: Optional[float] = None   # Falls back to breaker config, then 0.8
    min_reset_timeout_ms: Optional[float] = None    # Falls back to breaker config, then 30000
    max_reset_timeout_ms: Optional[float] = None    # Falls back to breaker config, then 300000
    healthy_score: float = 80.0
    failure_streak_penalty: float = 5.0
    success_streak_bonus: float = 2.0
    max_timings: int = 1000

    def __post_init__(self):
        if not 0 <= self.healthy_score <= 100:
            raise ConfigurationError(
                "healthy_score must be within [0, 100]",
                config_key="healthy_score",
                config_value=self.healthy_score,
            )
        if self.failure_streak_penalty < 0 or self.success_streak_bonus < 0:
            raise ConfigurationError(
                "streak weights must be non-negative",
                config_key="failure_streak_penalty",
                config_value=self.failure_streak_penalty,
            )


@dataclass
class HealthMetrics:
    """Derived health of a breaker. Informational only."""
    health_score: float
    state: CircuitState
    failure_rate: float
    success_rate: float
    consecutive_successes: int
    consecutive_failures: int
    avg_response_time_ms: float
    trip_count: int
    total_requests: int
    time_in_state_ms: float


def _first(*values: Optional[float]) -> float:
    for value in values:
        if value is not None:
            return value
    raise ValueError("no value")


class AdaptiveCircuitBreaker:
    """
    Composition wrapper adding health scoring and parameter adaptation.

    Example:
        breaker = CircuitBreaker("search-api", CircuitBreakerConfig())
        adaptive = AdaptiveCircuitBreaker(breaker)
        result = await adaptive.execute(lambda: client.get("/search"))
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        config: Optional[AdaptiveConfig] = None,
    ):
        self.breaker = breaker
        self.config = config or AdaptiveConfig()
        self._clock = breaker.clock

        base = breaker.config
        self.min_failure_threshold = _first(
            self.config.min_failure_threshold, base.min_failure_threshold, 0.3
        )
        self.max_failure_threshold = _first(
            self.config.max_failure_threshold, base.max_failure_threshold, 0.8
        )
        self.min_reset_timeout_ms = _first(
            self.config.min_reset_timeout_ms, base.min_reset_timeout_ms, 30000
        )
        self.max_reset_timeout_ms = _first(
            self.config.max_reset_timeout_ms, base.max_reset_timeout_ms, 300000
        )
        if self.min_failure_threshold > self.max_failure_threshold:
            raise ConfigurationError(
                "min_failure_threshold exceeds max_failure_threshold",
                config_key="min_failure_threshold",
                config_value=self.min_failure_threshold,
            )
        if self.min_reset_timeout_ms > self.max_reset_timeout_ms:
            raise ConfigurationError(
                "min_reset_timeout_ms exceeds max_reset_timeout_ms",
                config_key="min_reset_timeout_ms",
                config_value=self.min_reset_timeout_ms,
            )

        self._timings: Deque[RequestOutcome] = deque(maxlen=self.config.max_timings)
        self._init_metrics()

        breaker.add_outcome_listener(self._on_outcome)
        breaker.add_listener(self._on_state_change)

    def _init_metrics(self) -> None:
        self._timings.clear()
        self.consecutive_successes = 0
        self.consecutive_failures = 0
        self.health_score = 100.0
        self.trip_count = 0
        self._failed_bursts = 0

    @property
    def name(self) -> str:
        return self.breaker.name

    # Delegation to the wrapped breaker

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.breaker.execute(operation)

    def get_state(self) -> CircuitState:
        return self.breaker.get_state()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.breaker.get_stats()
        stats["health_score"] = round(self.health_score)
        stats["trip_count"] = self.trip_count
        return stats

    def add_listener(self, callback: Callable[[StateChange], Any]) -> None:
        self.breaker.add_listener(callback)

    def force_open(self, reason: str = "forced") -> None:
        self.breaker.force_open(reason)

    def reset(self) -> None:
        self.breaker.reset()
        self.consecutive_successes = 0
        self.consecutive_failures = 0

    def close(self) -> None:
        self.breaker.close()

    # Observation

    def _on_outcome(self, outcome: RequestOutcome) -> None:
        self._timings.append(outcome)

        if outcome.success:
            self.consecutive_successes += 1
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
            self.consecutive_successes = 0

        total, failures = self.breaker.window_counts()
        failure_rate = failures / total if total else 0.0
        self.health_score = self._score(failure_rate)

        if self.config.adaptive_thresholds and total >= self.breaker.config.request_threshold:
            self._adjust_threshold(failure_rate)
        if self.config.adaptive_timeout:
            self._adjust_timeout_on_health()

    def _on_state_change(self, change: StateChange) -> None:
        if change.previous == CircuitState.CLOSED and change.current == CircuitState.OPEN:
            self.trip_count += 1
        elif change.previous == CircuitState.HALF_OPEN and change.current == CircuitState.OPEN:
            self._failed_bursts += 1
            if self.config.adaptive_timeout and self._failed_bursts >= 2:
                self._set_reset_timeout(self.breaker.reset_timeout_ms * 1.5)
        elif change.previous == CircuitState.HALF_OPEN and change.current == CircuitState.CLOSED:
            self._failed_bursts = 0

    def _score(self, failure_rate: float) -> float:
        score = (
            100 * (1 - failure_rate)
            - self.config.failure_streak_penalty * self.consecutive_failures
            + self.config.success_streak_bonus * self.consecutive_successes
        )
        return max(0.0, min(100.0, score))

    # Adaptation

    def _adjust_threshold(self, failure_rate: float) -> None:
        current = self.breaker.failure_threshold
        healthy = self.health_score >= self.config.healthy_score

        if healthy and failure_rate < current * 0.7:
            target = current * 0.9
        elif failure_rate > current * 0.9 or not healthy:
            target = current * 1.1
        else:
            return

        target = max(self.min_failure_threshold, min(self.max_failure_threshold, target))
        if target != current:
            self.breaker.failure_threshold = target
            logger.debug(
                "failure_threshold_adjusted",
                breaker=self.name,
                previous=round(current, 4),
                current=round(target, 4),
            )

    def _adjust_timeout_on_health(self) -> None:
        if (
            self.breaker.get_state() == CircuitState.CLOSED
            and self.health_score >= self.config.healthy_score
            and self.consecutive_successes >= self.breaker.config.request_threshold
        ):
            self._set_reset_timeout(self.breaker.reset_timeout_ms * 0.9)

    def _set_reset_timeout(self, value: float) -> None:
        current = self.breaker.reset_timeout_ms
        target = max(self.min_reset_timeout_ms, min(self.max_reset_timeout_ms, value))
        if target != current:
            self.breaker.reset_timeout_ms = target
            logger.debug(
                "reset_timeout_adjusted",
                breaker=self.name,
                previous=current,
                current=target,
            )

    # Read side

    def _avg_response_time(self) -> float:
        cutoff = self._clock() - self.breaker.config.monitoring_window_ms * 2
        recent = [t.duration_ms for t in self._timings if t.timestamp_ms >= cutoff]
        if not recent:
            return 0.0
        return sum(recent) / len(recent)

    def get_health_metrics(self) -> HealthMetrics:
        total, failures = self.breaker.window_counts()
        failure_rate = failures / total if total else 0.0
        return HealthMetrics(
            health_score=round(self.health_score),
            state=self.breaker.get_state(),
            failure_rate=failure_rate,
            success_rate=1 - failure_rate,
            consecutive_successes=self.consecutive_successes,
            consecutive_failures=self.consecutive_failures,
            avg_response_time_ms=self._avg_response_time(),
            trip_count=self.trip_count,
            total_requests=total,
            time_in_state_ms=self._clock() - self.breaker.state_changed_at,
        )

    def get_adaptive_thresholds(self) -> Dict[str, float]:
        return {
            "current_failure_threshold": self.breaker.failure_threshold,
            "current_reset_timeout_ms": self.breaker.reset_timeout_ms,
            "min_failure_threshold": self.min_failure_threshold,
            "max_failure_threshold": self.max_failure_threshold,
            "min_reset_timeout_ms": self.min_reset_timeout_ms,
            "max_reset_timeout_ms": self.max_reset_timeout_ms,
        }

    def get_diagnostics(self) -> Dict[str, Any]:
        """Health metrics, thresholds and adaptive settings in one dict."""
        diagnostics: Dict[str, Any] = asdict(self.get_health_metrics())
        diagnostics["state"] = diagnostics["state"].value
        diagnostics.update(self.get_adaptive_thresholds())
        diagnostics["config"] = {
            "adaptive_thresholds": self.config.adaptive_thresholds,
            "adaptive_timeout": self.config.adaptive_timeout,
            "healthy_score": self.config.healthy_score,
        }
        return diagnostics

    def reset_metrics(self) -> None:
        """Clear derived metrics and restore the configured parameters."""
        self._init_metrics()
        self.breaker.failure_threshold = self.breaker.config.failure_threshold
        self.breaker.reset_timeout_ms = self.breaker.config.reset_timeout_ms
