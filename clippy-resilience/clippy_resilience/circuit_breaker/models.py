"""
Circuit Breaker Models
======================
Data models and enums for the circuit breaker pattern.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..exceptions import ConfigurationError, RequestRejectedError


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerError(RequestRejectedError):
    """Raised when the circuit rejects a request without invoking it."""

    def __init__(self, name: str, state: CircuitState, retry_after_ms: float):
        self.name = name
        self.state = state
        self.retry_after_ms = retry_after_ms
        super().__init__(
            f"Circuit breaker for '{name}' is {state.value}. "
            f"Retry after {retry_after_ms / 1000:.1f}s"
        )


@dataclass(frozen=True)
class RequestOutcome:
    """A single recorded call result."""
    timestamp_ms: float
    success: bool
    duration_ms: float = 0.0


@dataclass(frozen=True)
class StateChange:
    """Payload delivered to state-change listeners."""
    name: str
    previous: CircuitState
    current: CircuitState
    reason: str
    timestamp_ms: float


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker. Durations are milliseconds."""
    failure_threshold: float = 0.5         # Failure rate that opens the circuit
    request_threshold: int = 10            # Minimum outcomes in window before tripping
    reset_timeout_ms: float = 60000        # Time spent open before half-open
    monitoring_window_ms: float = 120000   # Rolling window for failure rate
    half_open_trial_count: int = 3         # Successful trials needed to close
    max_samples: int = 1000                # Hard cap on retained outcomes
    excluded_exceptions: tuple = ()        # Exceptions that don't count as failures
    count_cancellations: bool = False      # Whether cancelled calls count as failures
    auto_half_open: bool = True            # Schedule open -> half-open on the event loop

    # Adaptive bounds, only consulted by AdaptiveCircuitBreaker
    min_failure_threshold: Optional[float] = None
    max_failure_threshold: Optional[float] = None
    min_reset_timeout_ms: Optional[float] = None
    max_reset_timeout_ms: Optional[float] = None

    on_state_change: Optional[Callable[[StateChange], Any]] = None

    def __post_init__(self):
        if not 0 < self.failure_threshold <= 1:
            raise ConfigurationError(
                "failure_threshold must be in (0, 1]",
                config_key="failure_threshold",
                config_value=self.failure_threshold,
            )
        if self.request_threshold < 1:
            raise ConfigurationError(
                "request_threshold must be at least 1",
                config_key="request_threshold",
                config_value=self.request_threshold,
            )
        if self.reset_timeout_ms <= 0:
            raise ConfigurationError(
                "reset_timeout_ms must be positive",
                config_key="reset_timeout_ms",
                config_value=self.reset_timeout_ms,
            )
        if self.monitoring_window_ms <= 0:
            raise ConfigurationError(
                "monitoring_window_ms must be positive",
                config_key="monitoring_window_ms",
                config_value=self.monitoring_window_ms,
            )
        if self.half_open_trial_count < 1:
            raise ConfigurationError(
                "half_open_trial_count must be at least 1",
                config_key="half_open_trial_count",
                config_value=self.half_open_trial_count,
            )
        if self.max_samples < self.request_threshold:
            raise ConfigurationError(
                "max_samples must be at least request_threshold",
                config_key="max_samples",
                config_value=self.max_samples,
            )
        lo, hi = self.min_failure_threshold, self.max_failure_threshold
        if lo is not None and not 0 < lo <= 1:
            raise ConfigurationError(
                "min_failure_threshold must be in (0, 1]",
                config_key="min_failure_threshold",
                config_value=lo,
            )
        if hi is not None and not 0 < hi <= 1:
            raise ConfigurationError(
                "max_failure_threshold must be in (0, 1]",
                config_key="max_failure_threshold",
                config_value=hi,
            )
        if lo is not None and hi is not None and lo > hi:
            raise ConfigurationError(
                "min_failure_threshold exceeds max_failure_threshold",
                config_key="min_failure_threshold",
                config_value=lo,
            )
        lo_t, hi_t = self.min_reset_timeout_ms, self.max_reset_timeout_ms
        if lo_t is not None and lo_t <= 0:
            raise ConfigurationError(
                "min_reset_timeout_ms must be positive",
                config_key="min_reset_timeout_ms",
                config_value=lo_t,
            )
        if lo_t is not None and hi_t is not None and lo_t > hi_t:
            raise ConfigurationError(
                "min_reset_timeout_ms exceeds max_reset_timeout_ms",
                config_key="min_reset_timeout_ms",
                config_value=lo_t,
            )
