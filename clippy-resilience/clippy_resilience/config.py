"""
Resilience Configuration
========================
Environment-backed defaults for breakers, retry policies and the recovery
coordinator.

Variables (all optional):
    CLIPPY_RESILIENCE_FAILURE_THRESHOLD      default 0.5
    CLIPPY_RESILIENCE_REQUEST_THRESHOLD      default 10
    CLIPPY_RESILIENCE_RESET_TIMEOUT_MS       default 60000
    CLIPPY_RESILIENCE_MONITORING_WINDOW_MS   default 120000
    CLIPPY_RESILIENCE_HALF_OPEN_TRIALS       default 3
    CLIPPY_RESILIENCE_COUNT_CANCELLATIONS    default false
    CLIPPY_RESILIENCE_MAX_RETRIES            default 3
    CLIPPY_RESILIENCE_INITIAL_DELAY_MS       default 1000
    CLIPPY_RESILIENCE_MAX_DELAY_MS           default 30000
    CLIPPY_RESILIENCE_BACKOFF                default exponential
    CLIPPY_RESILIENCE_JITTER                 default 0.1
    CLIPPY_RESILIENCE_ATTEMPT_TIMEOUT_MS     default 30000
    CLIPPY_RESILIENCE_RETRY_BUDGET           default 100
    CLIPPY_RESILIENCE_BUDGET_WINDOW_MS       default 60000
    CLIPPY_RESILIENCE_CHECK_INTERVAL_MS      default 30000
    CLIPPY_RESILIENCE_MAX_CONCURRENT         default 3
    CLIPPY_RESILIENCE_AUTO_RECOVER           default false
    CLIPPY_RESILIENCE_LOG_LEVEL              default INFO
"""

import os
from dataclasses import dataclass, field

from .circuit_breaker.models import CircuitBreakerConfig
from .exceptions import ConfigurationError
from .recovery.models import CoordinatorOptions
from .retry.advanced import AdvancedRetryConfig
from .retry.models import BackoffStrategy, RetryConfig

PREFIX = "CLIPPY_RESILIENCE_"


def _env(name: str, default: str) -> str:
    return os.environ.get(PREFIX + name, default)


def _env_float(name: str, default: float):
    def read() -> float:
        raw = _env(name, str(default))
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(
                f"{PREFIX}{name} must be a number",
                config_key=PREFIX + name,
                config_value=raw,
            ) from None
    return field(default_factory=read)


def _env_int(name: str, default: int):
    def read() -> int:
        raw = _env(name, str(default))
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(
                f"{PREFIX}{name} must be an integer",
                config_key=PREFIX + name,
                config_value=raw,
            ) from None
    return field(default_factory=read)


def _env_bool(name: str, default: bool):
    def read() -> bool:
        raw = _env(name, "true" if default else "false")
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return field(default_factory=read)


def _env_str(name: str, default: str):
    return field(default_factory=lambda: _env(name, default))


@dataclass
class ResilienceSettings:
    """Process-level defaults, read from the environment at construction."""
    failure_threshold: float = _env_float("FAILURE_THRESHOLD", 0.5)
    request_threshold: int = _env_int("REQUEST_THRESHOLD", 10)
    reset_timeout_ms: float = _env_float("RESET_TIMEOUT_MS", 60000)
    monitoring_window_ms: float = _env_float("MONITORING_WINDOW_MS", 120000)
    half_open_trials: int = _env_int("HALF_OPEN_TRIALS", 3)
    count_cancellations: bool = _env_bool("COUNT_CANCELLATIONS", False)

    max_retries: int = _env_int("MAX_RETRIES", 3)
    initial_delay_ms: float = _env_float("INITIAL_DELAY_MS", 1000)
    max_delay_ms: float = _env_float("MAX_DELAY_MS", 30000)
    backoff: str = _env_str("BACKOFF", "exponential")
    jitter: float = _env_float("JITTER", 0.1)
    attempt_timeout_ms: float = _env_float("ATTEMPT_TIMEOUT_MS", 30000)

    retry_budget: int = _env_int("RETRY_BUDGET", 100)
    budget_window_ms: float = _env_float("BUDGET_WINDOW_MS", 60000)

    check_interval_ms: float = _env_float("CHECK_INTERVAL_MS", 30000)
    max_concurrent: int = _env_int("MAX_CONCURRENT", 3)
    auto_recover: bool = _env_bool("AUTO_RECOVER", False)

    log_level: str = _env_str("LOG_LEVEL", "INFO")

    def __post_init__(self):
        try:
            BackoffStrategy(self.backoff.lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown backoff strategy '{self.backoff}'",
                config_key=PREFIX + "BACKOFF",
                config_value=self.backoff,
            ) from None

    def breaker_config(self, **overrides) -> CircuitBreakerConfig:
        values = dict(
            failure_threshold=self.failure_threshold,
            request_threshold=self.request_threshold,
            reset_timeout_ms=self.reset_timeout_ms,
            monitoring_window_ms=self.monitoring_window_ms,
            half_open_trial_count=self.half_open_trials,
            count_cancellations=self.count_cancellations,
        )
        values.update(overrides)
        return CircuitBreakerConfig(**values)

    def retry_config(self, **overrides) -> RetryConfig:
        values = dict(
            max_retries=self.max_retries,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            strategy=BackoffStrategy(self.backoff.lower()),
            jitter=self.jitter,
            timeout_ms=self.attempt_timeout_ms,
        )
        values.update(overrides)
        return RetryConfig(**values)

    def advanced_retry_config(self, **overrides) -> AdvancedRetryConfig:
        values = dict(
            retry_budget=self.retry_budget,
            budget_window_ms=self.budget_window_ms,
        )
        values.update(overrides)
        return AdvancedRetryConfig(**values)

    def coordinator_options(self, **overrides) -> CoordinatorOptions:
        values = dict(
            auto_recover=self.auto_recover,
            check_interval_ms=self.check_interval_ms,
            max_concurrent=self.max_concurrent,
        )
        values.update(overrides)
        return CoordinatorOptions(**values)


def get_settings() -> ResilienceSettings:
    """Build settings from the current environment."""
    return ResilienceSettings()
