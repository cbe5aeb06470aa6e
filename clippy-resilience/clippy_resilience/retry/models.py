"""
Retry Models
============
Configuration and per-attempt records for retry policies.
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional

from ..exceptions import ConfigurationError


class BackoffStrategy(str, Enum):
    """How the delay grows between attempts."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


@dataclass
class RetryConfig:
    """Retry policy configuration. Durations are milliseconds."""
    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 30000
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    multiplier: float = 2.0
    jitter: float = 0.1               # Fraction of the delay, applied as +/-
    timeout_ms: float = 30000         # Upper bound for a single attempt
    retry_immediately: bool = False   # First retry fires without delay

    # Overrides keyed by error type, e.g. {"rate_limit": {"initial_delay_ms": 5000}}
    error_policies: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        self.strategy = BackoffStrategy(self.strategy)
        if self.max_retries < 0:
            raise ConfigurationError(
                "max_retries must be non-negative",
                config_key="max_retries",
                config_value=self.max_retries,
            )
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError(
                "delays must be non-negative",
                config_key="initial_delay_ms",
                config_value=self.initial_delay_ms,
            )
        if self.multiplier < 0:
            raise ConfigurationError(
                "multiplier must be non-negative",
                config_key="multiplier",
                config_value=self.multiplier,
            )
        if not 0 <= self.jitter <= 1:
            raise ConfigurationError(
                "jitter must be within [0, 1]",
                config_key="jitter",
                config_value=self.jitter,
            )
        if self.timeout_ms <= 0:
            raise ConfigurationError(
                "timeout_ms must be positive",
                config_key="timeout_ms",
                config_value=self.timeout_ms,
            )

        allowed = {f.name for f in fields(self)} - {"error_policies"}
        policies = {}
        for key, overrides in self.error_policies.items():
            unknown = set(overrides) - allowed
            if unknown:
                raise ConfigurationError(
                    f"Unknown retry override(s) for '{key}': {sorted(unknown)}",
                    config_key="error_policies",
                    config_value=key,
                )
            policies[key.value if isinstance(key, Enum) else str(key)] = dict(overrides)
        self.error_policies = policies

    def for_error_type(self, error_type: Optional[Any]) -> "RetryConfig":
        """Config with the overrides for ``error_type`` applied."""
        if error_type is None:
            return self
        key = error_type.value if isinstance(error_type, Enum) else str(error_type)
        overrides = self.error_policies.get(key)
        if not overrides:
            return self
        return replace(self, error_policies={}, **overrides)


@dataclass(frozen=True)
class RetryAttempt:
    """Information handed to the operation factory on every attempt."""
    attempt: int
    delay_ms: int
    elapsed_ms: float
    previous_error: Optional[BaseException] = None
