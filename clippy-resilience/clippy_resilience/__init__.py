"""
Clippy Resilience Library
=========================
Circuit breaking, adaptive retries and coordinated service recovery for
unreliable remote operations.
"""

__version__ = "0.1.0"

# Exceptions
from clippy_resilience.exceptions import (
    ResilienceError,
    ConfigurationError,
    RequestRejectedError,
    AttemptTimeoutError,
    OperationCancelledError,
)

# Circuit Breaker
from clippy_resilience.circuit_breaker import (
    CircuitState,
    CircuitBreakerError,
    CircuitBreakerConfig,
    CircuitBreaker,
    AdaptiveCircuitBreaker,
    AdaptiveConfig,
    HealthMetrics,
    CircuitBreakerRegistry,
    StateChange,
    circuit_breaker,
)

# Retry
from clippy_resilience.retry import (
    BackoffStrategy,
    RetryConfig,
    RetryAttempt,
    RetryPolicy,
    AdvancedRetryPolicy,
    AdvancedRetryConfig,
    RetryMetrics,
    RetryExhausted,
    RetryBudgetExhausted,
    with_retry,
)

# Errors
from clippy_resilience.errors import (
    ErrorType,
    ErrorInfo,
    ErrorClassifier,
)

# Recovery
from clippy_resilience.recovery import (
    RecoveryCoordinator,
    CoordinatorOptions,
    ServiceConfig,
    RecoveryStrategy,
    RecoveryState,
    RecoveryStatus,
    RecoveryEvent,
    RecoveryEventType,
    ServiceNotRegisteredError,
    DegradationLevel,
)

# Config / Logging
from clippy_resilience.config import ResilienceSettings, get_settings
from clippy_resilience.log_config import setup_logging

__all__ = [
    "__version__",
    # Exceptions
    "ResilienceError",
    "ConfigurationError",
    "RequestRejectedError",
    "AttemptTimeoutError",
    "OperationCancelledError",
    # Circuit Breaker
    "CircuitState",
    "CircuitBreakerError",
    "CircuitBreakerConfig",
    "CircuitBreaker",
    "AdaptiveCircuitBreaker",
    "AdaptiveConfig",
    "HealthMetrics",
    "CircuitBreakerRegistry",
    "StateChange",
    "circuit_breaker",
    # Retry
    "BackoffStrategy",
    "RetryConfig",
    "RetryAttempt",
    "RetryPolicy",
    "AdvancedRetryPolicy",
    "AdvancedRetryConfig",
    "RetryMetrics",
    "RetryExhausted",
    "RetryBudgetExhausted",
    "with_retry",
    # Errors
    "ErrorType",
    "ErrorInfo",
    "ErrorClassifier",
    # Recovery
    "RecoveryCoordinator",
    "CoordinatorOptions",
    "ServiceConfig",
    "RecoveryStrategy",
    "RecoveryState",
    "RecoveryStatus",
    "RecoveryEvent",
    "RecoveryEventType",
    "ServiceNotRegisteredError",
    "DegradationLevel",
    # Config / Logging
    "ResilienceSettings",
    "get_settings",
    "setup_logging",
]
