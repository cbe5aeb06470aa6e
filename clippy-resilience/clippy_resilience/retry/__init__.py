"""
Clippy Resilience - Retry
=========================
Retry policies with exponential, linear or fixed backoff.

Usage:
    from clippy_resilience.retry import RetryPolicy, RetryConfig, with_retry

    policy = RetryPolicy(RetryConfig(max_retries=3, initial_delay_ms=500))

    @with_retry(policy)
    async def call_external_api():
        ...
"""

from .exceptions import (
    RetryExhausted,
    RetryBudgetExhausted,
    AttemptTimeoutError,
    OperationCancelledError,
)

from .models import (
    BackoffStrategy,
    RetryConfig,
    RetryAttempt,
)

from .backoff import (
    calculate_delay,
    sleep_ms,
    run_with_timeout,
)

from .policy import RetryPolicy, RetryHooks

from .advanced import (
    AdvancedRetryPolicy,
    AdvancedRetryConfig,
    AdaptiveBackoffState,
    RetryBudgetWindow,
    RetryMetrics,
)

from .decorators import with_retry

__all__ = [
    # Exceptions
    "RetryExhausted",
    "RetryBudgetExhausted",
    "AttemptTimeoutError",
    "OperationCancelledError",
    # Models
    "BackoffStrategy",
    "RetryConfig",
    "RetryAttempt",
    # Backoff
    "calculate_delay",
    "sleep_ms",
    "run_with_timeout",
    # Policies
    "RetryPolicy",
    "RetryHooks",
    "AdvancedRetryPolicy",
    "AdvancedRetryConfig",
    "AdaptiveBackoffState",
    "RetryBudgetWindow",
    "RetryMetrics",
    # Decorator
    "with_retry",
]
