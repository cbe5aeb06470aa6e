"""
Retry Exceptions
================
Exception classes for retry operations.
"""

from typing import Optional

from ..exceptions import (
    AttemptTimeoutError,
    OperationCancelledError,
    RequestRejectedError,
    ResilienceError,
)


class RetryExhausted(ResilienceError):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        last_exception: Optional[BaseException] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class RetryBudgetExhausted(RequestRejectedError):
    """Raised when the shared retry budget for the current window is spent."""

    def __init__(self, budget: int, window_ms: float):
        super().__init__(
            f"Retry budget exhausted: {budget} retries in {window_ms:.0f}ms window"
        )
        self.budget = budget
        self.window_ms = window_ms


__all__ = [
    "RetryExhausted",
    "RetryBudgetExhausted",
    "AttemptTimeoutError",
    "OperationCancelledError",
]
