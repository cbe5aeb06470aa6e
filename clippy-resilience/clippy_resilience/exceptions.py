"""
Resilience Exceptions
=====================
Base exception hierarchy shared by breakers, retry policies and the
recovery coordinator.
"""

from typing import Any, Optional


class ResilienceError(Exception):
    """Base class for every error raised by clippy_resilience."""
    pass


class ConfigurationError(ResilienceError, ValueError):
    """Raised when a configuration value is out of range."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Any = None,
    ):
        super().__init__(message)
        self.config_key = config_key
        self.config_value = config_value


class RequestRejectedError(ResilienceError):
    """
    Raised when a guard refuses a call before the dependency is reached.

    Breakers never record these as outcomes of the dependency.
    """
    pass


class OperationCancelledError(ResilienceError):
    """Raised when a cooperative cancel signal aborts an operation."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class AttemptTimeoutError(ResilienceError):
    """Raised when a single attempt exceeds its time bound."""

    def __init__(self, timeout_ms: float):
        super().__init__(f"Attempt timed out after {timeout_ms:.0f}ms")
        self.timeout_ms = timeout_ms
