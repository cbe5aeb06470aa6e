"""
Error Classifier
================
Maps arbitrary exceptions to an ErrorType and a retryable verdict.

Retry policies consult a classifier to pick per-error-type settings and to
stop early on errors that can never succeed. Any object with a matching
``classify`` method can stand in for the default implementation.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Protocol, Union

import httpx

from ..exceptions import AttemptTimeoutError, OperationCancelledError


class ErrorType(str, Enum):
    """Error categories used to select retry behaviour."""
    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


RETRYABLE_TYPES = frozenset({
    ErrorType.TRANSIENT,
    ErrorType.RATE_LIMIT,
    ErrorType.SERVER_ERROR,
    ErrorType.NETWORK,
    ErrorType.TIMEOUT,
})


@dataclass
class ErrorInfo:
    """Classification result."""
    type: ErrorType
    retryable: bool
    message: str
    status_code: Optional[int] = None
    retry_after_ms: Optional[float] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomPattern:
    """Message regex checked before the built-in rules."""
    pattern: Union[str, Pattern]
    type: ErrorType
    retryable: Optional[bool] = None

    def __post_init__(self):
        if isinstance(self.pattern, str):
            self.pattern = re.compile(self.pattern, re.IGNORECASE)


class Classifier(Protocol):
    """Anything that can classify an error."""

    def classify(self, error: BaseException) -> ErrorInfo:
        ...


# (type, keywords) checked in order against the lowercased message
_MESSAGE_RULES = [
    (ErrorType.NETWORK, ("network", "econnreset", "econnrefused", "connection reset",
                         "connection refused", "socket hang up")),
    (ErrorType.TIMEOUT, ("timeout", "timed out", "etimedout")),
    (ErrorType.AUTHENTICATION, ("unauthorized", "authentication", "invalid api key",
                                "invalid token")),
    (ErrorType.RATE_LIMIT, ("rate limit", "too many requests", "quota exceeded")),
    (ErrorType.VALIDATION, ("validation", "invalid", "bad request")),
    (ErrorType.CANCELLED, ("cancel", "abort")),
]


def is_retryable(error_type: ErrorType) -> bool:
    return error_type in RETRYABLE_TYPES


def parse_retry_after(value: Any) -> Optional[float]:
    """Parse a Retry-After value in seconds into milliseconds."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds < 0:
        return None
    return seconds * 1000


class ErrorClassifier:
    """
    Default classifier.

    Order of checks: custom patterns, cancellation and timeouts, httpx
    exceptions, objects carrying a status code, message keywords.
    Unmatched exceptions are treated as transient.

    Example:
        classifier = ErrorClassifier(
            custom_patterns=[CustomPattern(r"model overloaded", ErrorType.SERVER_ERROR)],
        )
        info = classifier.classify(exc)
    """

    def __init__(
        self,
        custom_patterns: Optional[List[CustomPattern]] = None,
        status_code_mappings: Optional[Dict[int, ErrorType]] = None,
    ):
        self.custom_patterns = list(custom_patterns or [])
        self.status_code_mappings = dict(status_code_mappings or {})

    def classify(self, error: BaseException) -> ErrorInfo:
        message = str(error) or type(error).__name__

        for custom in self.custom_patterns:
            if custom.pattern.search(message):
                retryable = custom.retryable
                if retryable is None:
                    retryable = is_retryable(custom.type)
                return self._info(custom.type, error, message, retryable=retryable)

        if isinstance(error, (OperationCancelledError, asyncio.CancelledError)):
            return self._info(ErrorType.CANCELLED, error, message)
        if isinstance(error, (AttemptTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
            return self._info(ErrorType.TIMEOUT, error, message)
        if isinstance(error, httpx.NetworkError):
            return self._info(ErrorType.NETWORK, error, message)
        if isinstance(error, httpx.HTTPStatusError):
            response = error.response
            return self.classify_status(
                response.status_code,
                message,
                retry_after_ms=parse_retry_after(response.headers.get("retry-after")),
                error=error,
            )

        status = getattr(error, "status_code", None) or getattr(error, "status", None)
        if isinstance(status, int):
            return self.classify_status(
                status, message, retry_after_ms=self._retry_after(error), error=error
            )

        lowered = message.lower()
        for error_type, keywords in _MESSAGE_RULES:
            if any(keyword in lowered for keyword in keywords):
                return self._info(error_type, error, message)

        if isinstance(error, Exception):
            return self._info(ErrorType.TRANSIENT, error, message)
        return self._info(ErrorType.UNKNOWN, error, message)

    def classify_status(
        self,
        status_code: int,
        message: str = "HTTP error",
        retry_after_ms: Optional[float] = None,
        error: Optional[BaseException] = None,
    ) -> ErrorInfo:
        """Classify an HTTP status code."""
        error_type = self.status_code_mappings.get(status_code)
        if error_type is None:
            if status_code == 401:
                error_type = ErrorType.AUTHENTICATION
            elif status_code == 403:
                error_type = ErrorType.PERMISSION
            elif status_code == 404:
                error_type = ErrorType.NOT_FOUND
            elif status_code == 429:
                error_type = ErrorType.RATE_LIMIT
            elif 400 <= status_code < 500:
                error_type = ErrorType.CLIENT_ERROR
            elif status_code >= 500:
                error_type = ErrorType.SERVER_ERROR
            else:
                error_type = ErrorType.UNKNOWN

        info = self._info(error_type, error, message, status_code=status_code)
        info.retry_after_ms = retry_after_ms
        return info

    def _retry_after(self, error: BaseException) -> Optional[float]:
        headers = getattr(error, "headers", None)
        if isinstance(headers, dict) or hasattr(headers, "get"):
            parsed = parse_retry_after(headers.get("retry-after"))
            if parsed is not None:
                return parsed
        hint = getattr(error, "retry_after_ms", None)
        if isinstance(hint, (int, float)):
            return float(hint)
        return None

    def _info(
        self,
        error_type: ErrorType,
        error: Optional[BaseException],
        message: str,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
    ) -> ErrorInfo:
        info = ErrorInfo(
            type=error_type,
            retryable=is_retryable(error_type) if retryable is None else retryable,
            message=message,
            status_code=status_code,
        )
        if error is not None:
            info.context["error_class"] = type(error).__name__
            if error_type == ErrorType.RATE_LIMIT and status_code is None:
                info.retry_after_ms = self._retry_after(error)
        return info
