"""
Clippy Resilience - Errors
==========================
Error classification used to tune retry behaviour.
"""

from .classifier import (
    ErrorType,
    ErrorInfo,
    CustomPattern,
    Classifier,
    ErrorClassifier,
    RETRYABLE_TYPES,
    is_retryable,
    parse_retry_after,
)

__all__ = [
    "ErrorType",
    "ErrorInfo",
    "CustomPattern",
    "Classifier",
    "ErrorClassifier",
    "RETRYABLE_TYPES",
    "is_retryable",
    "parse_retry_after",
]
