"""
Retry Decorator
===============
Decorator for wrapping async functions with a retry policy.
"""

from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from .advanced import AdvancedRetryPolicy
from .policy import RetryPolicy

T = TypeVar("T")


def with_retry(
    policy: Union[RetryPolicy, AdvancedRetryPolicy],
    error_type: Optional[Any] = None,
):
    """
    Decorator to add retry behaviour to async functions.

    Example:
        @with_retry(RetryPolicy(RetryConfig(max_retries=3)))
        async def fetch_profile(user_id: str):
            return await client.get(f"/users/{user_id}")
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await policy.execute(
                lambda attempt: func(*args, **kwargs),
                error_type=error_type,
            )

        return wrapper

    return decorator
