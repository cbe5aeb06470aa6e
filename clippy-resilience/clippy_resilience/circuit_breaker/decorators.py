"""
Circuit Breaker Decorator
=========================
Decorator for wrapping async functions with circuit breaker protection.
"""

from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar, Union
import structlog

from .adaptive import AdaptiveCircuitBreaker
from .breaker import CircuitBreaker
from .models import CircuitBreakerError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def circuit_breaker(
    breaker: Union[CircuitBreaker, AdaptiveCircuitBreaker],
    fallback: Optional[Callable[[], Awaitable[T]]] = None,
):
    """
    Decorator to wrap async functions with a circuit breaker.

    The fallback only runs when the circuit rejects the call; failures of
    the wrapped function still propagate.

    Example:
        search_breaker = registry.get("search-api")

        @circuit_breaker(search_breaker)
        async def search(query: str):
            return await client.get("/search", params={"q": query})

        @circuit_breaker(search_breaker, fallback=lambda: cached_results())
        async def search_cached(query: str):
            return await client.get("/search", params={"q": query})
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await breaker.execute(lambda: func(*args, **kwargs))
            except CircuitBreakerError:
                if fallback is None:
                    raise
                logger.debug("circuit_fallback", breaker=breaker.name)
                return await fallback()

        return wrapper

    return decorator
