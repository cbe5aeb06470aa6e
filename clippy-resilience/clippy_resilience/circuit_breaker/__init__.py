"""
Clippy Resilience - Circuit Breaker
===================================
Failure-rate circuit breaker for per-dependency isolation.

States:

1. CLOSED: Normal operation, outcomes accumulate in a rolling window
2. OPEN: Failure rate crossed the threshold, requests are rejected
3. HALF-OPEN: A fixed number of trial requests test recovery

Usage:
    from clippy_resilience.circuit_breaker import CircuitBreakerRegistry, circuit_breaker

    registry = CircuitBreakerRegistry()

    @circuit_breaker(registry.get("search-api"))
    async def search(query: str):
        return await client.get("/search", params={"q": query})
"""

from .models import (
    CircuitState,
    CircuitBreakerError,
    CircuitBreakerConfig,
    RequestOutcome,
    StateChange,
)

from .window import OutcomeWindow

from .breaker import CircuitBreaker

from .adaptive import (
    AdaptiveCircuitBreaker,
    AdaptiveConfig,
    HealthMetrics,
)

from .registry import CircuitBreakerRegistry

from .decorators import circuit_breaker

__all__ = [
    # Models
    "CircuitState",
    "CircuitBreakerError",
    "CircuitBreakerConfig",
    "RequestOutcome",
    "StateChange",
    "OutcomeWindow",
    # Breaker
    "CircuitBreaker",
    "AdaptiveCircuitBreaker",
    "AdaptiveConfig",
    "HealthMetrics",
    # Registry
    "CircuitBreakerRegistry",
    # Decorator
    "circuit_breaker",
]
