"""
Circuit Breaker Registry
========================
Explicitly constructed container of named circuit breakers.

Create one registry and pass it to whoever needs shared breakers. There is
no module-level instance, so every test gets an isolated set.
"""

from typing import Any, Dict, Iterator, Optional
import structlog

from ..clock import Clock
from .breaker import CircuitBreaker
from .models import CircuitBreakerConfig

logger = structlog.get_logger(__name__)


class CircuitBreakerRegistry:
    """
    Get-or-create store of breakers keyed by dependency name.

    Example:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(request_threshold=5))
        breaker = registry.get("search-api")
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> CircuitBreaker:
        """
        Get or create the breaker for ``name``.

        Args:
            name: Dependency key
            config: Only used when the breaker is created

        Returns:
            CircuitBreaker instance
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                config=config or self.default_config,
                clock=self._clock,
            )
            self._breakers[name] = breaker
            logger.debug("circuit_registered", breaker=name)
        return breaker

    def has(self, name: str) -> bool:
        return name in self._breakers

    def remove(self, name: str) -> bool:
        breaker = self._breakers.pop(name, None)
        if breaker is None:
            return False
        breaker.close()
        return True

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        """Get stats for all registered circuit breakers."""
        return {
            name: breaker.get_stats()
            for name, breaker in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers to closed state."""
        for breaker in self._breakers.values():
            breaker.reset()

    def close(self) -> None:
        """Cancel pending timers and forget every breaker."""
        for breaker in self._breakers.values():
            breaker.close()
        self._breakers.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def __iter__(self) -> Iterator[str]:
        return iter(dict(self._breakers))

    def __len__(self) -> int:
        return len(self._breakers)
