"""
Recovery Models
===============
Service registrations, status snapshots and the recovery event log entries.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..exceptions import ConfigurationError, ResilienceError


class RecoveryStrategy(str, Enum):
    """How a failed service is brought back."""
    IMMEDIATE = "immediate"      # Reset breaker and trust the health check
    GRADUAL = "gradual"          # Let half-open trials prove recovery
    COORDINATED = "coordinated"  # Gradual, once dependencies are confirmed healthy
    MANUAL = "manual"            # Never recovered automatically


class RecoveryState(str, Enum):
    HEALTHY = "healthy"
    RECOVERING = "recovering"
    FAILED = "failed"
    DEGRADED = "degraded"


class RecoveryEventType(str, Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEGRADED = "degraded"


HealthCheck = Callable[[], Union[bool, Awaitable[bool]]]


class ServiceNotRegisteredError(ResilienceError, KeyError):
    """Raised when a coordinator operation names an unknown service."""

    def __init__(self, name: str):
        super().__init__(f"Service '{name}' is not registered")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


@dataclass
class ServiceConfig:
    """
    Registration for one service.

    The breaker and retry policy are borrowed references: business code keeps
    using them directly, the coordinator only inspects and resets them.
    """
    name: str
    circuit_breaker: Optional[Any] = None
    retry_policy: Optional[Any] = None
    dependencies: List[str] = field(default_factory=list)
    strategy: RecoveryStrategy = RecoveryStrategy.GRADUAL
    health_check: Optional[HealthCheck] = None
    priority: int = 5
    max_recovery_attempts: int = 5

    def __post_init__(self):
        self.strategy = RecoveryStrategy(self.strategy)
        self.dependencies = list(dict.fromkeys(self.dependencies))
        if not self.name:
            raise ConfigurationError("service name is required", config_key="name")
        if self.name in self.dependencies:
            raise ConfigurationError(
                f"Service '{self.name}' cannot depend on itself",
                config_key="dependencies",
                config_value=self.name,
            )
        if self.max_recovery_attempts < 1:
            raise ConfigurationError(
                "max_recovery_attempts must be at least 1",
                config_key="max_recovery_attempts",
                config_value=self.max_recovery_attempts,
            )


class RecoveryStatus(BaseModel):
    """Per-service recovery status. Timestamps are epoch milliseconds."""
    service: str
    state: RecoveryState = RecoveryState.HEALTHY
    attempt_count: int = 0
    last_attempt: Optional[float] = None
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    dependencies: List[str] = Field(default_factory=list)
    dependencies_healthy: bool = True
    circuit_state: Optional[str] = None
    health_score: Optional[float] = None


class RecoveryEvent(BaseModel):
    type: RecoveryEventType
    service: str
    timestamp: float
    details: Optional[str] = None
    metrics: Optional[Dict[str, Any]] = None


@dataclass
class CoordinatorOptions:
    """Coordinator settings. Durations are milliseconds."""
    auto_recover: bool = False           # Start the periodic sweep on start()
    check_interval_ms: float = 30000
    max_concurrent: int = 3              # Recoveries allowed in flight at once
    history_limit: int = 1000            # Event log ceiling
    history_trim_to: int = 500           # Entries kept when the ceiling is exceeded
    half_open_success_rate: float = 0.8  # Trial success rate gradual recovery requires
    on_recovery_event: Optional[Callable[[RecoveryEvent], Any]] = None

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ConfigurationError(
                "max_concurrent must be at least 1",
                config_key="max_concurrent",
                config_value=self.max_concurrent,
            )
        if self.check_interval_ms <= 0:
            raise ConfigurationError(
                "check_interval_ms must be positive",
                config_key="check_interval_ms",
                config_value=self.check_interval_ms,
            )
        if not 0 < self.history_trim_to <= self.history_limit:
            raise ConfigurationError(
                "history_trim_to must be within (0, history_limit]",
                config_key="history_trim_to",
                config_value=self.history_trim_to,
            )
