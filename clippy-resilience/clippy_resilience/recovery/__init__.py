"""
Clippy Resilience - Recovery
============================
Dependency-ordered, concurrency-bounded recovery of named services.

Usage:
    from clippy_resilience.recovery import RecoveryCoordinator, ServiceConfig

    async with RecoveryCoordinator() as coordinator:
        coordinator.register_service(ServiceConfig(name="search-api"))
        await coordinator.recover_service("search-api")
"""

from .models import (
    RecoveryStrategy,
    RecoveryState,
    RecoveryEventType,
    ServiceConfig,
    RecoveryStatus,
    RecoveryEvent,
    CoordinatorOptions,
    ServiceNotRegisteredError,
)

from .degradation import DegradationLevel, DegradationManager

from .coordinator import RecoveryCoordinator

__all__ = [
    # Models
    "RecoveryStrategy",
    "RecoveryState",
    "RecoveryEventType",
    "ServiceConfig",
    "RecoveryStatus",
    "RecoveryEvent",
    "CoordinatorOptions",
    "ServiceNotRegisteredError",
    # Degradation
    "DegradationLevel",
    "DegradationManager",
    # Coordinator
    "RecoveryCoordinator",
]
