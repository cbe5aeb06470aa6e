"""
Recovery Coordinator
====================
Brings failed or degraded services back to healthy, honouring dependency
order and a global cap on concurrent recoveries.

The coordinator never runs business operations. It inspects and resets the
breakers and retry policies registered with each service and validates
recovery through a caller-supplied health check. Recovery failures never
propagate: they update the service status, land in the event log, and
``recover_service`` returns False.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import structlog

from ..circuit_breaker import CircuitState
from ..clock import Clock, now_ms
from ..observers import ObserverList
from .degradation import DegradationManager
from .models import (
    CoordinatorOptions,
    RecoveryEvent,
    RecoveryEventType,
    RecoveryState,
    RecoveryStatus,
    RecoveryStrategy,
    ServiceConfig,
    ServiceNotRegisteredError,
)

logger = structlog.get_logger(__name__)


class RecoveryCoordinator:
    """
    Registry of named services with dependency-aware recovery.

    Example:
        coordinator = RecoveryCoordinator(CoordinatorOptions(max_concurrent=2))
        coordinator.register_service(ServiceConfig(
            name="search-api",
            circuit_breaker=registry.get("search-api"),
            health_check=ping_search,
        ))

        recovered = await coordinator.recover_service("search-api")
    """

    def __init__(
        self,
        options: Optional[CoordinatorOptions] = None,
        degradation_manager: Optional[DegradationManager] = None,
        clock: Optional[Clock] = None,
    ):
        self.options = options or CoordinatorOptions()
        self.degradation_manager = degradation_manager
        self._clock = clock or now_ms

        self._services: Dict[str, ServiceConfig] = {}
        self._status: Dict[str, RecoveryStatus] = {}
        self._in_flight: Set[str] = set()
        self._events: List[RecoveryEvent] = []
        self._sweep_task: Optional[asyncio.Task] = None

        self._listeners: ObserverList[RecoveryEvent] = ObserverList("recovery_coordinator")
        if self.options.on_recovery_event:
            self._listeners.add(self.options.on_recovery_event)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_service(self, config: ServiceConfig) -> None:
        """Register or replace a service. Status starts out healthy."""
        self._services[config.name] = config
        self._status[config.name] = RecoveryStatus(
            service=config.name,
            dependencies=list(config.dependencies),
        )
        logger.info(
            "service_registered",
            service=config.name,
            strategy=config.strategy.value,
            dependencies=config.dependencies,
        )

    def unregister_service(self, name: str) -> bool:
        if name not in self._services:
            return False
        del self._services[name]
        del self._status[name]
        logger.info("service_unregistered", service=name)
        return True

    def add_listener(self, callback: Callable[[RecoveryEvent], Any]) -> None:
        """Register a recovery-event callback. Its exceptions are swallowed."""
        self._listeners.add(callback)

    def remove_listener(self, callback: Callable[[RecoveryEvent], Any]) -> None:
        self._listeners.remove(callback)

    def _require(self, name: str) -> Tuple[ServiceConfig, RecoveryStatus]:
        config = self._services.get(name)
        if config is None:
            raise ServiceNotRegisteredError(name)
        return config, self._status[name]

    # ------------------------------------------------------------------
    # Status changes reported by callers
    # ------------------------------------------------------------------

    def mark_failed(self, name: str, reason: Optional[str] = None) -> None:
        _, status = self._require(name)
        status.state = RecoveryState.FAILED
        status.last_failure = self._clock()
        self._emit(RecoveryEventType.FAILED, name, details=reason)

    def mark_degraded(self, name: str, reason: Optional[str] = None) -> None:
        _, status = self._require(name)
        status.state = RecoveryState.DEGRADED
        self._emit(RecoveryEventType.DEGRADED, name, details=reason)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover_service(self, name: str) -> bool:
        """
        Attempt to recover ``name``.

        Returns:
            True if the service is healthy again, False otherwise

        Raises:
            ServiceNotRegisteredError: If ``name`` was never registered
        """
        config, status = self._require(name)

        # Admission: checked and claimed before the first await
        if name in self._in_flight:
            return False
        if len(self._in_flight) >= self.options.max_concurrent:
            logger.debug("recovery_deferred", service=name, in_flight=len(self._in_flight))
            return False
        if status.attempt_count >= config.max_recovery_attempts:
            self._emit(
                RecoveryEventType.FAILED,
                name,
                details="Maximum recovery attempts exceeded",
            )
            return False
        self._in_flight.add(name)

        try:
            status.state = RecoveryState.RECOVERING
            status.attempt_count += 1
            status.last_attempt = self._clock()
            self._emit(RecoveryEventType.STARTED, name)

            try:
                recovered, reason = await self._attempt(config, status)
            except asyncio.CancelledError:
                self._record_failure(status, "Recovery cancelled")
                raise
            except Exception as e:
                logger.warning("recovery_error", service=name, error=str(e))
                recovered, reason = False, str(e) or type(e).__name__

            if not recovered:
                self._record_failure(status, reason)
                return False

            await self._record_success(config, status)
            return True
        finally:
            self._in_flight.discard(name)

    async def _attempt(
        self,
        config: ServiceConfig,
        status: RecoveryStatus,
    ) -> Tuple[bool, str]:
        deps_healthy = self._dependencies_healthy(config)
        status.dependencies_healthy = deps_healthy

        if config.strategy == RecoveryStrategy.COORDINATED and not deps_healthy:
            return False, "Dependencies not healthy"

        if config.strategy == RecoveryStrategy.IMMEDIATE:
            recovered = await self._immediate(config)
        elif config.strategy == RecoveryStrategy.COORDINATED:
            recovered = await self._coordinated(config, status)
        elif config.strategy == RecoveryStrategy.MANUAL:
            return False, "Manual recovery required"
        else:
            recovered = await self._gradual(config)

        if not recovered:
            return False, "Recovery validation failed"
        return True, ""

    async def _immediate(self, config: ServiceConfig) -> bool:
        if config.circuit_breaker is not None:
            config.circuit_breaker.reset()
        return await self._health_check(config)

    async def _gradual(self, config: ServiceConfig) -> bool:
        breaker = config.circuit_breaker
        if breaker is not None:
            state = breaker.get_state()
            if state == CircuitState.OPEN:
                # The breaker's own timeout moves it to half-open
                return False
            if state == CircuitState.HALF_OPEN:
                rate = breaker.get_stats().get("trial_success_rate")
                return rate is not None and rate >= self.options.half_open_success_rate

        healthy = await self._health_check(config)
        if healthy and breaker is not None:
            breaker.reset()
        return healthy

    async def _coordinated(self, config: ServiceConfig, status: RecoveryStatus) -> bool:
        deps_healthy = self._dependencies_healthy(config)
        status.dependencies_healthy = deps_healthy
        if not deps_healthy:
            return False
        return await self._gradual(config)

    async def _health_check(self, config: ServiceConfig) -> bool:
        if config.health_check is None:
            return True
        result = config.health_check()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def _dependencies_healthy(self, config: ServiceConfig) -> bool:
        for dep in config.dependencies:
            dep_status = self._status.get(dep)
            if dep_status is None or dep_status.state != RecoveryState.HEALTHY:
                return False
            dep_config = self._services[dep]
            if (
                dep_config.circuit_breaker is not None
                and dep_config.circuit_breaker.get_state() == CircuitState.OPEN
            ):
                return False
        return True

    def _record_failure(self, status: RecoveryStatus, reason: str) -> None:
        status.state = RecoveryState.FAILED
        status.last_failure = self._clock()
        logger.warning(
            "recovery_failed",
            service=status.service,
            attempt=status.attempt_count,
            reason=reason,
        )
        self._emit(RecoveryEventType.FAILED, status.service, details=reason)

    async def _record_success(self, config: ServiceConfig, status: RecoveryStatus) -> None:
        status.state = RecoveryState.HEALTHY
        status.last_success = self._clock()
        status.attempt_count = 0

        if config.circuit_breaker is not None:
            config.circuit_breaker.reset()
        if config.retry_policy is not None:
            config.retry_policy.reset()

        if self.degradation_manager is not None:
            try:
                result = self.degradation_manager.recover(config.name)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "degradation_recover_failed",
                    service=config.name,
                    error=str(e),
                )

        logger.info("service_recovered", service=config.name)
        self._emit(
            RecoveryEventType.SUCCEEDED,
            config.name,
            metrics=self._service_metrics(config),
        )

    def _service_metrics(self, config: ServiceConfig) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {}
        breaker = config.circuit_breaker
        if breaker is not None:
            stats = breaker.get_stats()
            metrics["circuit"] = {
                "state": stats["state"],
                "failure_rate": stats["failure_rate"],
                "health_score": stats.get("health_score"),
            }
        policy = config.retry_policy
        if policy is not None and hasattr(policy, "get_metrics"):
            retry_metrics = policy.get_metrics()
            metrics["retry"] = {
                "success_rate": retry_metrics.success_rate,
                "average_delay_ms": retry_metrics.average_delay_ms,
            }
        return metrics

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def _needs_recovery(self, config: ServiceConfig) -> bool:
        if config.strategy == RecoveryStrategy.MANUAL:
            return False
        state = self._status[config.name].state
        if state in (RecoveryState.FAILED, RecoveryState.DEGRADED):
            return True
        breaker = config.circuit_breaker
        return breaker is not None and breaker.get_state() == CircuitState.OPEN

    async def check_recoveries(self) -> Dict[str, bool]:
        """Run one sweep, highest priority first. Returns results per service tried."""
        ordered = sorted(self._services.values(), key=lambda c: c.priority, reverse=True)
        results: Dict[str, bool] = {}
        for config in ordered:
            if config.name not in self._services:
                continue
            if self._needs_recovery(config):
                results[config.name] = await self.recover_service(config.name)
        return results

    def start_recovery_checks(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("recovery_checks_started", interval_ms=self.options.check_interval_ms)

    async def stop_recovery_checks(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("recovery_checks_stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.options.check_interval_ms / 1000)
            try:
                await self.check_recoveries()
            except Exception as e:
                logger.error("recovery_sweep_failed", error=str(e))

    async def start(self) -> None:
        if self.options.auto_recover:
            self.start_recovery_checks()

    async def close(self) -> None:
        """Stop the sweep and forget every registration."""
        await self.stop_recovery_checks()
        self._services.clear()
        self._status.clear()
        self._events.clear()
        self._listeners.clear()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_status(self, name: str) -> Optional[RecoveryStatus]:
        """Copy of the status, enriched with live breaker data."""
        status = self._status.get(name)
        if status is None:
            return None
        update: Dict[str, Any] = {}
        breaker = self._services[name].circuit_breaker
        if breaker is not None:
            update["circuit_state"] = breaker.get_state().value
            if hasattr(breaker, "get_health_metrics"):
                update["health_score"] = breaker.get_health_metrics().health_score
        return status.model_copy(update=update, deep=True)

    def get_all_status(self) -> Dict[str, RecoveryStatus]:
        return {name: self.get_status(name) for name in self._services}

    def get_history(self, limit: int = 100) -> List[RecoveryEvent]:
        if limit <= 0:
            return []
        return list(self._events[-limit:])

    @property
    def active_recoveries(self) -> Set[str]:
        return set(self._in_flight)

    def _emit(
        self,
        event_type: RecoveryEventType,
        service: str,
        details: Optional[str] = None,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = RecoveryEvent(
            type=event_type,
            service=service,
            timestamp=self._clock(),
            details=details,
            metrics=metrics,
        )
        self._events.append(event)
        if len(self._events) > self.options.history_limit:
            self._events = self._events[-self.options.history_trim_to:]
        self._listeners.notify(event)
