"""
Retry Policy
============
Bounded re-invocation of a fallible async operation with a computed delay
schedule, optionally tuned per classified error type.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar
import structlog

from ..clock import Clock, now_ms
from ..errors.classifier import Classifier
from ..exceptions import OperationCancelledError
from .backoff import calculate_delay, check_cancelled, run_with_timeout, sleep_ms
from .exceptions import RetryExhausted
from .models import RetryAttempt, RetryConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")

OperationFactory = Callable[[RetryAttempt], Awaitable[T]]


class RetryHooks:
    """
    Extension points of the retry loop. The defaults do nothing.

    All hooks run synchronously between awaits.
    """

    def before_retry(self, attempt: int, last_error: Optional[BaseException]) -> None:
        """Called before every attempt after the first. May raise to stop."""

    def scale_delay(self, delay_ms: int, config: RetryConfig) -> int:
        return delay_ms

    def on_delay(self, delay_ms: int) -> None:
        pass

    def after_attempt(self, attempt: int, error: Optional[BaseException]) -> None:
        pass


_NO_HOOKS = RetryHooks()


class RetryPolicy:
    """
    Retry loop with exponential, linear or fixed backoff.

    Example:
        policy = RetryPolicy(RetryConfig(max_retries=2, initial_delay_ms=200))

        result = await policy.execute(lambda attempt: client.get("/items"))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        classifier: Optional[Classifier] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        name: str = "retry",
    ):
        self.config = config or RetryConfig()
        self.classifier = classifier
        self.name = name
        self._clock = clock or now_ms
        self._rng = rng

    @property
    def clock(self) -> Clock:
        return self._clock

    def effective_config(self, error_type: Optional[Any] = None) -> RetryConfig:
        return self.config.for_error_type(error_type)

    def calculate_delay(self, attempt: int, config: Optional[RetryConfig] = None) -> int:
        """Delay in milliseconds before ``attempt`` under ``config``."""
        return calculate_delay(attempt, config or self.config, self._rng)

    def get_expected_delay(self, attempt: int, error_type: Optional[Any] = None) -> int:
        return self.calculate_delay(attempt, self.effective_config(error_type))

    def get_max_total_time_ms(self, error_type: Optional[Any] = None) -> int:
        """Rough upper bound for one execute() call: every delay plus every timeout."""
        config = self.effective_config(error_type)
        total = 0
        for attempt in range(1, config.max_retries + 1):
            total += self.calculate_delay(attempt, config)
        total += config.timeout_ms * (config.max_retries + 1)
        return int(total)

    def should_retry(self, error_type: Optional[Any], attempt: int) -> bool:
        """Whether a failure on zero-based ``attempt`` would be retried."""
        return attempt < self.effective_config(error_type).max_retries

    def reset(self) -> None:
        """The base policy keeps no state between calls."""

    async def execute(
        self,
        operation_factory: OperationFactory,
        error_type: Optional[Any] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """
        Run ``operation_factory`` until it succeeds or attempts run out.

        Args:
            operation_factory: Called with a RetryAttempt, returns an awaitable
            error_type: Selects per-error-type overrides from the config
            cancel_event: Setting it aborts the current sleep or attempt

        Returns:
            The first successful result

        Raises:
            RetryExhausted: When the last attempt fails or an error is not retryable
            OperationCancelledError: When cancel_event is set
        """
        return await self._run(operation_factory, error_type, cancel_event, _NO_HOOKS)

    async def _run(
        self,
        operation_factory: OperationFactory,
        error_type: Optional[Any],
        cancel_event: Optional[asyncio.Event],
        hooks: RetryHooks,
    ) -> T:
        config = self.effective_config(error_type)
        started = self._clock()
        attempts = config.max_retries + 1
        last_error: Optional[BaseException] = None
        delay_floor: Optional[float] = None

        for attempt in range(attempts):
            check_cancelled(cancel_event)

            delay = 0
            if attempt > 0:
                hooks.before_retry(attempt, last_error)
                if not (attempt == 1 and config.retry_immediately):
                    delay = hooks.scale_delay(self.calculate_delay(attempt, config), config)
                    if delay_floor is not None:
                        delay = max(delay, int(delay_floor))
                hooks.on_delay(delay)
                if delay > 0:
                    await sleep_ms(delay, cancel_event)

            info = RetryAttempt(
                attempt=attempt,
                delay_ms=delay,
                elapsed_ms=self._clock() - started,
                previous_error=last_error,
            )

            try:
                result = await run_with_timeout(
                    operation_factory(info), config.timeout_ms, cancel_event
                )
            except OperationCancelledError:
                raise
            except Exception as e:
                last_error = e
                hooks.after_attempt(attempt, e)
                delay_floor = None

                if self.classifier is not None:
                    classified = self.classifier.classify(e)
                    if not classified.retryable:
                        logger.info(
                            "retry_aborted_non_retryable",
                            policy=self.name,
                            attempt=attempt + 1,
                            error_type=classified.type.value,
                        )
                        raise RetryExhausted(
                            f"Operation failed after {attempt + 1} attempts: {e}",
                            last_exception=e,
                            attempts=attempt + 1,
                        ) from e
                    delay_floor = classified.retry_after_ms

                if attempt + 1 < attempts:
                    logger.debug(
                        "retry_attempt_failed",
                        policy=self.name,
                        attempt=attempt + 1,
                        error=str(e),
                    )
                continue

            hooks.after_attempt(attempt, None)
            return result

        logger.warning(
            "retry_exhausted",
            policy=self.name,
            attempts=attempts,
            error=str(last_error),
        )
        raise RetryExhausted(
            f"Operation failed after {attempts} attempts: {last_error}",
            last_exception=last_error,
            attempts=attempts,
        ) from last_error
