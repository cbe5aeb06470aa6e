"""
Retry Backoff
=============
Delay calculation and the cancellable wait primitives used by retry loops.
"""

import asyncio
import random
from typing import Awaitable, Optional, TypeVar

from ..exceptions import AttemptTimeoutError, OperationCancelledError
from .models import BackoffStrategy, RetryConfig

T = TypeVar("T")


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Delay in milliseconds before ``attempt``.

    Args:
        attempt: Zero-based attempt index
        config: Effective retry configuration
        rng: Random source for jitter

    Returns:
        Delay in whole milliseconds, never negative
    """
    if config.strategy == BackoffStrategy.EXPONENTIAL:
        delay = config.initial_delay_ms * (config.multiplier ** attempt)
    elif config.strategy == BackoffStrategy.LINEAR:
        delay = config.initial_delay_ms + config.multiplier * attempt * 1000
    else:
        delay = config.initial_delay_ms

    delay = min(delay, config.max_delay_ms)

    if config.jitter > 0:
        spread = delay * config.jitter
        delay = max(0.0, delay + (rng or random).uniform(-spread, spread))

    return int(delay)


def check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError()


async def sleep_ms(delay_ms: float, cancel_event: Optional[asyncio.Event] = None) -> None:
    """Sleep for ``delay_ms``, aborting early if ``cancel_event`` is set."""
    check_cancelled(cancel_event)
    if delay_ms <= 0:
        return
    if cancel_event is None:
        await asyncio.sleep(delay_ms / 1000)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_ms / 1000)
    except asyncio.TimeoutError:
        return
    raise OperationCancelledError("Sleep cancelled")


def _discard_result(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_ms: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """
    Await ``awaitable`` racing a timeout and an optional cancel signal.

    A losing operation is cancelled; whether it stops is up to the
    operation itself.

    Raises:
        AttemptTimeoutError: If the timeout fires first
        OperationCancelledError: If the cancel signal fires first
    """
    task = asyncio.ensure_future(awaitable)
    if cancel_event is not None and cancel_event.is_set():
        task.cancel()
        task.add_done_callback(_discard_result)
        raise OperationCancelledError()

    waiters = {task}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout_ms / 1000,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        task.add_done_callback(_discard_result)
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    task.add_done_callback(_discard_result)
    if cancel_waiter is not None and cancel_waiter in done:
        raise OperationCancelledError()
    raise AttemptTimeoutError(timeout_ms)
