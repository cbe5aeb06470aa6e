"""
Observers
=========
Fire-and-forget listener list for state-change and recovery notifications.
"""

import asyncio
import inspect
from typing import Any, Callable, Generic, List, Set, TypeVar
import structlog

logger = structlog.get_logger(__name__)

E = TypeVar("E")


class ObserverList(Generic[E]):
    """
    Ordered list of callbacks notified with a single payload.

    A failing callback is logged and skipped; it never aborts the emitter
    or prevents later callbacks from running. Coroutine callbacks are
    scheduled on the running loop and their failures logged the same way.
    """

    def __init__(self, source: str):
        self._source = source
        self._callbacks: List[Callable[[E], Any]] = []
        self._pending: Set[asyncio.Future] = set()

    def add(self, callback: Callable[[E], Any]) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def remove(self, callback: Callable[[E], Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)

    def notify(self, payload: E) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(payload)
            except Exception as e:
                self._log_failure(callback, e)
                continue
            if inspect.isawaitable(result):
                self._schedule(callback, result)

    def _schedule(self, callback: Callable[[E], Any], awaitable: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(
                "observer_callback_skipped",
                source=self._source,
                callback=_callback_name(callback),
                reason="no running event loop",
            )
            return

        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def finished(done: asyncio.Future) -> None:
            self._pending.discard(done)
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                self._log_failure(callback, error)

        task.add_done_callback(finished)

    def _log_failure(self, callback: Callable[[E], Any], error: BaseException) -> None:
        logger.warning(
            "observer_callback_failed",
            source=self._source,
            callback=_callback_name(callback),
            error=str(error),
        )


def _callback_name(callback: Callable[..., Any]) -> str:
    return getattr(callback, "__name__", repr(callback))
