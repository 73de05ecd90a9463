"""
Cooperative cancellation for one outbound request.

A CancelToken is handed to whatever performs the work (HTTP call, photo
capture). Work started through CancelToken.run() is wrapped in a task
that cancel() aborts; the awaiting side sees RequestCancelledError.
cancel() itself never raises.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..exceptions import RequestCancelledError

logger = logging.getLogger("shelfscout.interaction.cancel")

T = TypeVar("T")


class CancelToken:
    """Handle that aborts in-flight work for a single request."""

    def __init__(self, label: str = "request"):
        self.label = label
        self._cancelled = False
        self._reason: Optional[str] = None
        self._tasks: set[asyncio.Task] = set()
        self._callbacks: list[Callable[[str], Any]] = []

    def __repr__(self) -> str:
        status = f"cancelled: {self._reason}" if self._cancelled else "active"
        return f"CancelToken({self.label!r}, {status})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Abort everything running under this token. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info("Cancelling %s: %s", self.label, reason)

        for task in list(self._tasks):
            if not task.done():
                task.cancel()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.warning("Cancel callback failed for %s: %s", self.label, e)

    def add_callback(self, callback: Callable[[str], Any]) -> None:
        """Run callback(reason) on cancellation, immediately if already cancelled."""
        if self._cancelled:
            callback(self._reason or "cancelled")
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError(self._reason or "cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await work so that cancel() aborts it.

        Raises RequestCancelledError if the token is (or becomes)
        cancelled. Cancellation of the caller itself propagates
        unchanged.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelledError(self._reason or "cancelled")

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled and task.done() and task.cancelled():
                raise RequestCancelledError(self._reason or "cancelled") from None
            raise
        finally:
            self._tasks.discard(task)
