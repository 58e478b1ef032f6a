"""Shared cooperative cancellation for the proxy's concurrent tasks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cancellation:
    """One shutdown signal handed to every task of a session.

    Tasks wrap their blocking reads in :meth:`race` so they return as soon
    as the signal fires. Writes are never raced, so a task stops between
    writes rather than in the middle of one.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        logger.info("Shutting down: %s", reason)
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T | None:
        """Await *awaitable* unless cancellation comes first.

        Returns ``None`` if cancelled; the pending operation is cancelled too.
        """
        task = asyncio.ensure_future(awaitable)
        if self.is_set:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            return None

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            return None
        return task.result()

    async def sleep(self, delay: float) -> bool:
        """Sleep for *delay* seconds. Returns ``True`` if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
