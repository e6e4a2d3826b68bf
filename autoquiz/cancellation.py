"""
Cancellation Module
Explicit cancellation token threaded through every pipeline call.
"""

import asyncio
import inspect
from typing import Any, Awaitable

from .errors import CancelledByUser


class CancellationToken:
    """
    Shared stop signal for one run.

    Every blocking step either checks the token (raise_if_cancelled), sleeps on it
    (sleep) or races its awaitable against it (run).
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancelledByUser("任务已取消")

    async def sleep(self, seconds: float):
        """Sleep for `seconds`, waking early (and raising) when cancelled."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise CancelledByUser("任务已取消")

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        """Await `awaitable` unless the token fires first; the loser is cancelled."""
        if self._event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise CancelledByUser("任务已取消")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not waiter.done():
                waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        try:
            await work
        except (asyncio.CancelledError, Exception):
            pass
        raise CancelledByUser("任务已取消")
