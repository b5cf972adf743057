"""
Scheduler abstraction: the only place the engine touches real time.
"""

import asyncio
import inspect
import time
from typing import Any, Callable, Optional


class DelayedTask:
    """
    Handle for a callback scheduled with Scheduler.call_later.

    ``cancel()`` only stops the timer. Once the delay has elapsed, a
    coroutine returned by the callback runs as its own task and is left
    alone; callers that want it superseded do so through their own state.
    """

    def __init__(self) -> None:
        self._timer: Optional["asyncio.Future"] = None
        self._fired: Optional["asyncio.Future"] = None

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()

    @property
    def fired(self) -> bool:
        return self._timer is not None and self._timer.done() and not self._timer.cancelled()

    @property
    def cancelled(self) -> bool:
        return self._timer is not None and self._timer.cancelled()

    def done(self) -> bool:
        if self._timer is None or not self._timer.done():
            return False
        return self._fired is None or self._fired.done()

    async def wait(self) -> None:
        """Wait for the timer and the callback's coroutine, if any; a cancelled timer is not an error."""
        try:
            await self._timer
        except asyncio.CancelledError:
            return
        if self._fired is not None:
            await self._fired


class Scheduler:
    """
    Asyncio-backed timing.

    Tests subclass this and override ``sleep`` and ``monotonic``;
    ``call_later`` is built on ``sleep`` so it follows the override.
    """

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> DelayedTask:
        handle = DelayedTask()

        async def _run():
            await self.sleep(delay)
            result = callback()
            if inspect.isawaitable(result):
                handle._fired = asyncio.ensure_future(result)

        handle._timer = asyncio.ensure_future(_run())
        return handle
