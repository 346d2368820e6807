"""Phase timers: a scheduler port and its asyncio implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Runs an async callback once after *delay* seconds."""

    def schedule(self, delay: float, callback: TimerCallback) -> TimerHandle: ...


class AsyncioTimer:
    """Handle for a callback armed on the running event loop."""

    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """Default scheduler backed by ``loop.call_later``.

    The callback runs in its own task; references are held until the
    task finishes so it cannot be garbage-collected mid-flight.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def schedule(self, delay: float, callback: TimerCallback) -> AsyncioTimer:
        loop = asyncio.get_running_loop()
        timer = AsyncioTimer()
        timer._handle = loop.call_later(delay, self._spawn, timer, callback)
        return timer

    def _spawn(self, timer: AsyncioTimer, callback: TimerCallback) -> None:
        if timer.cancelled():
            return
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Timer callback raised", exc_info=task.exception())
