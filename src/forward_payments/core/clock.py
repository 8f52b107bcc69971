"""
Cancellable periodic triggers that drive a payment session.
"""

from __future__ import annotations

import abc
import asyncio
import itertools
import logging
from typing import Awaitable, Callable, List, Optional

__all__ = [
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "SessionClock",
    "TaskHandle",
]

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class TaskHandle(abc.ABC):
    """Handle to a periodic task. ``cancel`` may be called any number of times."""

    @property
    @abc.abstractmethod
    def cancelled(self) -> bool:
        ...

    @abc.abstractmethod
    def cancel(self) -> None:
        ...


class Scheduler(abc.ABC):
    @abc.abstractmethod
    def time(self) -> float:
        """Monotonic time in seconds."""

    @abc.abstractmethod
    def every(
        self,
        interval: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> TaskHandle:
        """
        Run ``callback`` every ``interval`` seconds, first after one interval.

        A callback is awaited before the next run is timed, so a single task
        never overlaps itself.
        """


class _AsyncioHandle(TaskHandle):
    def __init__(self) -> None:
        self._cancelled = False
        self.task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        # A callback cancelling its own task must not interrupt itself; the
        # loop notices the flag once the callback returns.
        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()


class AsyncioScheduler(Scheduler):
    """Runs each periodic task as an :class:`asyncio.Task` on the running loop."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    def every(
        self,
        interval: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> TaskHandle:
        handle = _AsyncioHandle()
        loop = asyncio.get_running_loop()
        handle.task = loop.create_task(self._run(handle, interval, callback), name=name)
        return handle

    @staticmethod
    async def _run(handle: _AsyncioHandle, interval: float, callback: Callback) -> None:
        while not handle.cancelled:
            await asyncio.sleep(interval)
            if handle.cancelled:
                break
            try:
                await callback()
            except Exception:  # noqa: BLE001
                logger.exception("Periodic callback %r failed", callback)


class _ManualEntry(TaskHandle):
    def __init__(self, order: int, interval: float, callback: Callback, due: float) -> None:
        self.order = order
        self.interval = interval
        self.callback = callback
        self.due = due
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler(Scheduler):
    """
    Virtual-time scheduler. Nothing runs until :meth:`advance` is awaited.

    Due callbacks fire in time order (ties in registration order) and each is
    awaited to completion before the next one runs.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._entries: List[_ManualEntry] = []
        self._order = itertools.count()

    def time(self) -> float:
        return self.now

    def every(
        self,
        interval: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        entry = _ManualEntry(next(self._order), interval, callback, self.now + interval)
        self._entries.append(entry)
        return entry

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._entries if not entry.cancelled)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            self._entries = [entry for entry in self._entries if not entry.cancelled]
            due = [entry for entry in self._entries if entry.due <= target]
            if not due:
                break
            entry = min(due, key=lambda item: (item.due, item.order))
            self.now = entry.due
            entry.due += entry.interval
            await entry.callback()
        self.now = max(self.now, target)


class SessionClock:
    """
    Countdown and poll triggers for one waiting period of a session.

    Both triggers are armed and cancelled together.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        poll_interval: float,
        tick_interval: float = 1.0,
    ) -> None:
        self.scheduler = scheduler
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval
        self._handles: List[TaskHandle] = []

    @property
    def armed(self) -> bool:
        return any(not handle.cancelled for handle in self._handles)

    def arm(self, on_tick: Callback, on_poll: Callback) -> None:
        if self.armed:
            raise RuntimeError("clock is already armed")
        self._handles = [
            self.scheduler.every(self.tick_interval, on_tick, name="session-countdown"),
            self.scheduler.every(self.poll_interval, on_poll, name="session-poll"),
        ]

    def cancel(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles = []
