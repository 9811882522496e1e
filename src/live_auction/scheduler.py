"""
Clock and timer abstractions.

Timed behavior reads the time through an injected clock and schedules
work through an injected scheduler, so tests can drive it without real
time passing. In production the asyncio implementation runs the poller
and the highlight sweep on one event loop, one timer each.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def system_clock() -> float:
    """Wall-clock seconds since the epoch (feed timestamps use the same base)."""
    return time.time()


class AsyncioScheduler:
    """Schedule callbacks (plain or coroutine functions) on the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        """
        Run callback after delay seconds.

        If the callback returns an awaitable it is run as a task on the
        same loop. The returned handle supports cancel().
        """
        loop = self._loop or asyncio.get_running_loop()

        def fire() -> None:
            result = callback()
            if inspect.isawaitable(result):
                task = loop.create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

        return loop.call_later(max(0.0, delay), fire)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Scheduled task failed", exc_info=task.exception())


class PeriodicTimer:
    """Re-arms itself on a scheduler every interval seconds until cancelled."""

    def __init__(self, scheduler, interval: float, callback: Callable[[], Any]):
        self.scheduler = scheduler
        self.interval = interval
        self.callback = callback
        self._handle = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._arm()

    def cancel(self) -> None:
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self) -> None:
        self._handle = self.scheduler.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if not self._active:
            return
        try:
            self.callback()
        except Exception as e:
            logger.error(f"Periodic callback {self.callback!r} failed: {e}", exc_info=True)
        if self._active:
            self._arm()
