"""Timer scheduling for batch windows and debounce timers.

Both batchers only need "run this callback after N seconds, unless
cancelled". The Scheduler interface captures exactly that, so production code
runs on the asyncio loop while tests drive a ManualScheduler clock:

    scheduler = ManualScheduler()
    batcher = SubscriptionBatcher(callback, scheduler, window=1.0)
    batcher.add(event)
    await scheduler.advance(1.0)  # window elapses, batch delivered

A callback may return an awaitable; it is then run as a task (asyncio) or
awaited in place (manual).
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[Any] | None]


class CancelToken:
    """Handle for a scheduled callback."""

    def __init__(self) -> None:
        self.cancelled = False
        self.fired = False
        self._handle: asyncio.TimerHandle | None = None

    @property
    def active(self) -> bool:
        """True until the callback fires or is cancelled."""
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        """Prevent the callback from running. Idempotent."""
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class Scheduler(ABC):
    """Abstract one-shot timer scheduler."""

    @abstractmethod
    def after(self, delay: float, callback: TimerCallback) -> CancelToken:
        """Run callback once after delay seconds."""
        pass

    @abstractmethod
    def now(self) -> float:
        """Current scheduler time in seconds."""
        pass


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def now(self) -> float:
        return time.monotonic()

    def after(self, delay: float, callback: TimerCallback) -> CancelToken:
        loop = self._loop or asyncio.get_running_loop()
        token = CancelToken()
        token._handle = loop.call_later(max(delay, 0.0), self._fire, token, callback)
        return token

    def _fire(self, token: CancelToken, callback: TimerCallback) -> None:
        if token.cancelled:
            return
        token.fired = True
        token._handle = None

        try:
            result = callback()
        except Exception:
            logger.exception("Timer callback failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Timer task failed: {task.exception()}")

    @property
    def running_tasks(self) -> int:
        """Awaitable callbacks still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for awaitable callbacks that are still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@dataclass(order=True)
class _Timer:
    due: float
    seq: int
    token: CancelToken = field(compare=False)
    callback: TimerCallback = field(compare=False)


class ManualScheduler(Scheduler):
    """Deterministic scheduler with a manually advanced clock."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._timers: list[_Timer] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def after(self, delay: float, callback: TimerCallback) -> CancelToken:
        token = CancelToken()
        timer = _Timer(
            due=self._now + max(delay, 0.0),
            seq=next(self._seq),
            token=token,
            callback=callback,
        )
        heapq.heappush(self._timers, timer)
        return token

    @property
    def pending_timers(self) -> int:
        """Timers scheduled and not yet cancelled or fired."""
        return sum(1 for timer in self._timers if timer.token.active)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running due callbacks in time order.

        Callbacks scheduled by other callbacks run too if they fall due
        within the advanced interval.
        """
        target = self._now + seconds
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            if timer.token.cancelled:
                continue
            self._now = timer.due
            timer.token.fired = True

            try:
                result = timer.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Timer callback failed")

        self._now = target
