"""
Cancellable delayed tasks.

The correlation engine never sleeps; it asks a Scheduler to call it back at
an absolute time (epoch ms).  ``ThreadingScheduler`` runs callbacks on
``threading.Timer`` threads against the wall clock.  ``VirtualScheduler``
keeps its own clock and fires callbacks only when advanced, which makes
event replay and tests deterministic.
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    """Handle to a scheduled callback."""

    __slots__ = ["when", "callback", "cancelled", "_timer"]

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self._timer: Optional[threading.Timer] = None

    def cancel(self):
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()

    def fire(self):
        if self.cancelled:
            return
        self.cancelled = True
        self.callback()


class Scheduler(ABC):
    """Clock plus cancellable delayed callbacks."""

    @abstractmethod
    def now(self) -> float:
        """Current time in epoch milliseconds."""

    @abstractmethod
    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` at absolute time ``when`` (ms)."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.call_at(self.now() + delay, callback)


class ThreadingScheduler(Scheduler):
    """Wall-clock scheduler backed by ``threading.Timer``."""

    def now(self) -> float:
        return time.time() * 1000.0

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(when, callback)
        delay = max(0.0, (when - self.now()) / 1000.0)
        timer = threading.Timer(delay, self._run, args=(handle,))
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle

    @staticmethod
    def _run(handle: TimerHandle):
        try:
            handle.fire()
        except Exception:
            logger.exception("Timer callback failed")


class VirtualScheduler(Scheduler):
    """Deterministic scheduler driven by :meth:`advance_to`."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(when, callback)
        heapq.heappush(self._queue, (when, next(self._counter), handle))
        return handle

    def advance_to(self, when: float) -> int:
        """Move the clock forward, firing due callbacks in time order."""
        fired = 0
        while self._queue and self._queue[0][0] <= when:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            handle.fire()
            fired += 1
        self._now = max(self._now, when)
        return fired

    def advance(self, delta: float) -> int:
        return self.advance_to(self._now + delta)

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)
