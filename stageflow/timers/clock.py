"""
Timer Clocks

Provides:
- Clock interface (milliseconds, call_later)
- LoopClock backed by the running asyncio loop
- ManualClock with virtual time for tests
"""

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple


class TimerHandle:
    """Cancellable handle for a scheduled callback"""

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()


class Clock(ABC):
    """Time source and scheduler used by the timer manager"""

    @abstractmethod
    def now(self) -> float:
        """Current time in milliseconds"""

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback after delay_ms"""


class LoopClock(Clock):
    """Clock backed by the running asyncio event loop"""

    def now(self) -> float:
        return asyncio.get_running_loop().time() * 1000

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = TimerHandle(loop.time() * 1000 + delay_ms, callback)
        handle._loop_handle = loop.call_later(max(delay_ms, 0) / 1000, callback)
        return handle


class ManualClock(Clock):
    """
    Virtual clock advanced explicitly

    Callbacks run synchronously inside advance(), in fire-time order.
    Callbacks scheduled at the same time run in scheduling order.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now + max(delay_ms, 0), callback)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def next_due(self) -> Optional[float]:
        """Fire time of the earliest pending callback"""
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0][0] if self._queue else None

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def advance_to(self, when: float) -> int:
        """Move time forward to when, running due callbacks; returns count run"""
        fired = 0
        while True:
            due = self.next_due()
            if due is None or due > when:
                break
            _, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, handle.when)
            handle.callback()
            fired += 1
        self._now = max(self._now, when)
        return fired

    def advance(self, ms: float) -> int:
        return self.advance_to(self._now + ms)
