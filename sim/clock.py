"""
Virtual-time scheduler.

Events are kept in a heap ordered by (time, sequence), so callbacks
scheduled for the same instant fire in the order they were scheduled.
Cancelled events stay in the heap and are skipped when popped.
"""

import heapq
import itertools
from typing import Any, Callable, List, Optional, Tuple


class VirtualEvent:
    """Handle for a scheduled virtual-time callback."""

    __slots__ = ("time", "callback", "args", "_cancelled")

    def __init__(self, time: float, callback: Callable[..., Any], args: Tuple):
        self.time = time
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler:
    """
    Discrete-event scheduler with a virtual clock.

    Nothing runs until run() is called; time jumps straight to the next
    event.
    """

    def __init__(self, start_time: float = 0.0):
        self._now = start_time
        self._queue: List[Tuple[float, int, VirtualEvent]] = []
        self._sequence = itertools.count()
        self.events_run = 0

    def now(self) -> float:
        return self._now

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> VirtualEvent:
        """Run callback(*args) after delay virtual seconds."""
        return self.schedule_at(self._now + max(delay, 0.0), callback, *args)

    def schedule_at(self, time: float, callback: Callable[..., Any], *args: Any) -> VirtualEvent:
        """Run callback(*args) at an absolute virtual time (not in the past)."""
        event = VirtualEvent(max(time, self._now), callback, args)
        heapq.heappush(self._queue, (event.time, next(self._sequence), event))
        return event

    def pending(self) -> int:
        """Number of events still queued and not cancelled."""
        return sum(1 for _, _, event in self._queue if not event.cancelled())

    def run(self, until: Optional[float] = None) -> float:
        """
        Run events in time order.

        Args:
            until: Stop before any event later than this time and advance
                the clock to it (None runs until the queue is empty)

        Returns:
            Virtual time after running
        """
        while self._queue:
            time, _, event = self._queue[0]
            if until is not None and time > until:
                break
            heapq.heappop(self._queue)
            if event.cancelled():
                continue
            self._now = time
            self.events_run += 1
            event.callback(*event.args)

        if until is not None and until > self._now:
            self._now = until
        return self._now
