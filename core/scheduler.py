"""
Scheduling primitive shared by all roles.

Roles never sleep or block. They ask a scheduler to run a callback after a
delay and keep the returned handle so the callback can be cancelled. Two
implementations exist: AsyncioScheduler here for real processes, and
sim.clock.VirtualScheduler for virtual-time simulation.
"""

import asyncio
from typing import Any, Callable, Optional, Protocol


class EventHandle(Protocol):
    """Handle for a scheduled callback."""

    def cancel(self) -> None:
        ...

    def cancelled(self) -> bool:
        ...


class Scheduler(Protocol):
    """Schedule callback C to fire after delay D, cancelable."""

    def now(self) -> float:
        ...

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> EventHandle:
        ...


class AsyncioScheduler:
    """
    Scheduler backed by an asyncio event loop.

    Times are reported relative to the moment the scheduler was created so
    log lines read like the simulation's virtual clock.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Initialize the scheduler.

        Args:
            loop: Event loop to schedule on (defaults to the running loop)
        """
        self.loop = loop or asyncio.get_running_loop()
        self._origin = self.loop.time()

    def now(self) -> float:
        """Seconds elapsed since the scheduler was created."""
        return self.loop.time() - self._origin

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        """
        Run callback(*args) after delay seconds.

        Args:
            delay: Delay in seconds (negative values are treated as zero)
            callback: Callable to invoke
            *args: Positional arguments for the callback

        Returns:
            asyncio.TimerHandle, which supports cancel() and cancelled()
        """
        return self.loop.call_later(max(delay, 0.0), callback, *args)
