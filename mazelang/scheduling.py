"""Cooperative schedulers for the interactive executor.

A scheduler arms exactly one pending callback at a time for the executor and must
support cancelling it, so that pause()/stop() can never be followed by a stale
resume.
"""
from __future__ import annotations
import asyncio
import itertools
from typing import Any, Callable, Dict, Optional, Protocol


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Any: ...
    def cancel(self, handle: Any) -> None: ...


class AsyncioScheduler:
    """Schedules steps on an asyncio event loop (timer-driven animation)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class ManualScheduler:
    """Holds pending callbacks until the host signals that a step completed.

    Hosts driving animations call fire() when the current animation ends.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.pending: Dict[int, Callable[[], None]] = {}
        self.delays: Dict[int, float] = {}

    def call_later(self, delay: float, callback: Callable[[], None]) -> int:
        handle = next(self._ids)
        self.pending[handle] = callback
        self.delays[handle] = delay
        return handle

    def cancel(self, handle: int) -> None:
        self.pending.pop(handle, None)
        self.delays.pop(handle, None)

    def fire(self) -> bool:
        """Run the oldest pending callback. Returns False when nothing was pending."""
        if not self.pending:
            return False
        handle = min(self.pending)
        callback = self.pending.pop(handle)
        self.delays.pop(handle, None)
        callback()
        return True

    def run_all(self, limit: int = 100000) -> int:
        fired = 0
        while fired < limit and self.fire():
            fired += 1
        return fired
