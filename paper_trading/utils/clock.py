"""Injectable clocks for the simulation.

The engine never reads wall-clock time or calls ``asyncio.sleep`` directly.
``SystemClock`` is used in real sessions; ``VirtualClock`` lets tests and the
CLI advance time deterministically.
"""
import asyncio
import heapq
import itertools
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Tuple


class Clock(Protocol):
    """Time source used by the engine, scheduler and simulator."""

    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Real time: UTC wall clock and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


class VirtualClock:
    """
    Deterministic clock for tests and offline sessions.

    Sleepers wait on a heap ordered by deadline. Each loop iteration the
    earliest sleeper is woken and time jumps to its deadline, so concurrent
    sleeps overlap the way real ones do: ten coroutines sleeping one second
    each finish one virtual second later, not ten. ``advance`` moves time by
    hand and wakes every sleeper that has come due.
    """

    DEFAULT_START = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __init__(self, start: Optional[datetime] = None):
        start = start or self.DEFAULT_START
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start
        self._sleepers: List[Tuple[datetime, int, asyncio.Future]] = []
        self._order = itertools.count()
        self._wake_scheduled = False

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move virtual time forward and return the new time."""
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now = self._now + timedelta(seconds=seconds)
        while self._sleepers and self._sleepers[0][0] <= self._now:
            _, _, waiter = heapq.heappop(self._sleepers)
            if not waiter.done():
                waiter.set_result(None)
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        deadline = self._now + timedelta(seconds=seconds)
        heapq.heappush(self._sleepers, (deadline, next(self._order), waiter))
        if not self._wake_scheduled:
            self._wake_scheduled = True
            loop.call_soon(self._wake_next)
        await waiter

    def _wake_next(self) -> None:
        self._wake_scheduled = False
        while self._sleepers:
            deadline, _, waiter = heapq.heappop(self._sleepers)
            if waiter.done():
                # Cancelled while asleep
                continue
            self._now = max(self._now, deadline)
            waiter.set_result(None)
            break

        if self._sleepers:
            self._wake_scheduled = True
            asyncio.get_running_loop().call_soon(self._wake_next)
