"""
Two-tier wake-up timer for the round scheduler.

Rather than one sleep of several hours, the timer wakes every ping interval
and re-derives the remaining time from the wall clock, so process suspension
or clock drift only delays the final wake-up by at most one ping. Once the
remaining time drops to the ping interval or below, it sleeps exactly that
long and fires.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from compound_stake.logging import get_logger

logger = get_logger(__name__)


class ScheduleTimer:
    """
    Owned by one RoundScheduler. remaining is the last computed time to the
    target deadline (seconds). cancel() (or setting the shared stop event)
    ends a pending wait; wait_until() then returns False.

    sleep: injectable for tests; when omitted the timer waits on the stop event
    with a timeout so cancellation is immediate.
    """

    def __init__(
        self,
        ping_interval_sec: float,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        if ping_interval_sec <= 0:
            raise ValueError("ping_interval_sec must be positive")
        self._ping = float(ping_interval_sec)
        self._clock = clock
        self._sleep = sleep
        self._stop = stop_event or asyncio.Event()
        self.remaining: float | None = None

    def cancel(self) -> None:
        self._stop.set()

    async def wait_until(self, deadline: float) -> bool:
        """Block until the wall clock reaches deadline. True when fired, False when cancelled."""
        while True:
            self.remaining = deadline - self._clock()
            logger.info(
                "schedule_ping_check",
                ping_interval_sec=self._ping,
                remaining_sec=round(self.remaining, 3),
            )
            if self.remaining > self._ping:
                if not await self._sleep_or_stop(self._ping):
                    return False
                continue
            if not await self._sleep_or_stop(max(0.0, self.remaining)):
                return False
            return True

    async def _sleep_or_stop(self, seconds: float) -> bool:
        """False if stop was requested before or during the sleep."""
        if self._stop.is_set():
            return False
        if self._sleep is not None:
            await self._sleep(seconds)
            return not self._stop.is_set()
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
