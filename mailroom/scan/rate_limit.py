"""Minimum spacing between smart-match calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable


class CallRateLimiter:
    """
    Hands out call slots at least ``min_interval`` seconds apart.

    The slot is reserved before awaiting, so captures started together queue
    up behind each other instead of all reading the same "last call" time.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_slot: float | None = None

    def reserve(self) -> float:
        """Claim the next slot; returns how long the caller must wait for it."""
        now = self._clock()
        slot = now if self._last_slot is None else max(now, self._last_slot + self.min_interval)
        self._last_slot = slot
        return slot - now

    async def acquire(self) -> None:
        wait = self.reserve()
        if wait > 0:
            await self._sleep(wait)
