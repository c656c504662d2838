"""
Sliding-window request pacing for one provider.

``RateLimitedQueue.enqueue(task)`` runs ``task`` once fewer than
``requests_per_minute`` tasks have *started* within the preceding window
(60 s).  Tasks run one at a time, in submission order: an ``asyncio.Lock``
(FIFO for waiters) is held from the slot wait until the task finishes.

The queue never fails a task on its own; whatever ``task`` raises reaches the
caller of ``enqueue`` unchanged.

Clock and sleep are injectable so tests can drive a fake timeline::

    queue = RateLimitedQueue(20, clock=fake.now, sleep=fake.sleep)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

WINDOW_SECONDS = 60.0


class RateLimitedQueue:
    """Serial FIFO executor with a sliding-window start-rate cap.

    Args:
        requests_per_minute: Maximum task starts per window.
        window_seconds: Window length; 60 s unless a test shortens it.
        clock: Monotonic seconds.
        sleep: Awaitable sleep used while waiting for a slot.
        name: Label for log lines (usually the provider id).
    """

    def __init__(
        self,
        requests_per_minute: int = 20,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "provider",
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError(f"requests_per_minute must be >= 1, got {requests_per_minute}.")
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Tasks submitted but not yet started."""
        return self._pending

    @property
    def recent_starts(self) -> list[float]:
        """Start times still inside the current window, oldest first."""
        self._evict(self._clock())
        return list(self._starts)

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` when the window allows and return its result."""
        self._pending += 1
        started = False
        try:
            async with self._lock:
                await self._wait_for_slot()
                self._pending -= 1
                started = True
                self._starts.append(self._clock())
                return await task()
        finally:
            if not started:
                self._pending -= 1

    async def _wait_for_slot(self) -> None:
        while True:
            now = self._clock()
            self._evict(now)
            if len(self._starts) < self.requests_per_minute:
                return
            delay = self._starts[0] + self.window_seconds - now
            logger.debug(
                "[%s] %d requests in the last %.0fs; waiting %.2fs",
                self.name, len(self._starts), self.window_seconds, delay,
            )
            await self._sleep(max(delay, 0.0))

    def _evict(self, now: float) -> None:
        # A start exactly one window ago no longer counts.
        cutoff = now - self.window_seconds
        while self._starts and self._starts[0] <= cutoff:
            self._starts.popleft()
