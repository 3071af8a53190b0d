"""Sliding-window rate limiter for outgoing requests.

Admits at most ``budget`` requests in any trailing ``interval`` seconds.
Admission checks and window updates are serialised on one asyncio.Lock, and
the caller at the head of the queue keeps the lock while it waits for the
oldest entry to leave the window, so requests are admitted in the order they
called ``admit()``.

Example usage:
    limiter = SlidingWindowRateLimiter(budget=100, interval=1.0)

    await limiter.admit()
    response = await transport.send(descriptor)

    # Or as a context manager:
    async with limiter.acquire():
        response = await transport.send(descriptor)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Awaitable, Callable, Deque, Optional, Tuple

from loguru import logger

from .cancellation import run_cancellable
from .errors import RateLimitMisconfigured

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


# Smallest sleep taken when the window is full; guarantees the clock moves
# past the oldest entry even when float rounding leaves it a hair short.
MIN_WAIT = 0.001

DEFAULT_INTERVAL = 1.0


class SlidingWindowRateLimiter:
    """Async rate limiter over a trailing time window.

    Attributes:
        budget: Maximum admissions in any window of ``interval`` seconds
        interval: Window width in seconds
    """

    def __init__(
        self,
        budget: int,
        interval: float = DEFAULT_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            budget: Requests admitted per interval (must be >= 1)
            interval: Window width in seconds (must be > 0)
            clock: Monotonic time source
            sleep: Coroutine used to wait

        Raises:
            RateLimitMisconfigured: If no request could ever be admitted
        """
        if isinstance(budget, bool) or not isinstance(budget, int) or budget < 1:
            raise RateLimitMisconfigured(budget, interval)
        if interval is None or interval <= 0:
            raise RateLimitMisconfigured(budget, interval)

        self.budget = budget
        self.interval = float(interval)
        self._clock = clock
        self._sleep = sleep
        self._window: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        """Drop timestamps that have left the trailing window."""
        while self._window and now - self._window[0] >= self.interval:
            self._window.popleft()

    def time_until_available(self) -> float:
        """Seconds until the next admission would be granted (0.0 if now)."""
        now = self._clock()
        self._evict(now)
        if len(self._window) < self.budget:
            return 0.0
        return max(self._window[0] + self.interval - now, 0.0)

    async def admit(self, cancel: Optional[asyncio.Event] = None) -> float:
        """Wait until a request may proceed, then record it.

        Args:
            cancel: Optional event that aborts the wait

        Returns:
            Seconds spent waiting

        Raises:
            Cancelled: If ``cancel`` is set while waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._window) < self.budget:
                    self._window.append(now)
                    break

                wait_time = max(self._window[0] + self.interval - now, MIN_WAIT)
                logger.debug(
                    f"Rate limit reached ({len(self._window)}/{self.budget} in "
                    f"{self.interval}s). Waiting {wait_time:.3f}s"
                )
                await run_cancellable(self._sleep(wait_time), cancel)
                waited += wait_time

        return waited

    @asynccontextmanager
    async def acquire(self, cancel: Optional[asyncio.Event] = None) -> "AsyncIterator[float]":
        """Context manager form of ``admit()``; yields the time waited."""
        waited = await self.admit(cancel)
        yield waited

    @property
    def in_window(self) -> int:
        """Number of admissions inside the current window."""
        self._evict(self._clock())
        return len(self._window)

    def snapshot(self) -> Tuple[float, ...]:
        """Admission timestamps currently inside the window, oldest first."""
        self._evict(self._clock())
        return tuple(self._window)

    def reset(self) -> None:
        """Forget all recorded admissions."""
        self._window.clear()
        logger.debug("Rate limit window reset")


__all__ = [
    "SlidingWindowRateLimiter",
    "DEFAULT_INTERVAL",
]
