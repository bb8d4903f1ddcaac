"""Serialized request queue with a minimum delay between requests.

Space-Track allows 30 requests per minute and CelesTrak asks clients not to
hammer its feeds, so every outbound request to a source goes through one
``RequestQueue``. Callers queue on an asyncio lock; the holder waits out the
remaining delay, stamps the request time, and runs the blocking call in a
worker thread. Two requests can never be closer than ``min_delay`` because
only the lock holder reads or writes the last request time.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MIN_DELAY = 2.0
"""Seconds between requests to the same source."""


class RequestQueue:
    """FIFO request serializer for one source.

    Args:
        min_delay: Minimum seconds between the start of consecutive requests.
        clock: Monotonic clock, injectable for tests.
        sleep: Coroutine used to wait, injectable for tests.
    """

    def __init__(
        self,
        min_delay: float = DEFAULT_MIN_DELAY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_delay < 0:
            raise ValueError(f"min_delay must be >= 0, got {min_delay}")
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._lock: Optional[asyncio.Lock] = None
        self._last_request: Optional[float] = None

    async def _wait_turn(self) -> None:
        """Respect the minimum delay. Only called while holding the lock."""
        if self._last_request is not None:
            elapsed = self._clock() - self._last_request
            if elapsed < self.min_delay:
                delay = self.min_delay - elapsed
                logger.debug("Rate limit: waiting %.2fs", delay)
                await self._sleep(delay)
        self._last_request = self._clock()

    async def submit(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run blocking ``fn(*args, **kwargs)`` in a thread once it is our turn."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            await self._wait_turn()
            return await asyncio.to_thread(fn, *args, **kwargs)
