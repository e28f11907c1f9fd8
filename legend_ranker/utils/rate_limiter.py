"""Rate limiting utilities to respect API limits."""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable


class RateLimiter:
    """Sliding-window limiter for coroutine callers.

    At most ``calls_per_minute`` acquisitions are granted in any 60 second
    window; callers over the limit sleep until the oldest call ages out.
    """

    def __init__(
        self,
        calls_per_minute: int = 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.calls_per_minute = calls_per_minute
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Suspend until a request is allowed."""
        async with self._lock:
            now = self._clock()
            # Remove timestamps older than 60 seconds
            while self._timestamps and now - self._timestamps[0] > 60:
                self._timestamps.popleft()
            if len(self._timestamps) >= self.calls_per_minute:
                sleep_time = 60 - (now - self._timestamps[0])
                if sleep_time > 0:
                    await self._sleep(sleep_time)
                self._timestamps.popleft()
            self._timestamps.append(self._clock())
