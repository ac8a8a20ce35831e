"""Request pacing for ESI."""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque

from ..utils.constants import DEFAULT_REQUESTS_PER_SECOND


class DispatchQueue:
    """
    Global FIFO admission queue.

    Admits at most ``rate`` requests in any half-open window
    ``[t, t + period)``: a request may pass exactly ``period`` after the
    oldest admission it displaces. Requests are released in arrival order;
    up to ``rate`` may pass at once after an idle spell, after which
    admissions are paced by the oldest one in the window.
    """

    def __init__(
        self,
        rate: int = DEFAULT_REQUESTS_PER_SECOND,
        period: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate < 1:
            raise ValueError("rate must be at least 1")
        self.rate = rate
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._admissions: Deque[float] = deque(maxlen=rate)
        self._lock = asyncio.Lock()
        self.admitted = 0

    async def acquire(self) -> None:
        """Wait for this request's turn."""
        async with self._lock:
            if len(self._admissions) >= self.rate:
                wait = self._admissions[0] + self.period - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._admissions.append(self._clock())
            self.admitted += 1

    async def __aenter__(self) -> "DispatchQueue":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None
