import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator


class RateLimiter:
    """Token bucket for upstream requests.

    One bucket is shared by all requests of a client, so concurrent batch
    chunks still respect the provider's per-second quota. ``throttled``
    counts how often a caller had to sleep for a token.
    """

    def __init__(self, rate: float, burst: float = None):
        self._rate = max(rate, 0.1)
        self._capacity = max(burst if burst is not None else self._rate, 1.0)
        self._tokens = self._capacity
        self._updated = time.monotonic()
        self._lock = asyncio.Lock()
        self.throttled = 0

    @property
    def rate(self) -> float:
        return self._rate

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self._capacity, self._tokens + (now - self._updated) * self._rate)
        self._updated = now

    async def acquire(self) -> float:
        """Take one token, sleeping until one is available. Returns seconds waited."""
        async with self._lock:
            self._refill()
            waited = 0.0
            if self._tokens < 1:
                waited = (1 - self._tokens) / self._rate
                self.throttled += 1
                await asyncio.sleep(waited)
                self._refill()
            self._tokens = max(self._tokens - 1, 0.0)
            return waited

    @asynccontextmanager
    async def limit(self) -> AsyncIterator[float]:
        yield await self.acquire()
