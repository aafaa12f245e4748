"""
Async rate limiter spacing requests evenly over time
"""
import asyncio
import time


class RateLimiter:
    """
    Admits at most ``requests_per_second`` acquisitions per second.

    Callers over budget wait for their slot instead of failing. Slots are
    handed out in arrival order. A rate of 0 disables limiting.
    """

    def __init__(self, requests_per_second: float, name: str = "default"):
        if requests_per_second < 0:
            raise ValueError("requests_per_second cannot be negative")
        self.name = name
        self.requests_per_second = requests_per_second
        self._interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._next_slot = 0.0

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    def reserve(self) -> float:
        """Reserve the next free slot and return how long to wait for it"""
        now = time.monotonic()
        slot = max(now, self._next_slot)
        self._next_slot = slot + self._interval
        return slot - now

    async def acquire(self):
        if not self.enabled:
            return
        # reserve() never yields, so concurrent callers get distinct slots
        delay = self.reserve()
        if delay > 0:
            await asyncio.sleep(delay)

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False
