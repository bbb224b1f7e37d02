"""
Bounded-parallelism gate for asyncio tasks.

Usage:
    limiter = ConcurrencyLimiter(2)
    results = await asyncio.gather(*(limiter.run(lambda: work(i)) for i in range(10)))

At most `max_concurrent` calls run at once. Callers beyond that wait in arrival
order; when a call finishes its slot is handed straight to the oldest waiter, so
a newcomer can never jump the queue.
"""

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._running = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def running(self) -> int:
        return self._running

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn() once a slot is free. Its result or exception passes through."""
        await self._acquire()
        try:
            return await fn()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._running < self.max_concurrent and not self._waiters:
            self._running += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before the cancellation landed
                self._release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Slot passes to the waiter; running count is unchanged
                waiter.set_result(None)
                return
        self._running -= 1

    def get_stats(self) -> Dict[str, int]:
        return {"running": self._running, "queued": len(self._waiters)}
