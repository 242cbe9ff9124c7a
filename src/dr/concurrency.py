"""
Bounded concurrency limiter.

A counting semaphore with an explicit FIFO wait queue: at most
``max_concurrent`` submitted tasks are in flight, the rest start strictly in
submission order as slots free up.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """Runs async units of work with at most ``max_concurrent`` in flight.

    A task's exception propagates only to its own ``run`` call. Freed slots are
    handed directly to the oldest waiter so a late submitter can never start
    ahead of an earlier one.

    Example:
        limiter = ConcurrencyLimiter(3)
        results = await asyncio.gather(*(limiter.run(lambda s=s: work(s)) for s in items))
    """

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")
        self._max = max_concurrent
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def active(self) -> int:
        """Number of tasks currently in flight."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of submissions waiting for a slot."""
        return sum(1 for w in self._waiters if not w.done())

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` once a slot is free.

        Args:
            task: Zero-argument callable returning an awaitable.

        Returns:
            Whatever the task returns. Exceptions are re-raised unchanged.
        """
        await self._acquire()
        try:
            return await task()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._active < self._max and not self._waiters:
            self._active += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was already handed over; pass it on
                self._release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand the slot over; the active count is unchanged
                waiter.set_result(None)
                return
        self._active -= 1
