"""
Tests for the bounded concurrency limiter.
"""

from __future__ import annotations

import asyncio

import pytest

from dr.concurrency import ConcurrencyLimiter


class TestLimiterBound:
    """In-flight count never exceeds the limit."""

    @pytest.mark.asyncio
    async def test_never_more_than_max_in_flight(self) -> None:
        limiter = ConcurrencyLimiter(3)
        in_flight = 0
        peak = 0

        async def work() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await asyncio.gather(*(limiter.run(work) for _ in range(10)))

        assert peak == 3
        assert limiter.active == 0
        assert limiter.pending == 0

    @pytest.mark.asyncio
    async def test_limit_of_one_is_serial(self) -> None:
        limiter = ConcurrencyLimiter(1)
        log: list[str] = []

        async def work(name: str) -> None:
            log.append(f"start {name}")
            await asyncio.sleep(0)
            log.append(f"end {name}")

        await asyncio.gather(*(limiter.run(lambda n=n: work(n)) for n in "abc"))

        assert log == ["start a", "end a", "start b", "end b", "start c", "end c"]

    def test_rejects_non_positive_limit(self) -> None:
        with pytest.raises(ValueError):
            ConcurrencyLimiter(0)


class TestLimiterOrdering:
    """Queued tasks start in submission order."""

    @pytest.mark.asyncio
    async def test_fifo_start_order(self) -> None:
        limiter = ConcurrencyLimiter(2)
        started: list[int] = []
        gates = [asyncio.Event() for _ in range(6)]

        async def work(i: int) -> int:
            started.append(i)
            await gates[i].wait()
            return i

        tasks = [asyncio.create_task(limiter.run(lambda i=i: work(i))) for i in range(6)]
        await asyncio.sleep(0)
        assert started == [0, 1]
        assert limiter.pending == 4

        # Release out of order; queued tasks must still start 2, 3, 4, 5
        for i in (1, 0, 3, 2, 5, 4):
            gates[i].set()
            await asyncio.sleep(0.01)

        assert await asyncio.gather(*tasks) == list(range(6))
        assert started == [0, 1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_leak_slot(self) -> None:
        limiter = ConcurrencyLimiter(1)
        gate = asyncio.Event()

        async def hold() -> None:
            await gate.wait()

        holder = asyncio.create_task(limiter.run(hold))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(limiter.run(hold))
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        gate.set()
        await holder
        assert limiter.active == 0
        assert await limiter.run(lambda: asyncio.sleep(0, result="ok")) == "ok"


class TestLimiterErrors:
    """A failing task affects only its own caller."""

    @pytest.mark.asyncio
    async def test_exception_propagates_to_its_caller_only(self) -> None:
        limiter = ConcurrencyLimiter(2)

        async def boom() -> None:
            raise RuntimeError("boom")

        async def fine() -> str:
            await asyncio.sleep(0)
            return "ok"

        results = await asyncio.gather(
            limiter.run(boom), limiter.run(fine), limiter.run(fine), return_exceptions=True
        )

        assert isinstance(results[0], RuntimeError)
        assert results[1:] == ["ok", "ok"]
        assert limiter.active == 0
