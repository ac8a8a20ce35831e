"""Tests for the dispatch queue."""
import asyncio

import pytest

from eve_inventory.client.rate_limiter import DispatchQueue
from factories import FakeClock


class TestDispatchQueue:
    """Tests for DispatchQueue admission pacing and ordering."""

    @pytest.mark.asyncio
    async def test_rolling_window_budget(self):
        clock = FakeClock()
        queue = DispatchQueue(rate=150, period=1.0, clock=clock, sleep=clock.sleep)
        admitted_at = []
        order = []

        async def request(i):
            await queue.acquire()
            admitted_at.append(clock())
            order.append(i)

        await asyncio.gather(*(request(i) for i in range(1000)))

        assert queue.admitted == 1000
        assert len(admitted_at) == 1000
        # Windows are half-open: admission 151 is at least one period after admission 1.
        for i in range(len(admitted_at) - 150):
            assert admitted_at[i + 150] - admitted_at[i] >= 1.0 - 1e-9
        assert order == list(range(1000))
        assert clock.now >= 6.0

    @pytest.mark.asyncio
    async def test_burst_after_idle_does_not_wait(self):
        clock = FakeClock()
        queue = DispatchQueue(rate=3, period=1.0, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            await queue.acquire()
        assert clock.sleeps == []

        await queue.acquire()
        assert clock.sleeps == [1.0]

        clock.now += 5.0
        for _ in range(3):
            await queue.acquire()
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_context_manager(self):
        queue = DispatchQueue(rate=5)
        async with queue:
            pass
        assert queue.admitted == 1

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            DispatchQueue(rate=0)

    @pytest.mark.asyncio
    async def test_window_is_half_open(self):
        clock = FakeClock()
        queue = DispatchQueue(rate=2, period=1.0, clock=clock, sleep=clock.sleep)
        admitted_at = []

        for _ in range(5):
            await queue.acquire()
            admitted_at.append(clock())

        assert admitted_at == [0.0, 0.0, 1.0, 1.0, 2.0]
        for start in admitted_at:
            in_window = [t for t in admitted_at if start <= t < start + 1.0]
            assert len(in_window) <= 2
