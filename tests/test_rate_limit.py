"""Tests for RollingWindowLimiter."""

import asyncio

import pytest

from crewflow.core.rate_limit import RollingWindowLimiter


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class TestRollingWindowLimiter:
    @pytest.mark.asyncio
    async def test_unlimited_never_waits(self):
        limiter = RollingWindowLimiter(None)
        for _ in range(1000):
            assert await limiter.acquire() == 0.0

    @pytest.mark.asyncio
    async def test_within_budget_no_wait(self):
        t = FakeTime()
        limiter = RollingWindowLimiter(3, 60.0, clock=t.clock, sleep=t.sleep)
        for _ in range(3):
            assert await limiter.acquire() == 0.0
        assert limiter.in_window == 3
        assert t.sleeps == []

    @pytest.mark.asyncio
    async def test_over_budget_waits_for_oldest_to_expire(self):
        t = FakeTime()
        limiter = RollingWindowLimiter(2, 60.0, clock=t.clock, sleep=t.sleep)
        await limiter.acquire()
        t.now = 10.0
        await limiter.acquire()
        t.now = 20.0
        waited = await limiter.acquire()
        assert waited == pytest.approx(40.0)
        assert t.now == pytest.approx(60.0)
        assert limiter.in_window == 2

    @pytest.mark.asyncio
    async def test_calls_are_delayed_not_dropped(self):
        t = FakeTime()
        limiter = RollingWindowLimiter(1, 1.0, clock=t.clock, sleep=t.sleep)
        results = await asyncio.gather(*(limiter.acquire() for _ in range(5)))
        assert len(results) == 5
        assert t.now == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_window_expiry_frees_budget(self):
        t = FakeTime()
        limiter = RollingWindowLimiter(1, 60.0, clock=t.clock, sleep=t.sleep)
        await limiter.acquire()
        t.now = 61.0
        assert limiter.in_window == 0
        assert await limiter.acquire() == 0.0

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RollingWindowLimiter(0)
        with pytest.raises(ValueError):
            RollingWindowLimiter(5, window=0)
