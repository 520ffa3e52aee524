"""Unit tests for the uniform-latency floor."""

import pytest

from gifts.auth.latency import uniform_latency


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.slept: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += seconds


class TestUniformLatency:
    async def test_pads_fast_success(self):
        t = FakeTime()
        async with uniform_latency(650, clock=t.clock, sleep=t.sleep):
            t.now += 0.1
        assert t.slept == [pytest.approx(0.55)]

    async def test_pads_failures_too(self):
        t = FakeTime()
        with pytest.raises(ValueError):
            async with uniform_latency(650, clock=t.clock, sleep=t.sleep):
                raise ValueError("bad code")
        assert t.slept == [pytest.approx(0.65)]

    async def test_slow_block_is_not_padded(self):
        t = FakeTime()
        async with uniform_latency(650, clock=t.clock, sleep=t.sleep):
            t.now += 1.0
        assert t.slept == []

    async def test_zero_floor(self):
        t = FakeTime()
        async with uniform_latency(0, clock=t.clock, sleep=t.sleep):
            pass
        assert t.slept == []
