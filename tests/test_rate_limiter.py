"""Tests for the sliding window rate limiter and exponential backoff."""

import pytest

from age_verifier.config import Config
from age_verifier.rate_limiter import SlidingWindowRateLimiter, ExponentialBackoff


class FakeTime:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


def limiter(fake, windows, min_interval=0.0):
    return SlidingWindowRateLimiter(
        windows=windows, min_interval=min_interval, clock=fake.clock, sleep=fake.sleep
    )


class TestSlidingWindowRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_burst_within_limit(self):
        fake = FakeTime()
        rl = limiter(fake, [(3, 1.0)])

        for _ in range(3):
            assert await rl.acquire()

        assert fake.sleeps == []
        assert rl.get_stats()['current_1s_count'] == 3

    @pytest.mark.asyncio
    async def test_waits_when_window_full(self):
        fake = FakeTime()
        rl = limiter(fake, [(2, 1.0)])

        await rl.acquire()
        fake.now = 0.25
        await rl.acquire()
        await rl.acquire()

        assert fake.sleeps == [pytest.approx(0.75)]
        assert fake.now == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_strictest_window_wins(self):
        fake = FakeTime()
        rl = limiter(fake, [(2, 10.0), (5, 1.0)])

        await rl.acquire()
        await rl.acquire()
        await rl.acquire()

        assert fake.now == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_min_interval(self):
        fake = FakeTime()
        rl = limiter(fake, [(100, 60.0)], min_interval=0.25)

        await rl.acquire()
        await rl.acquire()

        assert fake.sleeps == [pytest.approx(0.25)]

    @pytest.mark.asyncio
    async def test_timeout(self):
        fake = FakeTime()
        rl = limiter(fake, [(1, 60.0)])

        assert await rl.acquire()
        assert await rl.acquire(timeout=5.0) is False
        assert rl.get_stats()['requests_blocked'] == 1

    @pytest.mark.asyncio
    async def test_reset(self):
        fake = FakeTime()
        rl = limiter(fake, [(1, 60.0)])
        await rl.acquire()

        rl.reset()

        assert await rl.acquire(timeout=0)
        assert rl.get_stats()['total_requests'] == 1

    def test_from_config(self):
        config = Config(rate_limit_per_minute=30, rate_limit_per_10s=10, rate_limit_per_1s=2,
                        min_request_interval=0.5)
        rl = SlidingWindowRateLimiter.from_config(config)
        assert rl.windows == [(30, 60.0), (10, 10.0), (2, 1.0)]
        assert rl.min_interval == 0.5


class TestExponentialBackoff:
    def test_delay_grows(self):
        backoff = ExponentialBackoff(base_delay=1.0, multiplier=2.0, jitter=False)
        delays = []
        for _ in range(4):
            delays.append(backoff.get_delay())
            backoff.current_attempt += 1
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_max_delay(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter=False)
        backoff.current_attempt = 10
        assert backoff.get_delay() == 5.0

    def test_rate_limited_delay_longer(self):
        backoff = ExponentialBackoff(base_delay=1.0, rate_limit_multiplier=4.0, jitter=False)
        assert backoff.get_delay(rate_limited=True) == 4.0

    def test_retry_after_floor(self):
        backoff = ExponentialBackoff(base_delay=1.0, jitter=False)
        assert backoff.get_delay(retry_after=30.0) == 30.0
        assert backoff.get_delay(retry_after=0.1) == 1.0

    def test_jitter_bounds(self):
        backoff = ExponentialBackoff(base_delay=4.0)
        for _ in range(20):
            assert 3.0 <= backoff.get_delay() <= 5.0

    @pytest.mark.asyncio
    async def test_wait_advances_attempt(self):
        fake = FakeTime()
        backoff = ExponentialBackoff(base_delay=1.0, jitter=False, sleep=fake.sleep)

        await backoff.wait()
        await backoff.wait()

        assert fake.sleeps == [1.0, 2.0]
        assert backoff.current_attempt == 2
        backoff.reset()
        assert backoff.current_attempt == 0
