"""Tests for the token bucket rate limiter and bucket reaper."""

import asyncio

import pytest

from pbgateway.app.services.rate_limiter import (
    BucketReaper,
    RatePolicy,
    TokenBucket,
    TokenBucketRateLimiter,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return TokenBucketRateLimiter(
        policy=RatePolicy(requests_per_minute=60, burst_capacity=10),
        idle_timeout=120.0,
        clock=clock,
    )


class TestTokenBucket:
    """Tests for admission decisions."""

    @pytest.mark.asyncio
    async def test_burst_of_twelve_admits_exactly_ten(self, limiter):
        """With burst 10 and no elapsed time, 10 admit and 2 reject."""
        results = [await limiter.admit("10.1.1.1") for _ in range(12)]

        assert results == [True] * 10 + [False] * 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("burst", [1, 3, 25])
    async def test_exactly_burst_requests_admitted(self, clock, burst):
        limiter = TokenBucketRateLimiter(
            policy=RatePolicy(requests_per_minute=60, burst_capacity=burst),
            clock=clock,
        )

        results = [await limiter.admit("client") for _ in range(burst + 5)]

        assert results.count(True) == burst
        assert results[:burst] == [True] * burst

    @pytest.mark.asyncio
    async def test_first_sight_creates_full_bucket(self, limiter):
        assert limiter.get_bucket("new") is None

        await limiter.admit("new")

        bucket = limiter.get_bucket("new")
        assert isinstance(bucket, TokenBucket)
        assert bucket.tokens == pytest.approx(9.0)

    @pytest.mark.asyncio
    async def test_refills_one_token_per_second(self, limiter, clock):
        for _ in range(10):
            await limiter.admit("client")
        assert await limiter.admit("client") is False

        clock.advance(1.0)
        assert await limiter.admit("client") is True
        assert await limiter.admit("client") is False

    @pytest.mark.asyncio
    async def test_fractional_refill_is_kept(self, limiter, clock):
        for _ in range(10):
            await limiter.admit("client")

        # Half a token is not enough on its own...
        clock.advance(0.5)
        assert await limiter.admit("client") is False
        assert limiter.get_bucket("client").tokens == pytest.approx(0.5)

        # ...but it is not lost either
        clock.advance(0.5)
        assert await limiter.admit("client") is True

    @pytest.mark.asyncio
    async def test_rejection_never_drives_tokens_negative(self, limiter):
        for _ in range(50):
            await limiter.admit("client")

        assert limiter.get_bucket("client").tokens >= 0

    @pytest.mark.asyncio
    async def test_tokens_capped_at_burst_capacity(self, limiter, clock):
        await limiter.admit("client")

        clock.advance(3600)
        await limiter.admit("client")

        # Refill caps at 10, then one token is consumed
        assert limiter.get_bucket("client").tokens == pytest.approx(9.0)

    @pytest.mark.asyncio
    async def test_identities_are_independent(self, limiter):
        for _ in range(10):
            await limiter.admit("a")

        assert await limiter.admit("a") is False
        assert await limiter.admit("b") is True

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_over_admit(self, limiter):
        results = await asyncio.gather(*(limiter.admit("client") for _ in range(30)))

        assert sum(results) == 10

    @pytest.mark.asyncio
    async def test_retry_after(self, limiter):
        for _ in range(11):
            await limiter.admit("client")

        assert limiter.retry_after("client") == 1
        assert limiter.retry_after("unknown") == 1

    @pytest.mark.asyncio
    async def test_reset_clears_buckets(self, limiter):
        await limiter.admit("a")
        await limiter.admit("b")
        assert len(limiter) == 2

        limiter.reset()
        assert len(limiter) == 0


class TestSweep:
    """Tests for idle bucket reaping."""

    @pytest.mark.asyncio
    async def test_idle_bucket_removed(self, limiter, clock):
        await limiter.admit("idle")

        clock.advance(121)
        removed = await limiter.sweep()

        assert removed == 1
        assert limiter.get_bucket("idle") is None

    @pytest.mark.asyncio
    async def test_recent_bucket_survives(self, limiter, clock):
        await limiter.admit("idle")
        clock.advance(100)
        await limiter.admit("active")

        clock.advance(30)
        removed = await limiter.sweep()

        assert removed == 1
        assert limiter.get_bucket("idle") is None
        assert limiter.get_bucket("active") is not None

    @pytest.mark.asyncio
    async def test_bucket_at_threshold_survives(self, limiter, clock):
        await limiter.admit("client")

        clock.advance(120)
        assert await limiter.sweep() == 0
        assert limiter.get_bucket("client") is not None

    @pytest.mark.asyncio
    async def test_reaped_identity_starts_with_full_bucket(self, limiter, clock):
        for _ in range(10):
            await limiter.admit("client")

        clock.advance(121)
        await limiter.sweep()

        results = [await limiter.admit("client") for _ in range(11)]
        assert results.count(True) == 10


class TestBucketReaper:
    """Tests for the background reaper task."""

    @pytest.mark.asyncio
    async def test_reaper_sweeps_periodically(self, limiter, clock):
        await limiter.admit("idle")
        clock.advance(500)

        reaper = BucketReaper(limiter, interval=0.01)
        await reaper.start()
        try:
            for _ in range(100):
                if len(limiter) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await reaper.stop()

        assert len(limiter) == 0
        assert reaper.running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_without_start(self, limiter):
        reaper = BucketReaper(limiter, interval=60)
        await reaper.stop()

        await reaper.start()
        await reaper.start()
        assert reaper.running is True

        await reaper.stop()
        assert reaper.running is False
