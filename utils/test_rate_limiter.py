"""
Tests for the window rate limiter and the per-API token buckets.
"""

import time

import pytest


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
async def counters(db_path):
    from storage.counter_store import CounterStore

    store = CounterStore(db_path)
    await store.initialize()
    yield store
    await store.close()


class TestWindowRateLimiter:
    """Test WindowRateLimiter against the shared counter store"""

    async def test_allows_up_to_limit_then_rejects(self, counters):
        from utils.rate_limiter import WindowRateLimiter

        clock = FakeClock()
        limiter = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)

        results = [await limiter.check_limit("serpapi:Brazil", 5, 60) for _ in range(6)]

        assert results == [True, True, True, True, True, False]

    async def test_window_expiry_resets_count(self, counters):
        from utils.rate_limiter import WindowRateLimiter

        clock = FakeClock()
        limiter = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)

        assert await limiter.check_limit("rss:", 1, 60) is True
        assert await limiter.check_limit("rss:", 1, 60) is False

        clock.now += 61
        assert await limiter.check_limit("rss:", 1, 60) is True

    async def test_keys_are_independent(self, counters):
        from utils.rate_limiter import WindowRateLimiter

        clock = FakeClock()
        limiter = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)

        assert await limiter.check_limit("serpapi:Brazil", 1, 60) is True
        assert await limiter.check_limit("serpapi:Chile", 1, 60) is True
        assert await limiter.check_limit("serpapi:Brazil", 1, 60) is False

    async def test_wait_for_limit_sleeps_until_window_expires(self, counters):
        from utils.rate_limiter import WindowRateLimiter

        clock = FakeClock()
        limiter = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)

        await limiter.wait_for_limit("scraperapi:", 1, 30)
        clock.now += 10
        await limiter.wait_for_limit("scraperapi:", 1, 30)

        assert len(clock.sleeps) == 1
        assert clock.sleeps[0] == pytest.approx(20.0)

    async def test_get_remaining_and_reset(self, counters):
        from utils.rate_limiter import WindowRateLimiter

        clock = FakeClock()
        limiter = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)

        assert await limiter.get_remaining("serpapi:", 3) == 3
        await limiter.check_limit("serpapi:", 3, 60)
        await limiter.check_limit("serpapi:", 3, 60)
        assert await limiter.get_remaining("serpapi:", 3) == 1

        await limiter.reset("serpapi:")
        assert await limiter.get_remaining("serpapi:", 3) == 3

    async def test_counters_shared_between_limiters(self, counters):
        """Two limiters over one store see the same budget"""
        from utils.rate_limiter import WindowRateLimiter

        clock = FakeClock()
        first = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)
        second = WindowRateLimiter(counters, clock=clock, sleep=clock.sleep)

        assert await first.check_limit("serpapi:", 1, 60) is True
        assert await second.check_limit("serpapi:", 1, 60) is False


class TestCounterStore:
    async def test_purge_expired(self, counters):
        await counters.increment("a", 10, now=100.0)
        await counters.increment("b", 100, now=100.0)

        assert await counters.purge_expired(now=150.0) == 1
        assert await counters.get("a", now=150.0) is None
        assert await counters.get("b", now=150.0) == (1, 200.0)


class TestAsyncRateLimiter:
    """Test AsyncRateLimiter token bucket"""

    def test_rate_limiter_init(self):
        from utils.rate_limiter import AsyncRateLimiter
        limiter = AsyncRateLimiter(rate=10, period=1)
        assert limiter.rate == 10
        assert limiter.period == 1

    async def test_acquire_returns_quickly_under_limit(self):
        from utils.rate_limiter import AsyncRateLimiter
        limiter = AsyncRateLimiter(rate=100, period=1)

        start = time.monotonic()
        for _ in range(5):
            await limiter.acquire()
        assert time.monotonic() - start < 0.5

    async def test_acquire_throttles_when_exceeded(self):
        from utils.rate_limiter import AsyncRateLimiter
        limiter = AsyncRateLimiter(rate=2, period=1)

        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()

        # third token arrives after ~0.5s
        assert time.monotonic() - start >= 0.3

    async def test_unlimited_never_throttles(self):
        from utils.rate_limiter import AsyncRateLimiter
        limiter = AsyncRateLimiter(rate=None, period=1)

        start = time.monotonic()
        for _ in range(100):
            await limiter.acquire()
        assert time.monotonic() - start < 0.1


class TestRateLimiterPool:
    def test_known_api_limits(self):
        from utils.rate_limiter import RateLimiterPool
        pool = RateLimiterPool()

        assert pool.get("serpapi").rate == 100
        assert pool.get("scraperapi").rate == 60
        assert pool.get("rss").rate is None

    def test_unknown_api_is_unlimited(self):
        from utils.rate_limiter import RateLimiterPool
        assert RateLimiterPool().get("somewhere_else").rate is None

    def test_same_instance_per_api(self):
        from utils.rate_limiter import get_rate_limiter, reset_limiters
        reset_limiters()
        assert get_rate_limiter("crunchbase") is get_rate_limiter("crunchbase")
