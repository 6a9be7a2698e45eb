"""
Rate limiting for collectors and the job worker.

Two limiters live here:

- WindowRateLimiter: fixed-window counter per key, backed by the shared
  CounterStore so every process sees the same budget. Used by ingestion to
  throttle each (source, location) pair.
- AsyncRateLimiter: in-process token bucket. Used for the worker's global
  throughput cap and per-API pacing of collector HTTP calls.

Usage:
    limiter = WindowRateLimiter(counter_store)
    await limiter.wait_for_limit("serpapi:Brazil", limit=50, window_seconds=60)

    api_limiter = get_rate_limiter("serpapi")
    await api_limiter.acquire()
    response = await client.get(url)

API Limits:
    - SerpAPI: 100/minute
    - ScraperAPI: 60/minute
    - Crunchbase: 200/minute
    - LinkedIn: 100/minute
    - Indeed: 60/minute
    - RSS feeds: unlimited
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from storage.counter_store import CounterStore

logger = logging.getLogger(__name__)


# =============================================================================
# WINDOW RATE LIMITER (shared counters)
# =============================================================================

class WindowRateLimiter:
    """
    Per-key fixed-window limiter.

    A request is allowed while the window's count is <= limit, so with
    limit=5 the fifth call passes and the sixth is rejected until the window
    expires.

    Args:
        counters: Shared counter store
        clock: Epoch-seconds clock (injectable for tests)
        sleep: Async sleep function (injectable for tests)
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(
        self,
        counters: CounterStore,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ):
        self.counters = counters
        self.clock = clock
        self.sleep = sleep

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def check_limit(self, key: str, limit: int, window_seconds: float) -> bool:
        """Count one attempt against the key and report whether it is allowed."""
        count, _ = await self.counters.increment(self._key(key), window_seconds, self.clock())
        allowed = count <= limit
        if not allowed:
            logger.debug(f"Rate limit exceeded for {key}: {count}/{limit}")
        return allowed

    async def wait_for_limit(
        self,
        key: str,
        limit: int,
        window_seconds: float,
        poll_interval: float = 1.0,
    ) -> None:
        """
        Suspend until an attempt is allowed.

        Sleeps for the window's remaining time when it is known, otherwise for
        poll_interval. Other tasks keep running while this one waits.
        """
        while not await self.check_limit(key, limit, window_seconds):
            state = await self.counters.get(self._key(key), self.clock())
            if state is not None:
                delay = max(state[1] - self.clock(), poll_interval)
            else:
                delay = poll_interval
            logger.info(f"Rate limit reached for {key}, waiting {delay:.1f}s")
            await self.sleep(delay)

    async def get_remaining(self, key: str, limit: int) -> int:
        state = await self.counters.get(self._key(key), self.clock())
        if state is None:
            return limit
        return max(0, limit - state[0])

    async def reset(self, key: str) -> None:
        await self.counters.delete(self._key(key))


# =============================================================================
# TOKEN BUCKET (in-process)
# =============================================================================

class AsyncRateLimiter:
    """
    Async rate limiter using token bucket algorithm.

    Tokens are refilled over time based on the configured rate.
    Callers wait if no tokens are available.

    Args:
        rate: Maximum requests per period (None = unlimited)
        period: Time period in seconds
    """

    def __init__(self, rate: Optional[int] = None, period: float = 1):
        self.rate = rate
        self.period = period
        self._lock = asyncio.Lock()
        self._tokens: float = float(rate) if rate else float("inf")
        self._last_refill: Optional[float] = None

    async def acquire(self) -> None:
        """
        Acquire permission to make a request.

        Blocks until a token is available. Unlimited limiters return at once.
        """
        if self.rate is None:
            return

        async with self._lock:
            now = time.monotonic()

            if self._last_refill is None:
                self._last_refill = now
                self._tokens = float(self.rate)

            elapsed = now - self._last_refill
            self._tokens = min(self.rate, self._tokens + elapsed * (self.rate / self.period))
            self._last_refill = now

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * (self.period / self.rate)
                logger.debug(f"Token bucket empty: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 1
                self._last_refill = time.monotonic()

            self._tokens -= 1


class RateLimiterPool:
    """Creates per-API token buckets on demand with the limits below."""

    API_LIMITS: Dict[str, Dict[str, Optional[int]]] = {
        "serpapi": {"rate": 100, "period": 60},
        "scraperapi": {"rate": 60, "period": 60},
        "rss": {"rate": None, "period": 1},
        "crunchbase": {"rate": 200, "period": 60},
        "linkedin": {"rate": 100, "period": 60},
        "indeed": {"rate": 60, "period": 60},
    }

    def __init__(self):
        self._limiters: Dict[str, AsyncRateLimiter] = {}

    def get(self, api_name: str) -> AsyncRateLimiter:
        if api_name not in self._limiters:
            limits = self.API_LIMITS.get(api_name, {"rate": None, "period": 1})
            self._limiters[api_name] = AsyncRateLimiter(
                rate=limits["rate"],
                period=limits["period"],
            )
            if limits["rate"]:
                logger.info(
                    f"Created rate limiter for {api_name}: "
                    f"{limits['rate']} requests per {limits['period']}s"
                )
            else:
                logger.debug(f"Created unlimited rate limiter for {api_name}")

        return self._limiters[api_name]

    def reset(self) -> None:
        self._limiters.clear()


_global_pool = RateLimiterPool()


def get_rate_limiter(api_name: str) -> AsyncRateLimiter:
    """Get the shared token bucket for an API."""
    return _global_pool.get(api_name)


def reset_limiters() -> None:
    """Drop all shared token buckets (tests)."""
    _global_pool.reset()
