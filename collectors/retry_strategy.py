"""
Retry policy for collector HTTP calls.

Collector calls are retried on transient failures (network errors, timeouts,
HTTP 429 and 5xx) with exponential backoff and jitter. A Retry-After header on
the failed response overrides the computed wait.

Partner API calls use connectors.partner_retry instead; it has a token refresh
step that does not apply here.

Usage:
    config = RetryConfig(max_retries=2, backoff_base=2.0)
    data = await with_retry(lambda: fetch_json(url), config)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How many times and how patiently a collector call is retried."""

    max_retries: int = 2
    backoff_base: float = 2.0
    backoff_max: float = 20.0
    jitter: bool = True

    def get_wait_seconds(self, attempt: int) -> float:
        """Wait before retry number `attempt` (0 = first retry)."""
        wait = min(self.backoff_base ** attempt, self.backoff_max)
        if self.jitter:
            wait *= 0.75 + random.random() * 0.5
        return wait


def is_retryable_error(error: Exception) -> bool:
    """
    True for failures worth another attempt.

    Retryable: connection errors, timeouts, httpx transport errors, HTTP 429
    and HTTP 5xx. Any other 4xx means the request itself is wrong.
    """
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or 500 <= status < 600

    return False


def get_retry_after_seconds(error: Exception) -> Optional[float]:
    """Seconds from a Retry-After header, if the error carries one."""
    if not isinstance(error, httpx.HTTPStatusError):
        return None

    retry_after = error.response.headers.get("Retry-After")
    if retry_after is None:
        return None

    try:
        return float(retry_after)
    except ValueError:
        return None


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
) -> T:
    """
    Await func(), retrying transient failures.

    Args:
        func: Zero-argument coroutine factory
        config: Retry configuration
        retry_on: Exception types to retry (default: is_retryable_error)

    Raises:
        The last exception once retries are exhausted, or the first
        non-retryable one.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            should_retry = isinstance(e, retry_on) if retry_on is not None else is_retryable_error(e)
            if not should_retry:
                raise

            if attempt >= config.max_retries:
                logger.error(f"All {config.max_retries} retries exhausted. Last error: {e}")
                raise

            wait_time = get_retry_after_seconds(e)
            if wait_time is None:
                wait_time = config.get_wait_seconds(attempt)

            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed: {e}. "
                f"Retrying in {wait_time:.2f}s..."
            )
            await asyncio.sleep(wait_time)
            attempt += 1
