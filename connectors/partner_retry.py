"""
Shared retry decorator for partner API calls.

Every partner client routes its HTTP calls through @partner_retry():

  - HTTP 401: refresh the access token once, then repeat the call
    (the repeat does not count as a separate attempt)
  - transport errors, HTTP 429 and 5xx: retried, up to max_attempts in
    total, waiting backoff_seconds x attempt between tries
  - any other 4xx: not retried

Whatever still fails is raised as PartnerAPIError.

Usage:
    class MyPartner(BasePartner):
        @partner_retry()
        async def request(self, method, path, **kwargs):
            ...
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from signal_engine.errors import PartnerAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def is_retryable_partner_error(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(f"Partner call attempt {state.attempt_number} failed: {error}. Retrying...")


def partner_retry(max_attempts: int = 3, backoff_seconds: float = 1.0):
    """Decorate an async partner method taking `self` (a BasePartner)."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> T:
            refreshed = False

            async def call_once() -> T:
                nonlocal refreshed
                try:
                    return await func(self, *args, **kwargs)
                except httpx.HTTPStatusError as e:
                    if e.response.status_code != 401 or refreshed:
                        raise
                    refreshed = True
                    logger.info(f"{self.partner_type.value} returned 401, refreshing token")
                    if not await self.refresh_token():
                        raise
                    return await func(self, *args, **kwargs)

            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(max_attempts),
                    wait=wait_incrementing(start=backoff_seconds, increment=backoff_seconds),
                    retry=retry_if_exception(is_retryable_partner_error),
                    before_sleep=_log_retry,
                    sleep=_sleep,
                    reraise=True,
                ):
                    with attempt:
                        result = await call_once()
            except httpx.HTTPStatusError as e:
                raise PartnerAPIError(
                    f"{self.partner_type.value} API error: {e.response.status_code} {e.request.url}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise PartnerAPIError(f"{self.partner_type.value} request failed: {e}") from e

            return result

        return wrapper

    return decorator
