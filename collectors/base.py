"""
Base Collector Class for the Talent Signals Engine

Provides common functionality for all job-posting collectors:
- Async context manager owning a shared httpx.AsyncClient
- Best-effort collect(): provider errors become an empty list plus a warning
- Retry logic with exponential backoff
- Per-API rate limiting

All collectors should inherit from BaseCollector and implement:
- _collect(): Fetch and map raw postings from the source
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from collectors.retry_strategy import RetryConfig, with_retry
from signal_engine.models import RawPosting
from utils.rate_limiter import AsyncRateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CollectorFilters:
    """Search filters shared by every job-posting collector."""
    keywords: List[str] = field(default_factory=list)
    location: Optional[str] = None
    days_back: int = 7

    @property
    def query(self) -> str:
        return " ".join(k.strip() for k in self.keywords if k and k.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keywords": list(self.keywords),
            "location": self.location,
            "days_back": self.days_back,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectorFilters":
        return cls(
            keywords=list(data.get("keywords") or []),
            location=data.get("location"),
            days_back=int(data.get("days_back") or data.get("daysBack") or 7),
        )


class BaseCollector(ABC):
    """
    Base class for job-posting collectors.

    Usage:
        class MyCollector(BaseCollector):
            source = "my_source"

            async def _collect(self, filters):
                response = await self._http_get(URL, params={...})
                return [RawPosting(...) for item in response.json()["items"]]

        async with MyCollector(api_key="...") as collector:
            postings = await collector.collect(CollectorFilters(keywords=["CTO"]))
    """

    source: str = "unknown"
    requires_api_key: bool = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        api_name: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: Provider API key (collectors that need one return [] without it)
            retry_config: Configuration for retry behavior (default: RetryConfig())
            api_name: API name for rate limiting (defaults to the source tag)
            timeout: HTTP timeout in seconds
            client: Optional pre-built httpx client (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.retry_config = retry_config or RetryConfig()
        self.api_name = api_name or self.source
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None
        self._rate_limiter: AsyncRateLimiter = get_rate_limiter(self.api_name)

    async def __aenter__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    @property
    def rate_limiter(self) -> AsyncRateLimiter:
        return self._rate_limiter

    async def collect(self, filters: CollectorFilters) -> List[RawPosting]:
        """
        Collect postings for the filters.

        Never raises: provider and network errors are logged as warnings and
        produce an empty list.
        """
        try:
            return await self.fetch(filters)
        except Exception as e:
            logger.warning(f"{self.source} collection failed: {e}")
            return []

    async def fetch(self, filters: CollectorFilters) -> List[RawPosting]:
        """
        Like collect(), but provider errors propagate.

        The ingestion fan-out uses this so it can count failed sources.
        A missing API key is not an error and returns [].
        """
        if self.requires_api_key and not self.api_key:
            logger.warning(f"{self.source} API key not configured, skipping collection")
            return []

        postings = await self._collect(filters)
        logger.info(f"Collected {len(postings)} postings from {self.source}")
        return postings

    @abstractmethod
    async def _collect(self, filters: CollectorFilters) -> List[RawPosting]:
        """Fetch postings from the provider. May raise."""

    async def _fetch_with_retry(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run func() behind the API's token bucket, retrying transient errors."""
        async def rate_limited() -> T:
            await self._rate_limiter.acquire()
            return await func()

        return await with_retry(rate_limited, self.retry_config)

    async def _http_get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """GET with retry and rate limiting. Raises on a non-2xx final response."""
        async def do_request() -> httpx.Response:
            if self.client is not None:
                response = await self.client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response

        return await self._fetch_with_retry(do_request)
