"""
SerpAPI Collector - LinkedIn job listings through the SerpAPI search proxy.

API: https://serpapi.com/search.json
Engines: linkedin_jobs (primary), google with a site:indeed.com query (secondary)
Auth: api_key query parameter
Timeout: 30s
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from collectors.base import BaseCollector, CollectorFilters
from signal_engine.models import RawPosting, parse_timestamp

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"

_RELATIVE_DATE = re.compile(r"(\d+)\s*(minute|hour|day|week|month)", re.IGNORECASE)


def parse_posted_at(value: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse SerpAPI's posted_at, which is either ISO-8601 or relative ("3 days ago").

    Returns None when the text is unrecognised.
    """
    if not value:
        return None

    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed

    return parse_relative_date(value, now)


def parse_relative_date(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """'5 hours ago' -> now - 5h. Months count as 30 days."""
    match = _RELATIVE_DATE.search(text or "")
    if not match:
        return None

    now = now or datetime.now(timezone.utc)
    amount = int(match.group(1))
    unit = match.group(2).lower()

    if unit == "minute":
        delta = timedelta(minutes=amount)
    elif unit == "hour":
        delta = timedelta(hours=amount)
    elif unit == "day":
        delta = timedelta(days=amount)
    elif unit == "week":
        delta = timedelta(weeks=amount)
    else:
        delta = timedelta(days=30 * amount)
    return now - delta


class SerpApiCollector(BaseCollector):
    """Job postings from SerpAPI's LinkedIn Jobs engine."""

    source = "serpapi"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("timeout", 30.0)
        super().__init__(api_key=api_key, **kwargs)

    async def _collect(self, filters: CollectorFilters) -> List[RawPosting]:
        params = {
            "engine": "linkedin_jobs",
            "q": filters.query,
            "location": filters.location or "",
            "api_key": self.api_key,
        }
        response = await self._http_get(SERPAPI_URL, params=params)
        data = response.json() or {}

        postings = []
        for job in data.get("jobs_results") or []:
            posting = self._map_linkedin_job(job, filters)
            if posting:
                postings.append(posting)
        return postings

    async def collect_indeed(self, filters: CollectorFilters) -> List[RawPosting]:
        """Indeed listings through a site-restricted Google search. Best-effort."""
        if not self.api_key:
            logger.warning("serpapi API key not configured, skipping Indeed collection")
            return []

        params = {
            "engine": "google",
            "q": f"site:indeed.com {filters.query}".strip(),
            "location": filters.location or "",
            "api_key": self.api_key,
        }
        try:
            response = await self._http_get(SERPAPI_URL, params=params)
        except Exception as e:
            logger.warning(f"serpapi Indeed collection failed: {e}")
            return []

        postings = []
        for result in (response.json() or {}).get("organic_results") or []:
            title = (result.get("title") or "").strip()
            if not title:
                continue
            postings.append(
                RawPosting(
                    title=title,
                    company=(result.get("company_name") or result.get("source") or "Unknown").strip(),
                    location=result.get("location") or filters.location,
                    url=result.get("link"),
                    description=result.get("snippet"),
                    source=self.source,
                    raw=result,
                )
            )
        return postings

    def _map_linkedin_job(self, job: Dict[str, Any], filters: CollectorFilters) -> Optional[RawPosting]:
        title = (job.get("title") or "").strip()
        company = (job.get("company_name") or "").strip()
        if not title or not company:
            return None

        extensions = job.get("detected_extensions") or {}
        return RawPosting(
            title=title,
            company=company,
            location=job.get("location") or filters.location,
            url=job.get("link") or job.get("share_link"),
            posted_date=parse_posted_at(extensions.get("posted_at")),
            description=job.get("description"),
            external_id=job.get("job_id"),
            source=self.source,
            raw=job,
        )
