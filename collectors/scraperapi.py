"""
ScraperAPI Collector - LinkedIn's public job search page fetched through ScraperAPI.

API: http://api.scraperapi.com (proxies, CAPTCHA handling, JS rendering)
Auth: api_key query parameter
Timeout: 60s (rendered pages are slow)

The returned HTML is parsed with regular expressions over the job card
class names; no browser or DOM library is involved.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

from collectors.base import BaseCollector, CollectorFilters
from collectors.serpapi import parse_relative_date
from signal_engine.models import RawPosting

logger = logging.getLogger(__name__)

SCRAPERAPI_URL = "http://api.scraperapi.com"
LINKEDIN_JOBS_SEARCH = "https://www.linkedin.com/jobs/search"

_CARD_SPLIT = re.compile(r"<li[\s>]", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")


def _class_text(chunk: str, class_name: str) -> Optional[str]:
    pattern = re.compile(
        rf'<(\w+)[^>]*class="[^"]*\b{re.escape(class_name)}\b[^"]*"[^>]*>(.*?)</\1>',
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(chunk)
    if not match:
        return None
    text = html.unescape(_TAG.sub("", match.group(2)))
    return " ".join(text.split()) or None


def _class_href(chunk: str, class_name: str) -> Optional[str]:
    pattern = re.compile(
        rf'<a[^>]*class="[^"]*\b{re.escape(class_name)}\b[^"]*"[^>]*>',
        re.IGNORECASE,
    )
    match = pattern.search(chunk)
    if not match:
        return None
    href = re.search(r'href="([^"]+)"', match.group(0))
    return html.unescape(href.group(1)) if href else None


def _class_datetime(chunk: str, class_name: str) -> Optional[str]:
    pattern = re.compile(
        rf'<time[^>]*class="[^"]*\b{re.escape(class_name)}[^"]*"[^>]*datetime="([^"]+)"',
        re.IGNORECASE,
    )
    match = pattern.search(chunk)
    return match.group(1) if match else None


def parse_job_cards(page: str, now: Optional[datetime] = None) -> List[dict]:
    """Extract {title, company, location, url, listed} dicts from a search page."""
    cards = []
    for chunk in _CARD_SPLIT.split(page or "")[1:]:
        title = _class_text(chunk, "base-search-card__title")
        company = _class_text(chunk, "base-search-card__subtitle")
        if not title or not company:
            continue
        cards.append(
            {
                "title": title,
                "company": company,
                "location": _class_text(chunk, "job-search-card__location"),
                "url": _class_href(chunk, "base-card__full-link"),
                "listed": _class_text(chunk, "job-search-card__listdate"),
                "listed_at": _class_datetime(chunk, "job-search-card__listdate"),
            }
        )
    return cards


class ScraperApiCollector(BaseCollector):
    """Job postings scraped from LinkedIn search results via ScraperAPI."""

    source = "scraperapi"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("timeout", 60.0)
        super().__init__(api_key=api_key, **kwargs)

    @staticmethod
    def build_search_url(filters: CollectorFilters) -> str:
        return f"{LINKEDIN_JOBS_SEARCH}?{urlencode({'keywords': filters.query, 'location': filters.location or ''})}"

    async def _collect(self, filters: CollectorFilters) -> List[RawPosting]:
        params = {
            "api_key": self.api_key,
            "url": self.build_search_url(filters),
            "render": "true",
        }
        response = await self._http_get(SCRAPERAPI_URL, params=params)

        postings = []
        for card in parse_job_cards(response.text):
            posted = None
            if card["listed"]:
                posted = parse_relative_date(card["listed"])
            postings.append(
                RawPosting(
                    title=card["title"],
                    company=card["company"],
                    location=card["location"] or filters.location,
                    url=card["url"],
                    posted_date=posted,
                    source=self.source,
                    raw=card,
                )
            )
        return postings
