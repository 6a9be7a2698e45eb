"""
RSS Feed Collector

Collects job postings from job-board RSS and Atom feeds (Indeed by default).
Feeds are fetched with aiohttp and parsed with ElementTree.

Default feeds for a location:
- https://www.indeed.com/rss?q=VP&l={location}
- https://www.indeed.com/rss?q=Head+of+Engineering&l={location}
- https://www.indeed.com/rss?q=Director&l={location}

No API key and no rate limiting required (standard RSS polling).
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from xml.etree import ElementTree as ET

import aiohttp

from collectors.base import BaseCollector, CollectorFilters
from signal_engine.models import RawPosting, parse_timestamp

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

ATOM_NS = "http://www.w3.org/2005/Atom"
DC_CREATOR = "{http://purl.org/dc/elements/1.1/}creator"

INDEED_RSS_QUERIES = ["VP", "Head+of+Engineering", "Director"]


def default_feeds(location: Optional[str]) -> List[str]:
    """Indeed RSS feeds for a location. No location, no feeds."""
    if not location:
        return []
    encoded = quote(location)
    return [f"https://www.indeed.com/rss?q={q}&l={encoded}" for q in INDEED_RSS_QUERIES]


def _parse_pub_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return parse_timestamp(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# RSS COLLECTOR
# =============================================================================

class RssFeedCollector(BaseCollector):
    """
    Job postings from RSS/Atom feeds.

    Usage:
        collector = RssFeedCollector()
        postings = await collector.collect(CollectorFilters(keywords=["VP"], location="Brazil"))
    """

    source = "rss"
    requires_api_key = False

    def __init__(
        self,
        feeds: Optional[List[str]] = None,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        **kwargs,
    ):
        """
        Args:
            feeds: Fixed feed URLs (default: Indeed feeds for the filter location)
            timeout: Per-feed timeout in seconds
            session: Optional aiohttp session to reuse
        """
        super().__init__(timeout=timeout, **kwargs)
        self.feeds = feeds
        self._session = session

    async def _collect(self, filters: CollectorFilters) -> List[RawPosting]:
        feeds = self.feeds if self.feeds is not None else default_feeds(filters.location)
        if not feeds:
            logger.debug("rss: no feeds to poll")
            return []

        cutoff = datetime.now(timezone.utc) - timedelta(days=filters.days_back)
        postings: List[RawPosting] = []

        if self._session is not None:
            for url in feeds:
                postings.extend(await self._collect_from_feed(self._session, url, cutoff))
        else:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                for url in feeds:
                    postings.extend(await self._collect_from_feed(session, url, cutoff))

        return postings

    async def _collect_from_feed(
        self,
        session: aiohttp.ClientSession,
        feed_url: str,
        cutoff: datetime,
    ) -> List[RawPosting]:
        """One feed. A broken feed yields [] without affecting the others."""
        try:
            content = await self._fetch_feed(session, feed_url)
        except Exception as e:
            logger.warning(f"RSS fetch failed for {feed_url}: {e}")
            return []

        if content is None:
            return []

        postings = []
        for item in self.parse_feed(content):
            if not item["title"] or not item["link"]:
                continue
            posted = item["published"]
            if posted is not None and posted < cutoff:
                continue
            postings.append(
                RawPosting(
                    title=item["title"],
                    company=item["company"] or "Unknown",
                    location=item["location"],
                    url=item["link"],
                    posted_date=posted,
                    description=item["description"],
                    source=self.source,
                    raw={"feed": feed_url, "guid": item["guid"]},
                )
            )

        logger.debug(f"rss: {len(postings)} postings from {feed_url}")
        return postings

    async def _fetch_feed(self, session: aiohttp.ClientSession, feed_url: str) -> Optional[str]:
        await self._rate_limiter.acquire()
        async with session.get(feed_url) as response:
            if response.status != 200:
                logger.warning(f"RSS feed {feed_url} returned {response.status}")
                return None
            return await response.text()

    # =========================================================================
    # PARSING
    # =========================================================================

    def parse_feed(self, content: str) -> List[Dict[str, Any]]:
        """Parse RSS 2.0 items and Atom entries."""
        items = []
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            logger.warning(f"RSS parse error: {e}")
            return items

        for item in root.findall(".//item"):
            items.append(self._parse_rss_item(item))

        for entry in root.findall(f".//{{{ATOM_NS}}}entry"):
            items.append(self._parse_atom_entry(entry))

        return items

    def _parse_rss_item(self, item: ET.Element) -> Dict[str, Any]:
        raw_title = (item.findtext("title") or "").strip()
        title, title_company, title_location = self._split_title(raw_title)
        company = (
            (item.findtext("source") or "").strip()
            or (item.findtext(DC_CREATOR) or "").strip()
            or title_company
        )
        link = (item.findtext("link") or "").strip()

        return {
            "title": title,
            "company": company or None,
            "location": (item.findtext("location") or "").strip() or title_location,
            "link": link,
            "description": self._clean_html(item.findtext("description") or "")[:500],
            "published": _parse_pub_date(item.findtext("pubDate")),
            "guid": item.findtext("guid") or link,
        }

    def _parse_atom_entry(self, entry: ET.Element) -> Dict[str, Any]:
        ns = {"atom": ATOM_NS}
        raw_title = (entry.findtext("atom:title", "", ns) or "").strip()
        title, title_company, title_location = self._split_title(raw_title)
        link_elem = entry.find("atom:link", ns)
        link = link_elem.get("href", "") if link_elem is not None else ""
        author = (entry.findtext("atom:author/atom:name", "", ns) or "").strip()
        published = entry.findtext("atom:published", "", ns) or entry.findtext("atom:updated", "", ns)

        return {
            "title": title,
            "company": author or title_company,
            "location": title_location,
            "link": link,
            "description": self._clean_html(entry.findtext("atom:summary", "", ns) or "")[:500],
            "published": parse_timestamp(published),
            "guid": entry.findtext("atom:id", link, ns),
        }

    @staticmethod
    def _split_title(raw_title: str):
        """Indeed titles read 'Title - Company - Location'."""
        parts = [p.strip() for p in raw_title.split(" - ")]
        if len(parts) >= 3:
            return " - ".join(parts[:-2]), parts[-2] or None, parts[-1] or None
        if len(parts) == 2:
            return parts[0], parts[1] or None, None
        return raw_title, None, None

    @staticmethod
    def _clean_html(text: str) -> str:
        text = re.sub(r"<[^>]+>", " ", text)
        return re.sub(r"\s+", " ", text).strip()
