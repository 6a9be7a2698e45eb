"""
Signal collectors for the Talent Signals Engine.

Each collector:
- Queries one external source (SerpAPI, ScraperAPI, RSS feeds, Crunchbase)
- Maps provider payloads to RawPosting / RawFundingEvent
- Never raises from collect(): failures become [] plus a logged warning
"""

from __future__ import annotations

from typing import Dict

from collectors.base import BaseCollector, CollectorFilters
from collectors.funding import FundingCollector, FundingFilters
from collectors.rss import RssFeedCollector
from collectors.scraperapi import ScraperApiCollector
from collectors.serpapi import SerpApiCollector
from signal_engine.config import EngineConfig

DEFAULT_SOURCES = ["serpapi", "scraperapi", "rss"]


def build_collectors(config: EngineConfig) -> Dict[str, BaseCollector]:
    """Default job-posting source registry, keyed by source name."""
    return {
        "serpapi": SerpApiCollector(api_key=config.serpapi_key),
        "scraperapi": ScraperApiCollector(api_key=config.scraperapi_key),
        "rss": RssFeedCollector(),
    }


def build_funding_collector(config: EngineConfig) -> FundingCollector:
    return FundingCollector(api_key=config.crunchbase_api_key)


__all__ = [
    "BaseCollector",
    "CollectorFilters",
    "FundingCollector",
    "FundingFilters",
    "RssFeedCollector",
    "ScraperApiCollector",
    "SerpApiCollector",
    "DEFAULT_SOURCES",
    "build_collectors",
    "build_funding_collector",
]

__version__ = "1.0.0"
