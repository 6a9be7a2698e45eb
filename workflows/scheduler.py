"""
Periodic ingestion on APScheduler.

Jobs:
- Job postings: every 6 hours (queued when a job queue is configured)
- Funding rounds: daily at 02:00
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from collectors.base import CollectorFilters
from collectors.funding import FundingFilters
from workflows.ingestion import SignalIngestion

logger = logging.getLogger(__name__)

SCHEDULED_KEYWORDS = ["Head of Engineering", "VP of Sales", "Director"]
SCHEDULED_LOCATION = "Brazil"
SCHEDULED_MIN_FUNDING = 1_000_000


class IngestionScheduler:
    """
    Usage:
        scheduler = IngestionScheduler(ingestion)
        scheduler.start()      # inside a running event loop
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        ingestion: SignalIngestion,
        scheduler: Optional[AsyncIOScheduler] = None,
        keywords: Optional[List[str]] = None,
        location: str = SCHEDULED_LOCATION,
    ):
        self.ingestion = ingestion
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.keywords = keywords or list(SCHEDULED_KEYWORDS)
        self.location = location

    def start(self) -> None:
        if self.scheduler.running:
            logger.info("Scheduler already running")
            return

        self.scheduler.add_job(
            self.run_job_postings,
            trigger=CronTrigger(hour="*/6", minute=0),
            id="job_postings",
            name="Job posting ingestion",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self.run_funding,
            trigger=CronTrigger(hour=2, minute=0),
            id="funding",
            name="Funding ingestion",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info("Scheduled job postings every 6 hours and funding daily at 02:00 UTC")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def run_job_postings(self) -> Dict[str, Any]:
        filters = CollectorFilters(keywords=self.keywords, location=self.location, days_back=7)
        result = await self.ingestion.ingest_job_postings(
            filters,
            use_queue=self.ingestion.job_queue is not None,
            priority_source="scheduled",
        )
        logger.info(f"Scheduled job-posting ingestion: {result.stats.to_dict()}")
        return result.stats.to_dict()

    async def run_funding(self) -> int:
        signals = await self.ingestion.ingest_funding_signals(
            FundingFilters(min_amount=SCHEDULED_MIN_FUNDING, days_back=7)
        )
        logger.info(f"Scheduled funding ingestion stored {len(signals)} signals")
        return len(signals)
