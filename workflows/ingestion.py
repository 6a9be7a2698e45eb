"""
Signal Ingestion Orchestrator

Fans out to the job-posting collectors with bounded concurrency, throttles
each (source, location) pair through the shared window rate limiter, and
persists the aggregate through two-layer deduplication:

  rate limit -> collect (per source, isolated) -> dedup -> store

Queued ingestion is fire-and-forget: the caller gets a job id back and the
worker later re-enters the inline path through run_job().

Usage:
    ingestion = SignalIngestion(store, rate_limiter, build_collectors(config))
    result = await ingestion.ingest_job_postings(
        CollectorFilters(keywords=["Head of Engineering"], location="Brazil"),
    )
    print(result.stats.to_dict())
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from collectors import DEFAULT_SOURCES
from collectors.base import BaseCollector, CollectorFilters
from collectors.funding import FundingCollector, FundingFilters
from signal_engine.config import EngineConfig
from signal_engine.errors import ValidationError
from signal_engine.models import RawPosting, Signal
from storage.signal_store import SignalStore
from utils.rate_limiter import WindowRateLimiter
from workflows.deduplication import deduplicate_and_store, store_funding_events

if TYPE_CHECKING:
    from storage.job_store import Job
    from workflows.job_queue import JobQueue

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

JOB_NAME = "collect-signals"

WEBHOOK_PRIORITY = 1
DEFAULT_PRIORITY = 2


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class IngestionStats:
    """Statistics from one ingestion call"""

    total_collected: int = 0     # raw postings gathered, duplicates included
    duplicates: int = 0
    stored: int = 0
    errors: int = 0
    sources: Dict[str, int] = field(default_factory=dict)
    queue_job_id: Optional[str] = None

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def complete(self):
        self.completed_at = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "totalCollected": self.total_collected,
            "duplicates": self.duplicates,
            "stored": self.stored,
            "errors": self.errors,
            "sources": dict(self.sources),
        }
        if self.queue_job_id:
            data["queueJobId"] = self.queue_job_id
        if self.duration_seconds is not None:
            data["durationSeconds"] = round(self.duration_seconds, 3)
        return data


@dataclass
class IngestionResult:
    signals: List[Signal]
    stats: IngestionStats


# =============================================================================
# INGESTION
# =============================================================================

class SignalIngestion:
    """
    Multi-source ingestion with rate limiting, dedup and optional queueing.

    Args:
        store: Initialized SignalStore
        rate_limiter: Shared window rate limiter
        collectors: Job-posting collectors keyed by source name
        funding_collector: Funding collector (optional)
        job_queue: JobQueue for use_queue=True (optional)
        config: Engine configuration (concurrency and per-source budget)
    """

    def __init__(
        self,
        store: SignalStore,
        rate_limiter: WindowRateLimiter,
        collectors: Dict[str, BaseCollector],
        funding_collector: Optional[FundingCollector] = None,
        job_queue: Optional["JobQueue"] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.collectors = collectors
        self.funding_collector = funding_collector
        self.job_queue = job_queue
        self.config = config or EngineConfig()

    # =========================================================================
    # JOB POSTINGS
    # =========================================================================

    def _validate(self, filters: CollectorFilters, sources: List[str]) -> None:
        if not filters.query:
            raise ValidationError("keywords must contain at least one non-empty keyword")
        if filters.days_back < 1:
            raise ValidationError("daysBack must be a positive number of days")
        unknown = [s for s in sources if s not in self.collectors]
        if unknown:
            raise ValidationError(f"Unknown source(s): {', '.join(unknown)}")

    async def ingest_job_postings(
        self,
        filters: CollectorFilters,
        use_queue: bool = False,
        sources: Optional[List[str]] = None,
        priority_source: str = "manual",
    ) -> IngestionResult:
        """
        Collect, deduplicate and store job postings.

        Args:
            filters: Keywords, location and look-back window
            use_queue: Enqueue a background job and return immediately
            sources: Source names (default: serpapi, scraperapi, rss)
            priority_source: "webhook" jobs outrank manual and scheduled ones

        Raises:
            ValidationError: Empty keywords or unknown source
        """
        sources = list(sources) if sources else list(DEFAULT_SOURCES)
        self._validate(filters, sources)

        stats = IngestionStats()

        if use_queue:
            if self.job_queue is None:
                raise RuntimeError("use_queue requested but no job queue is configured")
            priority = WEBHOOK_PRIORITY if priority_source == "webhook" else DEFAULT_PRIORITY
            stats.queue_job_id = await self.job_queue.enqueue(
                JOB_NAME,
                {"filters": filters.to_dict(), "sources": sources, "source": priority_source},
                priority=priority,
            )
            stats.complete()
            logger.info(f"Queued ingestion job {stats.queue_job_id} (priority {priority})")
            return IngestionResult(signals=[], stats=stats)

        semaphore = asyncio.Semaphore(self.config.ingestion_concurrency)
        tasks = [self._collect_from_source(source, filters, semaphore) for source in sources]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        all_postings: List[RawPosting] = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.warning(f"Error collecting from {source}: {result}")
                stats.errors += 1
                stats.sources[source] = 0
                continue
            stats.sources[source] = len(result)
            stats.total_collected += len(result)
            all_postings.extend(result)

        signals, duplicates = await deduplicate_and_store(self.store, all_postings)
        stats.duplicates = duplicates
        stats.stored = len(signals)
        stats.complete()

        logger.info(
            f"Ingestion complete: {stats.total_collected} collected, "
            f"{stats.stored} stored, {stats.duplicates} duplicates, {stats.errors} errors"
        )
        return IngestionResult(signals=signals, stats=stats)

    async def _collect_from_source(
        self,
        source: str,
        filters: CollectorFilters,
        semaphore: asyncio.Semaphore,
    ) -> List[RawPosting]:
        async with semaphore:
            key = f"{source}:{filters.location or 'global'}"
            await self.rate_limiter.wait_for_limit(
                key,
                self.config.source_rate_limit,
                self.config.source_rate_window,
            )
            return await self.collectors[source].fetch(filters)

    # =========================================================================
    # FUNDING
    # =========================================================================

    async def ingest_funding_signals(self, filters: FundingFilters) -> List[Signal]:
        """Collect funding rounds and store the new ones."""
        if self.funding_collector is None:
            logger.warning("No funding collector configured")
            return []

        events = await self.funding_collector.collect(filters)
        signals, duplicates = await store_funding_events(self.store, events)
        logger.info(f"Funding ingestion: {len(signals)} stored, {duplicates} duplicates")
        return signals

    async def ingest_funding_webhook(self, items: Any) -> List[Signal]:
        """Store funding items pushed by an external webhook."""
        collector = self.funding_collector or FundingCollector()
        events = collector.collect_from_webhook(items)
        signals, _ = await store_funding_events(self.store, events)
        return signals

    # =========================================================================
    # QUEUE
    # =========================================================================

    async def run_job(self, job: "Job") -> Dict[str, Any]:
        """Queue handler: run the inline ingestion path for a queued payload."""
        payload = job.payload or {}
        filters = CollectorFilters.from_dict(payload.get("filters") or {})
        result = await self.ingest_job_postings(
            filters,
            use_queue=False,
            sources=payload.get("sources"),
        )
        return {"count": len(result.signals), "stats": result.stats.to_dict()}

    async def get_queue_stats(self) -> Dict[str, int]:
        if self.job_queue is None:
            return {"waiting": 0, "active": 0, "completed": 0, "failed": 0}
        return await self.job_queue.get_stats()
