"""
Wiring for the API, the CLI and the scheduler.

SignalEngine opens the three stores on one database file and builds the
queue and ingestion services on top of them.

Usage:
    async with engine_context(EngineConfig.from_env()) as engine:
        result = await engine.ingestion.ingest_job_postings(filters)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from collectors import build_collectors, build_funding_collector
from collectors.base import BaseCollector
from collectors.funding import FundingCollector
from signal_engine.config import EngineConfig
from storage.counter_store import CounterStore
from storage.job_store import JobStore
from storage.signal_store import SignalStore
from utils.rate_limiter import WindowRateLimiter
from workflows.ingestion import SignalIngestion
from workflows.job_queue import JobQueue, JobWorker

logger = logging.getLogger(__name__)


class SignalEngine:
    def __init__(
        self,
        config: EngineConfig,
        collectors: Optional[Dict[str, BaseCollector]] = None,
        funding_collector: Optional[FundingCollector] = None,
    ):
        self.config = config
        self.store = SignalStore(config.db_path)
        self.jobs = JobStore(config.db_path)
        self.counters = CounterStore(config.db_path)
        self.collectors = collectors if collectors is not None else build_collectors(config)
        self.funding_collector = funding_collector or build_funding_collector(config)

        self.queue = JobQueue(self.jobs)
        self.rate_limiter = WindowRateLimiter(self.counters)
        self.ingestion = SignalIngestion(
            self.store,
            self.rate_limiter,
            self.collectors,
            funding_collector=self.funding_collector,
            job_queue=self.queue,
            config=config,
        )

    async def initialize(self) -> None:
        await self.store.initialize()
        await self.jobs.initialize()
        await self.counters.initialize()

    async def close(self) -> None:
        for collector in self.collectors.values():
            await collector.close()
        await self.funding_collector.close()
        await self.counters.close()
        await self.jobs.close()
        await self.store.close()

    def build_worker(self) -> JobWorker:
        return JobWorker(
            self.queue,
            self.ingestion.run_job,
            concurrency=self.config.queue_concurrency,
            rate_per_second=self.config.queue_rate_per_second,
        )


@asynccontextmanager
async def engine_context(
    config: Optional[EngineConfig] = None,
    collectors: Optional[Dict[str, BaseCollector]] = None,
    funding_collector: Optional[FundingCollector] = None,
) -> AsyncIterator[SignalEngine]:
    engine = SignalEngine(config or EngineConfig.from_env(), collectors, funding_collector)
    try:
        await engine.initialize()
        yield engine
    finally:
        await engine.close()
