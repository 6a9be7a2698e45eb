"""
Background job queue and worker.

JobQueue wraps the durable JobStore with the retry policy (3 attempts,
exponential backoff from 2s) and the retention policy (completed jobs kept
1 hour and at most 1000, failed jobs kept 24 hours). Jobs left active past
the lease timeout by a dead worker are requeued, or failed when out of attempts.

JobWorker drains ready jobs with bounded concurrency and a global throughput
cap, and publishes completion/failure events to subscribers. Enqueuing never
waits on a job; subscribing is optional and purely observational.

Usage:
    queue = JobQueue(job_store)
    job_id = await queue.enqueue("collect-signals", payload, priority=1)

    worker = JobWorker(queue, ingestion.run_job)
    worker.subscribe(lambda event, job, detail: print(event, job.id))
    stats = await worker.drain()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from storage.job_store import Job, JobStatus, JobStore
from utils.rate_limiter import AsyncRateLimiter

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
JobListener = Callable[[str, Job, Any], Any]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# QUEUE
# =============================================================================

class JobQueue:
    """Durable priority queue with retry and retention policies."""

    def __init__(
        self,
        store: JobStore,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        completed_retention: timedelta = timedelta(hours=1),
        completed_max_count: int = 1000,
        failed_retention: timedelta = timedelta(hours=24),
        lease_timeout: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.completed_retention = completed_retention
        self.completed_max_count = completed_max_count
        self.failed_retention = failed_retention
        self.lease_timeout = lease_timeout
        self.clock = clock

    async def enqueue(self, name: str, payload: Dict[str, Any], priority: int = 2) -> str:
        """Add a job and return its id. Lower priority numbers run first."""
        job = await self.store.insert_job(
            name=name,
            payload=payload,
            priority=priority,
            max_attempts=self.max_attempts,
            now=self.clock(),
        )
        logger.debug(f"Enqueued job {job.id} ({name}, priority {priority})")
        return job.id

    async def enqueue_bulk(
        self,
        name: str,
        payloads: List[Dict[str, Any]],
        priority: int = 2,
    ) -> List[str]:
        return [await self.enqueue(name, payload, priority) for payload in payloads]

    async def claim_next(self) -> Optional[Job]:
        return await self.store.claim_next(self.clock())

    async def complete(self, job: Job, result: Any = None) -> None:
        stored = result if isinstance(result, dict) or result is None else {"value": result}
        await self.store.mark_completed(job.id, stored, self.clock())

    async def fail(self, job: Job, error: str) -> bool:
        """
        Record a failed attempt.

        Returns True when the job will be retried, False when it is now
        terminally failed. job.attempts already counts the current attempt.
        """
        now = self.clock()
        if job.attempts < job.max_attempts:
            delay = self._compute_backoff(job.attempts)
            await self.store.mark_retry(job.id, error, now + timedelta(seconds=delay), now)
            logger.warning(
                f"Job {job.id} attempt {job.attempts}/{job.max_attempts} failed: {error}. "
                f"Retrying in {delay:.1f}s"
            )
            return True

        await self.store.mark_failed(job.id, error, now)
        logger.error(f"Job {job.id} failed after {job.attempts} attempts: {error}")
        return False

    async def recover_stalled(self) -> Dict[str, int]:
        """Release jobs left active by a worker that died mid-attempt."""
        now = self.clock()
        counts = await self.store.requeue_stale(now - self.lease_timeout, now)
        if counts["requeued"] or counts["failed"]:
            logger.warning(
                f"Recovered stalled jobs: {counts['requeued']} requeued, {counts['failed']} failed"
            )
        return counts

    def _compute_backoff(self, attempts: int) -> float:
        attempt = max(1, attempts)
        return self.backoff_base_seconds * (2 ** (attempt - 1))

    async def prune(self) -> Dict[str, int]:
        """Apply the retention windows. Returns deleted counts per status."""
        now = self.clock()
        completed = await self.store.delete_finished_before(
            JobStatus.COMPLETED, now - self.completed_retention
        )
        completed += await self.store.trim_finished(JobStatus.COMPLETED, self.completed_max_count)
        failed = await self.store.delete_finished_before(
            JobStatus.FAILED, now - self.failed_retention
        )
        if completed or failed:
            logger.info(f"Pruned {completed} completed and {failed} failed jobs")
        return {"completed": completed, "failed": failed}

    async def get_stats(self) -> Dict[str, int]:
        return await self.store.count_by_status()

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get_job(job_id)


# =============================================================================
# WORKER
# =============================================================================

class JobWorker:
    """
    Consume jobs from a JobQueue.

    Args:
        queue: JobQueue to drain
        handler: Coroutine run for each job; its return value is stored as the result
        concurrency: Maximum jobs running at once
        rate_per_second: Global cap on jobs started per second
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 5,
        rate_per_second: Optional[int] = 10,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.rate_limiter = AsyncRateLimiter(rate=rate_per_second, period=1)
        self._listeners: List[JobListener] = []
        self._stopping = asyncio.Event()

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """
        Register a listener called with ("completed" | "failed", job, detail).

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _publish(self, event: str, job: Job, detail: Any) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event, job, detail)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Job listener failed on {event} for {job.id}: {e}")

    async def _run_one(self, job: Job, stats: Dict[str, int]) -> None:
        try:
            result = await self.handler(job)
        except Exception as exc:
            will_retry = await self.queue.fail(job, str(exc))
            if will_retry:
                stats["retried"] += 1
            else:
                stats["failed"] += 1
                await self._publish("failed", job, str(exc))
            return

        await self.queue.complete(job, result)
        stats["completed"] += 1
        logger.info(f"Job {job.id} completed: {result}")
        await self._publish("completed", job, result)

    async def drain(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Process ready jobs until none are left (or `limit` were claimed).

        Jobs scheduled for a later retry are not waited for. Jobs whose
        claim outlived the lease timeout are released first.
        """
        await self.queue.recover_stalled()

        stats = {"processed": 0, "completed": 0, "retried": 0, "failed": 0}
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: List[asyncio.Task] = []

        async def run_guarded(job: Job) -> None:
            try:
                await self._run_one(job, stats)
            finally:
                semaphore.release()

        while limit is None or stats["processed"] < limit:
            await semaphore.acquire()
            await self.rate_limiter.acquire()
            job = await self.queue.claim_next()
            if job is None:
                semaphore.release()
                if not any(not t.done() for t in tasks):
                    break
                # running jobs may have scheduled immediate retries
                await asyncio.wait([t for t in tasks if not t.done()], return_when=asyncio.FIRST_COMPLETED)
                continue
            stats["processed"] += 1
            tasks.append(asyncio.create_task(run_guarded(job)))

        if tasks:
            await asyncio.gather(*tasks)

        return stats

    async def run_forever(self, poll_interval: float = 1.0, prune_every: int = 60) -> None:
        """Drain, prune periodically, and sleep between empty polls until stop()."""
        self._stopping.clear()
        logger.info(f"Job worker started (concurrency={self.concurrency})")
        iterations = 0

        while not self._stopping.is_set():
            stats = await self.drain()
            iterations += 1
            if prune_every and iterations % prune_every == 0:
                await self.queue.prune()
            if stats["processed"] == 0:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("Job worker stopped")

    def stop(self) -> None:
        self._stopping.set()
