"""
Tests for the durable job queue: priorities, retries, retention and worker events.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from storage.job_store import JobStatus, JobStore


class Clock:
    def __init__(self):
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
async def jobs(db_path):
    store = JobStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def queue(jobs, clock):
    from workflows.job_queue import JobQueue
    return JobQueue(jobs, clock=clock)


class TestJobQueue:
    async def test_webhook_job_claimed_before_older_manual_job(self, queue, clock):
        manual_id = await queue.enqueue("collect-signals", {"source": "manual"}, priority=2)
        clock.advance(seconds=5)
        webhook_id = await queue.enqueue("collect-signals", {"source": "webhook"}, priority=1)

        first = await queue.claim_next()
        second = await queue.claim_next()

        assert first.id == webhook_id
        assert second.id == manual_id
        assert await queue.claim_next() is None

    async def test_same_priority_is_fifo(self, queue, clock):
        ids = []
        for n in range(3):
            ids.append(await queue.enqueue("collect-signals", {"n": n}))
            clock.advance(seconds=1)

        claimed = [(await queue.claim_next()).id for _ in range(3)]
        assert claimed == ids

    async def test_enqueue_bulk(self, queue):
        ids = await queue.enqueue_bulk("collect-signals", [{"n": 1}, {"n": 2}], priority=1)

        assert len(set(ids)) == 2
        assert (await queue.get_stats())["waiting"] == 2
        assert (await queue.get_job(ids[1])).priority == 1

    async def test_claim_marks_active_and_counts_attempt(self, queue):
        job_id = await queue.enqueue("collect-signals", {"filters": {"keywords": ["VP"]}})

        job = await queue.claim_next()

        assert job.id == job_id
        assert job.status == JobStatus.ACTIVE
        assert job.attempts == 1
        assert job.payload == {"filters": {"keywords": ["VP"]}}
        assert (await queue.get_stats())["active"] == 1

    async def test_failed_attempt_backs_off_exponentially(self, queue, clock):
        await queue.enqueue("collect-signals", {})

        job = await queue.claim_next()
        assert await queue.fail(job, "serpapi down") is True

        # first retry waits 2s
        assert await queue.claim_next() is None
        clock.advance(seconds=2)
        job = await queue.claim_next()
        assert job.attempts == 2
        assert job.last_error == "serpapi down"

        # second retry waits 4s
        assert await queue.fail(job, "still down") is True
        clock.advance(seconds=3)
        assert await queue.claim_next() is None
        clock.advance(seconds=1)
        job = await queue.claim_next()
        assert job.attempts == 3

        # third failure is terminal
        assert await queue.fail(job, "gave up") is False
        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.finished_at == clock.now

    async def test_complete_stores_result(self, queue):
        await queue.enqueue("collect-signals", {})
        job = await queue.claim_next()

        await queue.complete(job, {"count": 4})
        await queue.complete(job, 7)

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result == {"value": 7}

    async def test_prune_applies_retention_windows(self, queue, clock):
        for _ in range(2):
            await queue.enqueue("collect-signals", {})
        done = await queue.claim_next()
        await queue.complete(done, {"count": 0})

        failing = await queue.claim_next()
        for _ in range(3):
            await queue.fail(failing, "boom")
            failing.attempts += 1

        clock.advance(minutes=30)
        assert await queue.prune() == {"completed": 0, "failed": 0}

        clock.advance(minutes=31)
        assert await queue.prune() == {"completed": 1, "failed": 0}

        clock.advance(hours=24)
        assert await queue.prune() == {"completed": 0, "failed": 1}

    async def test_prune_caps_completed_count(self, jobs, clock):
        from workflows.job_queue import JobQueue

        queue = JobQueue(jobs, clock=clock, completed_max_count=2)
        for _ in range(3):
            await queue.enqueue("collect-signals", {})
        for _ in range(3):
            job = await queue.claim_next()
            await queue.complete(job)
            clock.advance(seconds=1)

        assert (await queue.prune())["completed"] == 1
        assert (await queue.get_stats())["completed"] == 2


class TestJobWorker:
    async def test_drain_completes_jobs_and_publishes(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs)
        for n in range(3):
            await queue.enqueue("collect-signals", {"n": n})

        async def handler(job):
            return {"count": job.payload["n"]}

        events = []
        worker = JobWorker(queue, handler, concurrency=2, rate_per_second=None)
        worker.subscribe(lambda event, job, detail: events.append((event, detail)))

        stats = await worker.drain()

        assert stats == {"processed": 3, "completed": 3, "retried": 0, "failed": 0}
        assert sorted(detail["count"] for _, detail in events) == [0, 1, 2]
        assert all(event == "completed" for event, _ in events)

    async def test_failure_is_retried_later_not_published(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs)
        await queue.enqueue("collect-signals", {})

        async def handler(job):
            raise RuntimeError("collector exploded")

        events = []
        worker = JobWorker(queue, handler, rate_per_second=None)
        worker.subscribe(lambda event, job, detail: events.append(event))

        stats = await worker.drain()

        assert stats["retried"] == 1
        assert events == []
        assert (await queue.get_stats())["waiting"] == 1

    async def test_terminal_failure_publishes_failed(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs, max_attempts=1)
        await queue.enqueue("collect-signals", {})

        async def handler(job):
            raise RuntimeError("bad payload")

        received = []

        async def listener(event, job, detail):
            received.append((event, detail))

        worker = JobWorker(queue, handler, rate_per_second=None)
        worker.subscribe(listener)

        stats = await worker.drain()

        assert stats["failed"] == 1
        assert received == [("failed", "bad payload")]

    async def test_listener_errors_do_not_break_worker(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs)
        await queue.enqueue("collect-signals", {})

        async def handler(job):
            return None

        def broken(event, job, detail):
            raise ValueError("listener bug")

        worker = JobWorker(queue, handler, rate_per_second=None)
        worker.subscribe(broken)

        assert (await worker.drain())["completed"] == 1

    async def test_unsubscribe(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs)
        await queue.enqueue("collect-signals", {})

        async def handler(job):
            return None

        events = []
        worker = JobWorker(queue, handler, rate_per_second=None)
        unsubscribe = worker.subscribe(lambda *args: events.append(args))
        unsubscribe()

        await worker.drain()
        assert events == []

    async def test_drain_respects_limit(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs)
        for _ in range(4):
            await queue.enqueue("collect-signals", {})

        async def handler(job):
            return None

        worker = JobWorker(queue, handler, rate_per_second=None)
        assert (await worker.drain(limit=2))["processed"] == 2
        assert (await queue.get_stats())["waiting"] == 2

    async def test_run_forever_stops(self, jobs):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs)

        async def handler(job):
            return None

        worker = JobWorker(queue, handler, rate_per_second=None)
        task = asyncio.create_task(worker.run_forever(poll_interval=0.01))
        await queue.enqueue("collect-signals", {})
        await asyncio.sleep(0.1)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert (await queue.get_stats())["completed"] == 1


class TestStalledJobs:
    async def test_job_abandoned_by_dead_worker_runs_on_next_drain(self, jobs, clock):
        from workflows.job_queue import JobQueue, JobWorker

        queue = JobQueue(jobs, clock=clock)
        job_id = await queue.enqueue("collect-signals", {})
        await queue.claim_next()  # claimed, then the worker process dies

        async def handler(job):
            return {"count": 1}

        worker = JobWorker(queue, handler, rate_per_second=None)

        clock.advance(minutes=5)
        assert (await worker.drain())["processed"] == 0
        assert (await queue.get_stats())["active"] == 1

        clock.advance(minutes=6)
        stats = await worker.drain()

        assert stats["completed"] == 1
        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.attempts == 2

    async def test_stalled_job_out_of_attempts_is_failed(self, jobs, clock):
        from workflows.job_queue import JobQueue

        queue = JobQueue(jobs, clock=clock, max_attempts=1)
        job_id = await queue.enqueue("collect-signals", {})
        await queue.claim_next()

        clock.advance(minutes=11)
        assert await queue.recover_stalled() == {"requeued": 0, "failed": 1}

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.last_error == "worker lease expired"
        assert stored.finished_at == clock.now

    async def test_lease_timeout_is_configurable(self, jobs, clock):
        from workflows.job_queue import JobQueue

        queue = JobQueue(jobs, clock=clock, lease_timeout=timedelta(seconds=30))
        await queue.enqueue("collect-signals", {})
        await queue.claim_next()

        clock.advance(seconds=31)
        assert await queue.recover_stalled() == {"requeued": 1, "failed": 0}
        assert (await queue.claim_next()).attempts == 2
