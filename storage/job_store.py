"""
Durable job storage for the background ingestion queue.

Jobs move waiting -> active -> completed, or back to waiting with a later
available_at after a failed attempt, until attempts run out and the job is
marked failed. Claiming is a conditional UPDATE inside a transaction, so two
workers can never claim the same job.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

from signal_engine.models import parse_timestamp, utc_now
from storage.base_store import SQLiteStore

logger = logging.getLogger(__name__)


MIGRATIONS = {
    1: """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        payload TEXT NOT NULL DEFAULT '{}',  -- JSON
        priority INTEGER NOT NULL DEFAULT 2,  -- lower runs first
        status TEXT NOT NULL DEFAULT 'waiting',
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 3,
        available_at TEXT NOT NULL,
        last_error TEXT,
        result TEXT,  -- JSON
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        finished_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(status, priority, available_at);
    CREATE INDEX IF NOT EXISTS idx_jobs_finished ON jobs(status, finished_at);
    """,
}


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    id: str
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: int = 2
    status: JobStatus = JobStatus.WAITING
    attempts: int = 0
    max_attempts: int = 3
    available_at: datetime = field(default_factory=utc_now)
    last_error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class JobStore(SQLiteStore):
    """aiosqlite-backed job table."""

    MIGRATIONS = MIGRATIONS
    MIGRATION_TABLE = "job_migrations"

    async def insert_job(
        self,
        name: str,
        payload: Dict[str, Any],
        priority: int,
        max_attempts: int,
        now: datetime,
    ) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            name=name,
            payload=payload,
            priority=priority,
            max_attempts=max_attempts,
            available_at=now,
            created_at=now,
            updated_at=now,
        )
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO jobs (
                    id, name, payload, priority, status, attempts, max_attempts,
                    available_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, 'waiting', 0, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    name,
                    json.dumps(payload, default=str),
                    priority,
                    max_attempts,
                    now.isoformat(),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        return job

    async def claim_next(self, now: datetime) -> Optional[Job]:
        """Move the most urgent ready job to active and return it."""
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                SELECT id FROM jobs
                WHERE status = 'waiting' AND available_at <= ?
                ORDER BY priority ASC, created_at ASC, rowid ASC
                LIMIT 1
                """,
                (now.isoformat(),),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            cursor = await conn.execute(
                """
                UPDATE jobs
                SET status = 'active', attempts = attempts + 1, updated_at = ?
                WHERE id = ? AND status = 'waiting'
                """,
                (now.isoformat(), row["id"]),
            )
            if cursor.rowcount == 0:
                return None

            cursor = await conn.execute("SELECT * FROM jobs WHERE id = ?", (row["id"],))
            claimed = await cursor.fetchone()

        return self._row_to_job(claimed)

    async def mark_completed(self, job_id: str, result: Optional[Dict[str, Any]], now: datetime) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE jobs
                SET status = 'completed', result = ?, updated_at = ?, finished_at = ?
                WHERE id = ?
                """,
                (json.dumps(result, default=str) if result is not None else None,
                 now.isoformat(), now.isoformat(), job_id),
            )

    async def mark_retry(self, job_id: str, error: str, available_at: datetime, now: datetime) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE jobs
                SET status = 'waiting', last_error = ?, available_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (error, available_at.isoformat(), now.isoformat(), job_id),
            )

    async def mark_failed(self, job_id: str, error: str, now: datetime) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE jobs
                SET status = 'failed', last_error = ?, updated_at = ?, finished_at = ?
                WHERE id = ?
                """,
                (error, now.isoformat(), now.isoformat(), job_id),
            )

    async def requeue_stale(self, cutoff: datetime, now: datetime) -> Dict[str, int]:
        """
        Recover active jobs whose claim is older than `cutoff`.

        A job with attempts left goes back to waiting; one that has used its
        last attempt is failed.
        """
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE jobs
                SET status = 'failed', last_error = ?, updated_at = ?, finished_at = ?
                WHERE status = 'active' AND updated_at < ? AND attempts >= max_attempts
                """,
                ("worker lease expired", now.isoformat(), now.isoformat(), cutoff.isoformat()),
            )
            failed = cursor.rowcount

            cursor = await conn.execute(
                """
                UPDATE jobs
                SET status = 'waiting', last_error = ?, available_at = ?, updated_at = ?
                WHERE status = 'active' AND updated_at < ?
                """,
                ("worker lease expired", now.isoformat(), now.isoformat(), cutoff.isoformat()),
            )
            requeued = cursor.rowcount

        return {"requeued": requeued, "failed": failed}

    async def get_job(self, job_id: str) -> Optional[Job]:
        cursor = await self.db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
        row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[Job]:
        if status is None:
            cursor = await self.db.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
        else:
            cursor = await self.db.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (status.value, limit),
            )
        return [self._row_to_job(row) for row in await cursor.fetchall()]

    async def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        cursor = await self.db.execute("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status")
        for row in await cursor.fetchall():
            counts[row["status"]] = row["n"]
        return counts

    async def delete_finished_before(self, status: JobStatus, cutoff: datetime) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM jobs WHERE status = ? AND finished_at < ?",
                (status.value, cutoff.isoformat()),
            )
            return cursor.rowcount

    async def trim_finished(self, status: JobStatus, keep: int) -> int:
        """Keep only the newest `keep` finished jobs of a status."""
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM jobs
                WHERE status = ? AND id NOT IN (
                    SELECT id FROM jobs WHERE status = ?
                    ORDER BY finished_at DESC, rowid DESC
                    LIMIT ?
                )
                """,
                (status.value, status.value, keep),
            )
            return cursor.rowcount

    def _row_to_job(self, row: aiosqlite.Row) -> Job:
        return Job(
            id=row["id"],
            name=row["name"],
            payload=json.loads(row["payload"] or "{}"),
            priority=row["priority"],
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            available_at=parse_timestamp(row["available_at"]),
            last_error=row["last_error"],
            result=json.loads(row["result"]) if row["result"] else None,
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            finished_at=parse_timestamp(row["finished_at"]),
        )


@asynccontextmanager
async def job_store(db_path: str | Path = "signals.db") -> AsyncIterator[JobStore]:
    store = JobStore(db_path)
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()
