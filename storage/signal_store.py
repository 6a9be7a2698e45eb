"""
Signal Storage Layer

Persistent SQLite storage for signals and everything derived from them:
- Deduplication via natural keys (UNIQUE per signal type)
- Company enrichment (0 or 1 per signal)
- Action buckets and bucket assignments
- Candidate profiles produced by the orchestration workflow
- Partner integrations, mirrored job postings, sync logs and applications

Tables:
  - signals: normalized external events
  - enrichments: company metadata per signal
  - action_buckets: one row per bucket type
  - bucket_assignments: signal <-> bucket with confidence
  - candidate_profiles: ranked candidates per bucket
  - partner_integrations: one row per partner platform
  - partner_job_postings: partner-side view of a signal's job posting
  - partner_sync_logs: append-only audit of sync attempts
  - applications: candidate applications received through partner webhooks

Usage:
    async with signal_store("signals.db") as store:
        signal = await store.store_if_new(record)
        if signal is None:
            print("duplicate")
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

import aiosqlite

from signal_engine.models import (
    ActionBucket,
    Application,
    ApplicationStatus,
    BucketAssignment,
    BucketType,
    CandidateProfile,
    Enrichment,
    IntegrationStatus,
    JobPostingStatus,
    PartnerIntegration,
    PartnerJobPosting,
    PartnerType,
    Signal,
    SignalRecord,
    SignalType,
    SyncLogEntry,
    SyncStatus,
    parse_timestamp,
)
from storage.base_store import SQLiteStore
from utils.natural_keys import build_natural_key, natural_key_for

logger = logging.getLogger(__name__)


# =============================================================================
# SCHEMA VERSION
# =============================================================================

CURRENT_SCHEMA_VERSION = 2

MIGRATIONS = {
    1: """
    CREATE TABLE IF NOT EXISTS signals (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        source TEXT NOT NULL,
        title TEXT,
        company_name TEXT NOT NULL,
        company_url TEXT,
        job_url TEXT,
        location TEXT,
        posted_date TEXT,  -- ISO 8601
        raw_data TEXT NOT NULL DEFAULT '{}',  -- JSON
        natural_key TEXT NOT NULL,
        processed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,

        UNIQUE(type, natural_key)
    );

    CREATE INDEX IF NOT EXISTS idx_signals_type_processed ON signals(type, processed);
    CREATE INDEX IF NOT EXISTS idx_signals_created_at ON signals(created_at);

    CREATE TABLE IF NOT EXISTS enrichments (
        id TEXT PRIMARY KEY,
        signal_id TEXT NOT NULL UNIQUE,
        company_size INTEGER,
        employee_count_in_target_country INTEGER,
        industry TEXT,
        headquarters TEXT,
        funding_amount REAL,
        funding_date TEXT,
        decision_makers TEXT NOT NULL DEFAULT '[]',  -- JSON
        raw_data TEXT NOT NULL DEFAULT '{}',  -- JSON
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,

        FOREIGN KEY (signal_id) REFERENCES signals(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS action_buckets (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT NOT NULL,
        priority INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS bucket_assignments (
        id TEXT PRIMARY KEY,
        bucket_id TEXT NOT NULL,
        signal_id TEXT NOT NULL,
        confidence REAL NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,

        UNIQUE(bucket_id, signal_id),
        FOREIGN KEY (bucket_id) REFERENCES action_buckets(id) ON DELETE CASCADE,
        FOREIGN KEY (signal_id) REFERENCES signals(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_assignments_signal_id ON bucket_assignments(signal_id);

    CREATE TABLE IF NOT EXISTS candidate_profiles (
        id TEXT PRIMARY KEY,
        bucket_id TEXT,
        name TEXT NOT NULL,
        title TEXT,
        company TEXT,
        location TEXT,
        linkedin_url TEXT,
        email TEXT,
        skills TEXT NOT NULL DEFAULT '[]',  -- JSON
        tenure_months INTEGER,
        likelihood_to_move REAL NOT NULL,
        source TEXT NOT NULL,
        created_at TEXT NOT NULL,

        FOREIGN KEY (bucket_id) REFERENCES action_buckets(id) ON DELETE SET NULL
    );

    CREATE INDEX IF NOT EXISTS idx_candidates_bucket_id ON candidate_profiles(bucket_id);
    """,
    2: """
    CREATE TABLE IF NOT EXISTS partner_integrations (
        id TEXT PRIMARY KEY,
        partner TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        api_key TEXT,
        access_token TEXT,
        refresh_token TEXT,
        webhook_secret TEXT,
        config TEXT NOT NULL DEFAULT '{}',  -- JSON
        last_sync_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS partner_job_postings (
        id TEXT PRIMARY KEY,
        integration_id TEXT NOT NULL,
        signal_id TEXT,
        partner_job_id TEXT NOT NULL,
        status TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',  -- JSON: partner view of title/location
        application_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,

        UNIQUE(integration_id, partner_job_id),
        FOREIGN KEY (integration_id) REFERENCES partner_integrations(id) ON DELETE CASCADE,
        FOREIGN KEY (signal_id) REFERENCES signals(id) ON DELETE SET NULL
    );

    CREATE INDEX IF NOT EXISTS idx_partner_postings_signal_id ON partner_job_postings(signal_id);

    CREATE TABLE IF NOT EXISTS partner_sync_logs (
        id TEXT PRIMARY KEY,
        integration_id TEXT NOT NULL,
        sync_type TEXT NOT NULL,
        status TEXT NOT NULL,
        records_processed INTEGER NOT NULL DEFAULT 0,
        records_failed INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',  -- JSON
        started_at TEXT NOT NULL,
        completed_at TEXT,

        FOREIGN KEY (integration_id) REFERENCES partner_integrations(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_sync_logs_started_at ON partner_sync_logs(started_at);

    CREATE TABLE IF NOT EXISTS applications (
        id TEXT PRIMARY KEY,
        job_posting_id TEXT NOT NULL,
        status TEXT NOT NULL,
        source TEXT NOT NULL,
        partner_application_id TEXT,
        partner_data TEXT NOT NULL DEFAULT '{}',  -- JSON
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,

        FOREIGN KEY (job_posting_id) REFERENCES partner_job_postings(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_applications_partner_id ON applications(partner_application_id);
    """,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class AssignedSignal:
    """A signal as seen through one of its bucket assignments."""
    signal: Signal
    confidence: float
    enrichment: Optional[Enrichment] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.signal.to_dict()
        data["confidence"] = self.confidence
        data["enrichment"] = self.enrichment.to_dict() if self.enrichment else None
        return data


@dataclass
class BucketView:
    """An action bucket with its assigned signals."""
    bucket: ActionBucket
    signals: List[AssignedSignal] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.bucket.id,
            "type": self.bucket.type.value,
            "name": self.bucket.name,
            "description": self.bucket.description,
            "priority": self.bucket.priority,
            "isActive": self.bucket.is_active,
            "signals": [s.to_dict() for s in self.signals],
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# SIGNAL STORE
# =============================================================================

class SignalStore(SQLiteStore):
    """
    Async SQLite storage for signals, buckets and partner state.

    All writers use upsert or unique-constraint semantics, so concurrent
    ingestion runs and sync passes never overwrite each other's inserts.
    """

    MIGRATIONS = MIGRATIONS
    MIGRATION_TABLE = "schema_migrations"

    def __init__(self, db_path: str | Path = "signals.db"):
        super().__init__(db_path)

    # =========================================================================
    # SIGNALS
    # =========================================================================

    async def store_if_new(self, record: SignalRecord) -> Optional[Signal]:
        """
        Insert a signal unless its natural key already exists.

        Returns the stored Signal, or None for a duplicate. The UNIQUE
        constraint on (type, natural_key) makes the check-then-insert atomic
        against concurrent ingestion runs.
        """
        natural_key = natural_key_for(record)
        signal_id = _new_id()
        now = _now()

        async with self.transaction() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM signals WHERE type = ? AND natural_key = ?",
                (record.type.value, natural_key),
            )
            if await cursor.fetchone():
                logger.debug(f"Duplicate signal: {record.type.value} {natural_key}")
                return None

            cursor = await conn.execute(
                """
                INSERT INTO signals (
                    id, type, source, title, company_name, company_url, job_url,
                    location, posted_date, raw_data, natural_key, processed,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(type, natural_key) DO NOTHING
                """,
                (
                    signal_id,
                    record.type.value,
                    record.source,
                    record.title,
                    record.company_name,
                    record.company_url,
                    record.job_url,
                    record.location,
                    _iso(record.posted_date),
                    json.dumps(record.raw_data, default=str),
                    natural_key,
                    now,
                    now,
                ),
            )
            if cursor.rowcount == 0:
                return None

        logger.debug(f"Stored signal {signal_id}: {record.type.value} for {record.company_name}")
        return await self.get_signal(signal_id)

    async def find_signal(self, record: SignalRecord) -> Optional[Signal]:
        """Find the stored signal sharing a record's natural key."""
        cursor = await self.db.execute(
            "SELECT * FROM signals WHERE type = ? AND natural_key = ?",
            (record.type.value, natural_key_for(record)),
        )
        row = await cursor.fetchone()
        return self._row_to_signal(row) if row else None

    async def signal_exists(
        self,
        signal_type: SignalType,
        company_name: str,
        job_url: Optional[str] = None,
        posted_date: Optional[datetime] = None,
    ) -> bool:
        natural_key = build_natural_key(signal_type, company_name, job_url, posted_date)
        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM signals WHERE type = ? AND natural_key = ?",
            (signal_type.value, natural_key),
        )
        row = await cursor.fetchone()
        return row[0] > 0 if row else False

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        cursor = await self.db.execute("SELECT * FROM signals WHERE id = ?", (signal_id,))
        row = await cursor.fetchone()
        return self._row_to_signal(row) if row else None

    async def list_signals(
        self,
        signal_type: Optional[SignalType] = None,
        processed: Optional[bool] = None,
        limit: int = 50,
    ) -> List[Signal]:
        """List signals, newest first."""
        query = "SELECT * FROM signals WHERE 1 = 1"
        params: List[Any] = []

        if signal_type is not None:
            query += " AND type = ?"
            params.append(signal_type.value)
        if processed is not None:
            query += " AND processed = ?"
            params.append(1 if processed else 0)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        cursor = await self.db.execute(query, params)
        return [self._row_to_signal(row) for row in await cursor.fetchall()]

    async def get_unprocessed_signals(
        self,
        limit: int = 100,
        signal_type: Optional[SignalType] = None,
        signal_ids: Optional[Iterable[str]] = None,
    ) -> List[Signal]:
        """Oldest-first batch of signals that have not been processed."""
        query = "SELECT * FROM signals WHERE processed = 0"
        params: List[Any] = []

        if signal_type is not None:
            query += " AND type = ?"
            params.append(signal_type.value)

        if signal_ids is not None:
            ids = list(signal_ids)
            if not ids:
                return []
            query += f" AND id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)

        query += " ORDER BY created_at ASC LIMIT ?"
        params.append(limit)

        cursor = await self.db.execute(query, params)
        return [self._row_to_signal(row) for row in await cursor.fetchall()]

    async def mark_processed(self, signal_id: str) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                "UPDATE signals SET processed = 1 WHERE id = ?",
                (signal_id,),
            )

    async def update_signal_fields(
        self,
        signal_id: str,
        title: Optional[str] = None,
        location: Optional[str] = None,
    ) -> None:
        """Update the mutable job-posting fields and bump updated_at."""
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE signals
                SET title = COALESCE(?, title),
                    location = COALESCE(?, location),
                    updated_at = ?
                WHERE id = ?
                """,
                (title, location, _now(), signal_id),
            )

    # =========================================================================
    # ENRICHMENT
    # =========================================================================

    async def upsert_enrichment(self, enrichment: Enrichment) -> None:
        now = _now()
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO enrichments (
                    id, signal_id, company_size, employee_count_in_target_country,
                    industry, headquarters, funding_amount, funding_date,
                    decision_makers, raw_data, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(signal_id) DO UPDATE SET
                    company_size = excluded.company_size,
                    employee_count_in_target_country = excluded.employee_count_in_target_country,
                    industry = excluded.industry,
                    headquarters = excluded.headquarters,
                    funding_amount = excluded.funding_amount,
                    funding_date = excluded.funding_date,
                    decision_makers = excluded.decision_makers,
                    raw_data = excluded.raw_data,
                    updated_at = excluded.updated_at
                """,
                (
                    _new_id(),
                    enrichment.signal_id,
                    enrichment.company_size,
                    enrichment.employee_count_in_target_country,
                    enrichment.industry,
                    enrichment.headquarters,
                    enrichment.funding_amount,
                    _iso(enrichment.funding_date),
                    json.dumps(enrichment.decision_makers, default=str),
                    json.dumps(enrichment.raw_data, default=str),
                    now,
                    now,
                ),
            )

    async def get_enrichment(self, signal_id: str) -> Optional[Enrichment]:
        cursor = await self.db.execute(
            "SELECT * FROM enrichments WHERE signal_id = ?",
            (signal_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_enrichment(row) if row else None

    # =========================================================================
    # BUCKETS
    # =========================================================================

    async def ensure_bucket(
        self,
        bucket_type: BucketType,
        name: str,
        description: str,
        priority: int = 0,
    ) -> ActionBucket:
        """Idempotently create the single bucket row for a type."""
        now = _now()
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO action_buckets (
                    id, type, name, description, priority, is_active, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(type) DO NOTHING
                """,
                (_new_id(), bucket_type.value, name, description, priority, now, now),
            )

        bucket = await self.get_bucket_by_type(bucket_type)
        assert bucket is not None
        return bucket

    async def get_bucket(self, bucket_id: str) -> Optional[ActionBucket]:
        cursor = await self.db.execute("SELECT * FROM action_buckets WHERE id = ?", (bucket_id,))
        row = await cursor.fetchone()
        return self._row_to_bucket(row) if row else None

    async def get_bucket_by_type(self, bucket_type: BucketType) -> Optional[ActionBucket]:
        cursor = await self.db.execute(
            "SELECT * FROM action_buckets WHERE type = ?",
            (bucket_type.value,),
        )
        row = await cursor.fetchone()
        return self._row_to_bucket(row) if row else None

    async def upsert_assignment(self, bucket_id: str, signal_id: str, confidence: float) -> None:
        """Assign a signal to a bucket; re-runs overwrite the confidence."""
        now = _now()
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO bucket_assignments (
                    id, bucket_id, signal_id, confidence, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(bucket_id, signal_id) DO UPDATE SET
                    confidence = excluded.confidence,
                    updated_at = excluded.updated_at
                """,
                (_new_id(), bucket_id, signal_id, confidence, now, now),
            )

    async def get_assignments_for_signal(self, signal_id: str) -> List[BucketAssignment]:
        cursor = await self.db.execute(
            "SELECT bucket_id, signal_id, confidence FROM bucket_assignments WHERE signal_id = ?",
            (signal_id,),
        )
        return [
            BucketAssignment(
                bucket_id=row["bucket_id"],
                signal_id=row["signal_id"],
                confidence=row["confidence"],
            )
            for row in await cursor.fetchall()
        ]

    async def get_bucket_signals(self, bucket_id: str) -> List[AssignedSignal]:
        """Signals assigned to a bucket, highest confidence first."""
        cursor = await self.db.execute(
            """
            SELECT s.*, a.confidence AS assignment_confidence
            FROM bucket_assignments a
            INNER JOIN signals s ON s.id = a.signal_id
            WHERE a.bucket_id = ?
            ORDER BY a.confidence DESC, s.created_at ASC
            """,
            (bucket_id,),
        )
        rows = await cursor.fetchall()

        assigned = []
        for row in rows:
            signal = self._row_to_signal(row)
            assigned.append(
                AssignedSignal(
                    signal=signal,
                    confidence=row["assignment_confidence"],
                    enrichment=await self.get_enrichment(signal.id),
                )
            )
        return assigned

    async def get_active_buckets_with_signals(self) -> List[BucketView]:
        """All active buckets ordered by descending priority, with signals."""
        cursor = await self.db.execute(
            "SELECT * FROM action_buckets WHERE is_active = 1 ORDER BY priority DESC, type ASC"
        )
        buckets = [self._row_to_bucket(row) for row in await cursor.fetchall()]

        return [
            BucketView(bucket=bucket, signals=await self.get_bucket_signals(bucket.id))
            for bucket in buckets
        ]

    # =========================================================================
    # CANDIDATES
    # =========================================================================

    async def save_candidate_profiles(
        self,
        bucket_id: str,
        profiles: List[CandidateProfile],
    ) -> List[CandidateProfile]:
        now = _now()
        async with self.transaction() as conn:
            for profile in profiles:
                profile.id = profile.id or _new_id()
                profile.bucket_id = bucket_id
                await conn.execute(
                    """
                    INSERT INTO candidate_profiles (
                        id, bucket_id, name, title, company, location, linkedin_url,
                        email, skills, tenure_months, likelihood_to_move, source, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        profile.id,
                        bucket_id,
                        profile.name,
                        profile.title,
                        profile.company,
                        profile.location,
                        profile.linkedin_url,
                        profile.email,
                        json.dumps(profile.skills),
                        profile.tenure_months,
                        profile.likelihood_to_move,
                        profile.source,
                        now,
                    ),
                )
        return profiles

    async def get_candidates_for_bucket(self, bucket_id: str) -> List[CandidateProfile]:
        cursor = await self.db.execute(
            """
            SELECT * FROM candidate_profiles
            WHERE bucket_id = ?
            ORDER BY likelihood_to_move DESC
            """,
            (bucket_id,),
        )
        return [self._row_to_candidate(row) for row in await cursor.fetchall()]

    # =========================================================================
    # PARTNER INTEGRATIONS
    # =========================================================================

    async def create_integration(
        self,
        partner: PartnerType,
        status: IntegrationStatus = IntegrationStatus.PENDING,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> PartnerIntegration:
        """Create or replace the credentials of a partner's integration row."""
        now = _now()
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO partner_integrations (
                    id, partner, status, api_key, access_token, refresh_token,
                    webhook_secret, config, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(partner) DO UPDATE SET
                    status = excluded.status,
                    api_key = excluded.api_key,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    webhook_secret = excluded.webhook_secret,
                    config = excluded.config,
                    updated_at = excluded.updated_at
                """,
                (
                    _new_id(),
                    partner.value,
                    status.value,
                    api_key,
                    access_token,
                    refresh_token,
                    webhook_secret,
                    json.dumps(config or {}),
                    now,
                    now,
                ),
            )

        integration = await self.get_integration_by_partner(partner)
        assert integration is not None
        return integration

    async def get_integration(self, integration_id: str) -> Optional[PartnerIntegration]:
        cursor = await self.db.execute(
            "SELECT * FROM partner_integrations WHERE id = ?",
            (integration_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_integration(row) if row else None

    async def get_integration_by_partner(self, partner: PartnerType) -> Optional[PartnerIntegration]:
        cursor = await self.db.execute(
            "SELECT * FROM partner_integrations WHERE partner = ?",
            (partner.value,),
        )
        row = await cursor.fetchone()
        return self._row_to_integration(row) if row else None

    async def get_active_integration(self, partner: PartnerType) -> Optional[PartnerIntegration]:
        integration = await self.get_integration_by_partner(partner)
        if integration and integration.status == IntegrationStatus.ACTIVE:
            return integration
        return None

    async def list_integrations(
        self,
        status: Optional[IntegrationStatus] = None,
        partner: Optional[PartnerType] = None,
    ) -> List[PartnerIntegration]:
        query = "SELECT * FROM partner_integrations WHERE 1 = 1"
        params: List[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if partner is not None:
            query += " AND partner = ?"
            params.append(partner.value)
        query += " ORDER BY partner ASC"

        cursor = await self.db.execute(query, params)
        return [self._row_to_integration(row) for row in await cursor.fetchall()]

    async def update_integration_status(
        self,
        integration_id: str,
        status: IntegrationStatus,
        last_sync_at: Optional[datetime] = None,
    ) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE partner_integrations
                SET status = ?,
                    last_sync_at = COALESCE(?, last_sync_at),
                    updated_at = ?
                WHERE id = ?
                """,
                (status.value, _iso(last_sync_at), _now(), integration_id),
            )

    async def update_integration_tokens(
        self,
        integration_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
    ) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                UPDATE partner_integrations
                SET access_token = ?,
                    refresh_token = COALESCE(?, refresh_token),
                    updated_at = ?
                WHERE id = ?
                """,
                (access_token, refresh_token, _now(), integration_id),
            )

    # =========================================================================
    # PARTNER JOB POSTINGS
    # =========================================================================

    async def upsert_partner_job_posting(
        self,
        integration_id: str,
        partner_job_id: str,
        status: JobPostingStatus,
        signal_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PartnerJobPosting:
        """Create or update the posting keyed by (integration_id, partner_job_id)."""
        now = _now()
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO partner_job_postings (
                    id, integration_id, signal_id, partner_job_id, status, metadata,
                    application_count, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(integration_id, partner_job_id) DO UPDATE SET
                    status = excluded.status,
                    signal_id = COALESCE(excluded.signal_id, partner_job_postings.signal_id),
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (
                    _new_id(),
                    integration_id,
                    signal_id,
                    partner_job_id,
                    status.value,
                    json.dumps(metadata or {}, default=str),
                    now,
                    now,
                ),
            )

        posting = await self.get_partner_job_posting(integration_id, partner_job_id)
        if posting is None:
            raise RuntimeError(f"Posting {partner_job_id} vanished after upsert for integration {integration_id}")
        return posting

    async def get_partner_job_posting(
        self,
        integration_id: str,
        partner_job_id: str,
    ) -> Optional[PartnerJobPosting]:
        cursor = await self.db.execute(
            """
            SELECT * FROM partner_job_postings
            WHERE integration_id = ? AND partner_job_id = ?
            """,
            (integration_id, partner_job_id),
        )
        row = await cursor.fetchone()
        return self._row_to_posting(row) if row else None

    async def update_partner_job_status(
        self,
        integration_id: str,
        partner_job_id: str,
        status: JobPostingStatus,
    ) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE partner_job_postings
                SET status = ?, updated_at = ?
                WHERE integration_id = ? AND partner_job_id = ?
                """,
                (status.value, _now(), integration_id, partner_job_id),
            )
            return cursor.rowcount

    async def update_partner_job_metadata(self, posting_id: str, metadata: Dict[str, Any]) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                "UPDATE partner_job_postings SET metadata = ?, updated_at = ? WHERE id = ?",
                (json.dumps(metadata, default=str), _now(), posting_id),
            )

    async def get_linked_postings(
        self,
        integration_ids: Optional[Iterable[str]] = None,
    ) -> List[Tuple[PartnerJobPosting, Signal]]:
        """Postings that are linked to a signal, paired with that signal."""
        query = """
            SELECT p.*, s.id AS s_id
            FROM partner_job_postings p
            INNER JOIN signals s ON s.id = p.signal_id
        """
        params: List[Any] = []
        if integration_ids is not None:
            ids = list(integration_ids)
            if not ids:
                return []
            query += f" WHERE p.integration_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)

        cursor = await self.db.execute(query, params)
        pairs = []
        for row in await cursor.fetchall():
            signal = await self.get_signal(row["s_id"])
            if signal is not None:
                pairs.append((self._row_to_posting(row), signal))
        return pairs

    async def count_job_postings(self, integration_id: str) -> int:
        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM partner_job_postings WHERE integration_id = ?",
            (integration_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    # =========================================================================
    # SYNC LOGS
    # =========================================================================

    async def log_sync(
        self,
        integration_id: str,
        sync_type: str,
        status: SyncStatus,
        records_processed: int = 0,
        records_failed: int = 0,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        started_at: Optional[datetime] = None,
    ) -> SyncLogEntry:
        """Append a sync audit row. Rows are never updated."""
        entry = SyncLogEntry(
            id=_new_id(),
            integration_id=integration_id,
            sync_type=sync_type,
            status=status,
            records_processed=records_processed,
            records_failed=records_failed,
            error_message=error_message,
            metadata=metadata or {},
            started_at=started_at or datetime.now(timezone.utc),
            completed_at=datetime.now(timezone.utc),
        )
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO partner_sync_logs (
                    id, integration_id, sync_type, status, records_processed,
                    records_failed, error_message, metadata, started_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.integration_id,
                    entry.sync_type,
                    entry.status.value,
                    entry.records_processed,
                    entry.records_failed,
                    entry.error_message,
                    json.dumps(entry.metadata, default=str),
                    _iso(entry.started_at),
                    _iso(entry.completed_at),
                ),
            )
        return entry

    async def get_sync_logs(
        self,
        integration_id: Optional[str] = None,
        status: Optional[SyncStatus] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[SyncLogEntry]:
        """Sync logs, newest first."""
        query = "SELECT * FROM partner_sync_logs WHERE 1 = 1"
        params: List[Any] = []
        if integration_id is not None:
            query += " AND integration_id = ?"
            params.append(integration_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if since is not None:
            query += " AND started_at >= ?"
            params.append(since.isoformat())
        query += " ORDER BY started_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self.db.execute(query, params)
        return [self._row_to_sync_log(row) for row in await cursor.fetchall()]

    # =========================================================================
    # APPLICATIONS
    # =========================================================================

    async def create_application(
        self,
        job_posting_id: str,
        source: str,
        partner_data: Dict[str, Any],
        status: ApplicationStatus = ApplicationStatus.APPLIED,
        partner_application_id: Optional[str] = None,
    ) -> Application:
        application = Application(
            id=_new_id(),
            job_posting_id=job_posting_id,
            status=status,
            source=source,
            partner_data=partner_data,
        )
        async with self.transaction() as conn:
            await self._insert_application(conn, application, partner_application_id)
        return application

    async def record_application(
        self,
        job_posting_id: str,
        source: str,
        partner_data: Dict[str, Any],
        partner_application_id: Optional[str] = None,
    ) -> Application:
        """Store an incoming application and bump the posting's count together."""
        application = Application(
            id=_new_id(),
            job_posting_id=job_posting_id,
            status=ApplicationStatus.APPLIED,
            source=source,
            partner_data=partner_data,
        )
        async with self.transaction() as conn:
            await self._insert_application(conn, application, partner_application_id)
            await conn.execute(
                """
                UPDATE partner_job_postings
                SET application_count = application_count + 1
                WHERE id = ?
                """,
                (job_posting_id,),
            )
        return application

    async def _insert_application(
        self,
        conn: aiosqlite.Connection,
        application: Application,
        partner_application_id: Optional[str],
    ) -> None:
        await conn.execute(
            """
            INSERT INTO applications (
                id, job_posting_id, status, source, partner_application_id,
                partner_data, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                application.id,
                application.job_posting_id,
                application.status.value,
                application.source,
                partner_application_id,
                json.dumps(application.partner_data, default=str),
                _iso(application.created_at),
                _iso(application.updated_at),
            ),
        )

    async def update_application_status(
        self,
        partner_application_id: str,
        status: ApplicationStatus,
    ) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE applications SET status = ?, updated_at = ?
                WHERE partner_application_id = ?
                """,
                (status.value, _now(), partner_application_id),
            )
            return cursor.rowcount

    async def list_applications(self, job_posting_id: str) -> List[Application]:
        cursor = await self.db.execute(
            "SELECT * FROM applications WHERE job_posting_id = ? ORDER BY created_at ASC",
            (job_posting_id,),
        )
        return [self._row_to_application(row) for row in await cursor.fetchall()]

    async def count_applications(self, integration_id: str) -> int:
        cursor = await self.db.execute(
            """
            SELECT COUNT(*)
            FROM applications a
            INNER JOIN partner_job_postings p ON p.id = a.job_posting_id
            WHERE p.integration_id = ?
            """,
            (integration_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    # =========================================================================
    # STATISTICS
    # =========================================================================

    async def get_stats(self) -> Dict[str, Any]:
        """Counts by signal type and processing state."""
        cursor = await self.db.execute(
            "SELECT type, processed, COUNT(*) AS n FROM signals GROUP BY type, processed"
        )
        by_type: Dict[str, int] = {}
        processed = 0
        unprocessed = 0
        for row in await cursor.fetchall():
            by_type[row["type"]] = by_type.get(row["type"], 0) + row["n"]
            if row["processed"]:
                processed += row["n"]
            else:
                unprocessed += row["n"]

        cursor = await self.db.execute("SELECT COUNT(*) FROM bucket_assignments")
        assignments = (await cursor.fetchone())[0]

        return {
            "total_signals": processed + unprocessed,
            "signals_by_type": by_type,
            "processed": processed,
            "unprocessed": unprocessed,
            "bucket_assignments": assignments,
        }

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _row_to_signal(self, row: aiosqlite.Row) -> Signal:
        return Signal(
            id=row["id"],
            type=SignalType(row["type"]),
            source=row["source"],
            company_name=row["company_name"],
            title=row["title"],
            company_url=row["company_url"],
            job_url=row["job_url"],
            location=row["location"],
            posted_date=parse_timestamp(row["posted_date"]),
            raw_data=json.loads(row["raw_data"]) if row["raw_data"] else {},
            processed=bool(row["processed"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def _row_to_enrichment(self, row: aiosqlite.Row) -> Enrichment:
        return Enrichment(
            signal_id=row["signal_id"],
            company_size=row["company_size"],
            employee_count_in_target_country=row["employee_count_in_target_country"],
            industry=row["industry"],
            headquarters=row["headquarters"],
            funding_amount=row["funding_amount"],
            funding_date=parse_timestamp(row["funding_date"]),
            decision_makers=json.loads(row["decision_makers"] or "[]"),
            raw_data=json.loads(row["raw_data"] or "{}"),
        )

    def _row_to_bucket(self, row: aiosqlite.Row) -> ActionBucket:
        return ActionBucket(
            id=row["id"],
            type=BucketType(row["type"]),
            name=row["name"],
            description=row["description"],
            priority=row["priority"],
            is_active=bool(row["is_active"]),
        )

    def _row_to_candidate(self, row: aiosqlite.Row) -> CandidateProfile:
        return CandidateProfile(
            id=row["id"],
            bucket_id=row["bucket_id"],
            name=row["name"],
            title=row["title"],
            company=row["company"],
            location=row["location"],
            linkedin_url=row["linkedin_url"],
            email=row["email"],
            skills=json.loads(row["skills"] or "[]"),
            tenure_months=row["tenure_months"],
            likelihood_to_move=row["likelihood_to_move"],
            source=row["source"],
            created_at=parse_timestamp(row["created_at"]),
        )

    def _row_to_integration(self, row: aiosqlite.Row) -> PartnerIntegration:
        return PartnerIntegration(
            id=row["id"],
            partner=PartnerType(row["partner"]),
            status=IntegrationStatus(row["status"]),
            api_key=row["api_key"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            webhook_secret=row["webhook_secret"],
            config=json.loads(row["config"] or "{}"),
            last_sync_at=parse_timestamp(row["last_sync_at"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def _row_to_posting(self, row: aiosqlite.Row) -> PartnerJobPosting:
        return PartnerJobPosting(
            id=row["id"],
            integration_id=row["integration_id"],
            partner_job_id=row["partner_job_id"],
            status=JobPostingStatus(row["status"]),
            signal_id=row["signal_id"],
            metadata=json.loads(row["metadata"] or "{}"),
            application_count=row["application_count"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def _row_to_sync_log(self, row: aiosqlite.Row) -> SyncLogEntry:
        return SyncLogEntry(
            id=row["id"],
            integration_id=row["integration_id"],
            sync_type=row["sync_type"],
            status=SyncStatus(row["status"]),
            records_processed=row["records_processed"],
            records_failed=row["records_failed"],
            error_message=row["error_message"],
            metadata=json.loads(row["metadata"] or "{}"),
            started_at=parse_timestamp(row["started_at"]),
            completed_at=parse_timestamp(row["completed_at"]),
        )

    def _row_to_application(self, row: aiosqlite.Row) -> Application:
        return Application(
            id=row["id"],
            job_posting_id=row["job_posting_id"],
            status=ApplicationStatus(row["status"]),
            source=row["source"],
            partner_data=json.loads(row["partner_data"] or "{}"),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


# =============================================================================
# CONTEXT MANAGER
# =============================================================================

@asynccontextmanager
async def signal_store(db_path: str | Path = "signals.db") -> AsyncIterator[SignalStore]:
    """
    Context manager for SignalStore.

    Usage:
        async with signal_store("signals.db") as store:
            await store.store_if_new(record)
    """
    store = SignalStore(db_path)
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()
