"""
Base class for job-board partner clients (LinkedIn, Indeed).

A partner client is bound to one PartnerIntegration row and the SignalStore.
Subclasses declare their PartnerType tag and implement the partner API
surface; the bookkeeping (sync logs, integration status, posting upserts)
and the pull half of a sync live here.

All HTTP goes through request(), which is wrapped by @partner_retry().
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from collectors.base import CollectorFilters
from connectors.partner_retry import partner_retry
from signal_engine.config import EngineConfig
from signal_engine.models import (
    IntegrationStatus,
    JobPostingStatus,
    PartnerIntegration,
    PartnerJobPosting,
    PartnerType,
    RawPosting,
    Signal,
    SignalRecord,
    SyncLogEntry,
    SyncStatus,
    utc_now,
)
from storage.signal_store import SignalStore

logger = logging.getLogger(__name__)


@dataclass
class JobPostingData:
    """What we send to a partner when publishing a job."""
    title: str
    company: str
    location: Optional[str] = None
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_signal(cls, signal: Signal) -> "JobPostingData":
        return cls(
            title=signal.title or "",
            company=signal.company_name,
            location=signal.location,
            description=signal.raw_data.get("description") or "",
            metadata={"signal_id": signal.id, "company_url": signal.company_url},
        )


@dataclass
class PostedJob:
    partner_job_id: str
    url: str = ""


@dataclass
class SyncResult:
    """Outcome of one partner's sync_jobs() call"""
    success: bool
    records_processed: int = 0
    records_failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "recordsProcessed": self.records_processed,
            "recordsFailed": self.records_failed,
            "errors": list(self.errors) or None,
        }


class BasePartner(ABC):
    """
    Abstract partner client.

    Subclasses set partner_type, name and base_url, and implement the
    abstract methods below.
    """

    partner_type: PartnerType
    name: str = ""
    base_url: str = ""
    timeout: float = 30.0
    source: str = ""

    def __init__(
        self,
        integration: PartnerIntegration,
        store: SignalStore,
        config: Optional[EngineConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.integration = integration
        self.store = store
        self.config = config or EngineConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # =========================================================================
    # PARTNER API SURFACE
    # =========================================================================

    @abstractmethod
    async def initialize(self) -> None:
        """Verify credentials and mark the integration ACTIVE (or ERROR)."""

    @abstractmethod
    async def search_jobs(self, filters: CollectorFilters) -> List[RawPosting]:
        ...

    @abstractmethod
    async def post_job(self, job: JobPostingData) -> PostedJob:
        ...

    @abstractmethod
    async def update_job(self, partner_job_id: str, job: JobPostingData) -> None:
        ...

    @abstractmethod
    async def delete_job(self, partner_job_id: str) -> None:
        ...

    @abstractmethod
    async def process_webhook(self, event: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        ...

    async def refresh_token(self) -> Optional[str]:
        """New access token, or None when this partner cannot refresh."""
        return None

    def verify_webhook_signature(self, payload: str, signature: str, secret: str) -> bool:
        from connectors.webhook_handler import verify_hmac_signature

        return verify_hmac_signature(secret, payload, signature)

    @partner_retry()
    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self.client.request(method, path, headers=self.auth_headers(), **kwargs)
        response.raise_for_status()
        return response

    async def request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self.request(method, path, **kwargs)
        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # SYNC
    # =========================================================================

    def default_filters(self) -> CollectorFilters:
        """Pull filters from the integration config, else the engine default location."""
        settings = self.integration.config or {}
        return CollectorFilters(
            keywords=list(settings.get("keywords") or []),
            location=settings.get("location") or self.config.default_location,
            days_back=int(settings.get("days_back") or 30),
        )

    async def sync_jobs(self, direction: str = "pull", limit: int = 100) -> SyncResult:
        """
        Pull this partner's postings into the store.

        Each pulled posting becomes a job-posting signal (or is matched to the
        existing one by natural key) and a POSTED PartnerJobPosting. The
        attempt is logged and the integration status updated; search errors
        mark the integration ERROR and propagate.
        """
        started_at = utc_now()
        processed = 0
        failed = 0
        errors: List[str] = []

        try:
            if direction in ("pull", "bidirectional"):
                postings = (await self.search_jobs(self.default_filters()))[:limit]
                processed = len(postings)

                for posting in postings:
                    try:
                        await self._store_pulled_posting(posting)
                    except Exception as e:
                        failed += 1
                        errors.append(f"Failed to store job {posting.url}: {e}")
                        logger.warning(f"{self.name}: {errors[-1]}")

            await self.log_sync(
                "job_posting",
                SyncStatus.SUCCESS if failed == 0 else SyncStatus.PARTIAL,
                processed,
                failed,
                metadata={"direction": direction, "limit": limit},
                started_at=started_at,
            )
            await self.update_integration_status(IntegrationStatus.ACTIVE, last_sync_at=utc_now())
        except Exception as e:
            logger.error(f"{self.name} sync failed: {e}")
            await self.log_sync(
                "job_posting", SyncStatus.ERROR, processed, failed, str(e), started_at=started_at
            )
            await self.update_integration_status(IntegrationStatus.ERROR)
            raise

        return SyncResult(
            success=failed == 0,
            records_processed=processed,
            records_failed=failed,
            errors=errors,
        )

    async def _store_pulled_posting(self, posting: RawPosting) -> PartnerJobPosting:
        partner_job_id = posting.external_id or posting.url
        if not partner_job_id:
            raise ValueError("posting has neither a partner id nor a url")

        record = SignalRecord.from_posting(posting)
        signal = await self.store.store_if_new(record)
        if signal is None:
            signal = await self.store.find_signal(record)

        return await self.upsert_partner_job_posting(
            partner_job_id,
            signal.id if signal else None,
            JobPostingStatus.POSTED,
            {
                "title": posting.title,
                "location": posting.location,
                "url": posting.url,
                "source": self.source,
            },
        )

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================

    async def log_sync(
        self,
        sync_type: str,
        status: SyncStatus,
        records_processed: int = 0,
        records_failed: int = 0,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        started_at=None,
    ) -> SyncLogEntry:
        return await self.store.log_sync(
            self.integration.id,
            sync_type,
            status,
            records_processed=records_processed,
            records_failed=records_failed,
            error_message=error_message,
            metadata=metadata,
            started_at=started_at,
        )

    async def update_integration_status(self, status: IntegrationStatus, last_sync_at=None) -> None:
        await self.store.update_integration_status(self.integration.id, status, last_sync_at)
        self.integration.status = status
        if last_sync_at is not None:
            self.integration.last_sync_at = last_sync_at

    async def upsert_partner_job_posting(
        self,
        partner_job_id: str,
        signal_id: Optional[str],
        status: JobPostingStatus,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PartnerJobPosting:
        return await self.store.upsert_partner_job_posting(
            self.integration.id,
            partner_job_id,
            status,
            signal_id=signal_id,
            metadata=metadata,
        )
