"""
Partner Sync Service

Moves job postings between the signal store and job-board partners:

  pull      partner search results -> signals + PartnerJobPostings
  push      unprocessed job-posting signals -> partner post_job()
  conflicts reconcile title/location between a signal and its postings

Each integration is isolated: one partner failing is reported in its own
result and never aborts the others.

Usage:
    service = PartnerSyncService(store, config)
    report = await service.bidirectional_sync(resolve_conflicts="newest")
    print(report.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from connectors.base_partner import JobPostingData
from connectors.partners import PartnerClientFactory, build_partner_client
from signal_engine.config import EngineConfig
from signal_engine.errors import ValidationError
from signal_engine.models import (
    IntegrationStatus,
    JobPostingStatus,
    PartnerIntegration,
    PartnerJobPosting,
    PartnerType,
    Signal,
    SignalType,
    SyncStatus,
    utc_now,
)
from storage.signal_store import SignalStore

logger = logging.getLogger(__name__)

CONFLICT_STRATEGIES = ("newest", "ours", "theirs")
DEFAULT_PULL_LIMIT = 100
DEFAULT_PUSH_LIMIT = 50


@dataclass
class PartnerSyncResult:
    """One integration's outcome for one direction"""
    partner: PartnerType
    direction: str
    success: bool
    records_processed: int = 0
    records_failed: int = 0
    posted: int = 0
    failed: int = 0
    resolved: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "partner": self.partner.value,
            "direction": self.direction,
            "success": self.success,
        }
        if self.direction == "pull":
            data["recordsProcessed"] = self.records_processed
            data["recordsFailed"] = self.records_failed
        elif self.direction == "push":
            data["posted"] = self.posted
            data["failed"] = self.failed
        else:
            data["resolved"] = self.resolved
            data["failed"] = self.failed
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SyncReport:
    success: bool
    results: List[PartnerSyncResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[PartnerSyncResult]) -> "SyncReport":
        return cls(success=all(r.success for r in results), results=results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
        }


class PartnerSyncService:
    def __init__(
        self,
        store: SignalStore,
        config: Optional[EngineConfig] = None,
        client_factory: PartnerClientFactory = build_partner_client,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.client_factory = client_factory

    async def _active_integrations(self, partner: Optional[PartnerType]) -> List[PartnerIntegration]:
        return await self.store.list_integrations(status=IntegrationStatus.ACTIVE, partner=partner)

    # =========================================================================
    # PULL
    # =========================================================================

    async def sync_from_partners(
        self,
        partner: Optional[PartnerType] = None,
        limit: Optional[int] = None,
    ) -> SyncReport:
        results = []
        for integration in await self._active_integrations(partner):
            results.append(await self._pull_one(integration, limit or DEFAULT_PULL_LIMIT))

        logger.info(f"Pulled from {len(results)} partner integrations")
        return SyncReport.from_results(results)

    async def _pull_one(self, integration: PartnerIntegration, limit: int) -> PartnerSyncResult:
        try:
            client = self.client_factory(integration, self.store, self.config)
        except ValidationError as e:
            await self.store.log_sync(integration.id, "job_posting", SyncStatus.ERROR, error_message=str(e))
            await self.store.update_integration_status(integration.id, IntegrationStatus.ERROR)
            return PartnerSyncResult(integration.partner, "pull", success=False, error=str(e))

        try:
            async with client:
                outcome = await client.sync_jobs(direction="pull", limit=limit)
        except Exception as e:
            # sync_jobs has already logged the attempt and set ERROR
            logger.error(f"Pull from {integration.partner.value} failed: {e}")
            return PartnerSyncResult(integration.partner, "pull", success=False, error=str(e))

        return PartnerSyncResult(
            integration.partner,
            "pull",
            success=outcome.success,
            records_processed=outcome.records_processed,
            records_failed=outcome.records_failed,
        )

    # =========================================================================
    # PUSH
    # =========================================================================

    async def sync_to_partners(
        self,
        partner: Optional[PartnerType] = None,
        signal_ids: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> SyncReport:
        signals = await self.store.get_unprocessed_signals(
            limit=limit or DEFAULT_PUSH_LIMIT,
            signal_type=SignalType.JOB_POSTING,
            signal_ids=signal_ids,
        )

        results = []
        for integration in await self._active_integrations(partner):
            results.append(await self._push_one(integration, signals))

        logger.info(f"Pushed {len(signals)} signals to {len(results)} partner integrations")
        return SyncReport.from_results(results)

    async def _push_one(self, integration: PartnerIntegration, signals: List[Signal]) -> PartnerSyncResult:
        started_at = utc_now()
        try:
            client = self.client_factory(integration, self.store, self.config)
        except ValidationError as e:
            await self.store.log_sync(integration.id, "job_posting_push", SyncStatus.ERROR, error_message=str(e))
            await self.store.update_integration_status(integration.id, IntegrationStatus.ERROR)
            return PartnerSyncResult(integration.partner, "push", success=False, error=str(e))

        posted = 0
        failed = 0
        async with client:
            for signal in signals:
                try:
                    job = await client.post_job(JobPostingData.from_signal(signal))
                    await client.upsert_partner_job_posting(
                        job.partner_job_id,
                        signal.id,
                        JobPostingStatus.POSTED,
                        {"url": job.url, "title": signal.title, "location": signal.location},
                    )
                    await self.store.mark_processed(signal.id)
                    posted += 1
                except Exception as e:
                    failed += 1
                    logger.warning(f"Failed to post signal {signal.id} to {integration.partner.value}: {e}")

            if failed == 0:
                status = SyncStatus.SUCCESS
            elif posted:
                status = SyncStatus.PARTIAL
            else:
                status = SyncStatus.ERROR
            await client.log_sync(
                "job_posting_push",
                status,
                posted,
                failed,
                error_message=f"{failed} postings failed" if failed else None,
                started_at=started_at,
            )
            if failed == 0:
                await client.update_integration_status(IntegrationStatus.ACTIVE, last_sync_at=utc_now())
            else:
                await client.update_integration_status(IntegrationStatus.ERROR)

        return PartnerSyncResult(
            integration.partner, "push", success=failed == 0, posted=posted, failed=failed
        )

    # =========================================================================
    # BIDIRECTIONAL + CONFLICTS
    # =========================================================================

    async def bidirectional_sync(
        self,
        partner: Optional[PartnerType] = None,
        resolve_conflicts: str = "newest",
    ) -> SyncReport:
        """Pull, then push, then reconcile linked postings."""
        if resolve_conflicts not in CONFLICT_STRATEGIES:
            raise ValidationError(f"Unknown conflict strategy: {resolve_conflicts}")

        pull = await self.sync_from_partners(partner)
        push = await self.sync_to_partners(partner)
        conflicts = await self.resolve_conflicts(resolve_conflicts, partner)

        return SyncReport(
            success=pull.success and push.success,
            results=pull.results + push.results + conflicts.results,
        )

    async def resolve_conflicts(
        self,
        strategy: str = "newest",
        partner: Optional[PartnerType] = None,
    ) -> SyncReport:
        """
        Reconcile title/location between signals and their partner postings.

        ours:   signals win, nothing is written
        theirs: posting metadata is copied onto the signal
        newest: the side with the later updated_at wins
        """
        if strategy not in CONFLICT_STRATEGIES:
            raise ValidationError(f"Unknown conflict strategy: {strategy}")

        results = []
        for integration in await self._active_integrations(partner):
            started_at = utc_now()
            resolved = 0
            failed = 0

            for posting, _ in await self.store.get_linked_postings([integration.id]):
                try:
                    # re-read: an earlier posting in this pass may have updated it
                    signal = await self.store.get_signal(posting.signal_id)
                    if signal is not None and await self._resolve_pair(posting, signal, strategy):
                        resolved += 1
                except Exception as e:
                    failed += 1
                    logger.warning(f"Conflict resolution failed for posting {posting.id}: {e}")

            await self.store.log_sync(
                integration.id,
                "conflict_resolution",
                SyncStatus.SUCCESS if failed == 0 else SyncStatus.PARTIAL,
                records_processed=resolved,
                records_failed=failed,
                metadata={"strategy": strategy},
                started_at=started_at,
            )
            if failed == 0:
                await self.store.update_integration_status(
                    integration.id, IntegrationStatus.ACTIVE, last_sync_at=utc_now()
                )
            else:
                await self.store.update_integration_status(integration.id, IntegrationStatus.ERROR)
            results.append(
                PartnerSyncResult(
                    integration.partner, "conflicts", success=failed == 0, resolved=resolved, failed=failed
                )
            )

        return SyncReport.from_results(results)

    async def _resolve_pair(self, posting: PartnerJobPosting, signal: Signal, strategy: str) -> bool:
        if strategy == "ours":
            return False

        if strategy == "theirs" or posting.updated_at > signal.updated_at:
            title = posting.metadata.get("title") or signal.title
            location = posting.metadata.get("location") or signal.location
            if (title, location) == (signal.title, signal.location):
                return False
            await self.store.update_signal_fields(signal.id, title=title, location=location)
            return True

        if signal.updated_at > posting.updated_at:
            current = (posting.metadata.get("title"), posting.metadata.get("location"))
            if current == (signal.title, signal.location):
                return False
            metadata = {**posting.metadata, "title": signal.title, "location": signal.location}
            await self.store.update_partner_job_metadata(posting.id, metadata)
            return True

        return False

    # =========================================================================
    # OVERVIEW + MONITORING
    # =========================================================================

    async def get_integrations_overview(self) -> List[Dict[str, Any]]:
        overview = []
        for integration in await self.store.list_integrations():
            logs = await self.store.get_sync_logs(integration.id, limit=10)
            overview.append(
                {
                    **integration.to_dict(),
                    "recentSyncs": [log.to_dict() for log in logs],
                    "jobPostingCount": await self.store.count_job_postings(integration.id),
                }
            )
        return overview

    async def get_monitoring(self, partner: Optional[PartnerType] = None, days: int = 7) -> Dict[str, Any]:
        since = utc_now() - timedelta(days=days)
        integrations = await self.store.list_integrations(partner=partner)

        metrics = []
        all_syncs = 0
        all_success = 0
        total_postings = 0
        total_applications = 0

        for integration in integrations:
            logs = await self.store.get_sync_logs(integration.id, since=since)
            success = sum(1 for log in logs if log.status == SyncStatus.SUCCESS)
            failures = sum(1 for log in logs if log.status == SyncStatus.ERROR)
            processed = sum(log.records_processed for log in logs)
            postings = await self.store.count_job_postings(integration.id)
            applications = await self.store.count_applications(integration.id)

            all_syncs += len(logs)
            all_success += success
            total_postings += postings
            total_applications += applications

            metrics.append(
                {
                    "partner": integration.partner.value,
                    "status": integration.status.value,
                    "lastSyncAt": integration.last_sync_at.isoformat() if integration.last_sync_at else None,
                    "syncCount": len(logs),
                    "successCount": success,
                    "failureCount": failures,
                    "successRate": (success / len(logs)) * 100 if logs else 0,
                    "totalRecordsProcessed": processed,
                    "totalRecordsFailed": sum(log.records_failed for log in logs),
                    "averageRecordsPerSync": processed / len(logs) if logs else 0,
                    "jobPostingCount": postings,
                    "applicationCount": applications,
                }
            )

        partner_names = {i.id: i.partner.value for i in integrations}
        if partner is not None:
            errors = []
            for integration in integrations:
                errors.extend(
                    await self.store.get_sync_logs(integration.id, status=SyncStatus.ERROR, since=since, limit=20)
                )
        else:
            errors = await self.store.get_sync_logs(status=SyncStatus.ERROR, since=since, limit=20)

        return {
            "stats": {
                "totalIntegrations": len(integrations),
                "activeIntegrations": sum(1 for i in integrations if i.status == IntegrationStatus.ACTIVE),
                "totalJobPostings": total_postings,
                "totalApplications": total_applications,
                "recentSyncs": all_syncs,
                "syncSuccessRate": (all_success / all_syncs) * 100 if all_syncs else 100,
            },
            "integrations": [i.to_dict() for i in integrations],
            "syncMetrics": metrics,
            "recentErrors": [
                {**log.to_dict(), "partner": partner_names.get(log.integration_id)} for log in errors
            ],
        }
