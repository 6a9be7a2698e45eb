"""
Tests for PartnerSyncService: pull, push, conflict strategies and monitoring.

Partners are replaced by an in-memory BasePartner subclass, so the
bookkeeping (sync logs, integration status, posting upserts) is the real one.
"""

import pytest

from connectors.base_partner import BasePartner, PostedJob
from signal_engine.errors import PartnerAPIError, ValidationError
from signal_engine.models import (
    IntegrationStatus,
    JobPostingStatus,
    PartnerType,
    RawPosting,
    SignalRecord,
    SignalType,
    SyncStatus,
)


class FakePartner(BasePartner):
    source = "fake"

    def __init__(self, integration, store, config=None, search=None, search_error=None, fail_titles=()):
        super().__init__(integration, store, config)
        self.partner_type = integration.partner
        self.name = integration.partner.value.title()
        self.search = search or []
        self.search_error = search_error
        self.fail_titles = set(fail_titles)
        self.posted = []

    async def initialize(self):
        pass

    async def search_jobs(self, filters):
        if self.search_error:
            raise self.search_error
        return list(self.search)

    async def post_job(self, job):
        if job.title in self.fail_titles:
            raise PartnerAPIError("rejected by partner", status_code=422)
        self.posted.append(job)
        partner_job_id = f"{self.partner_type.value.lower()}-{len(self.posted)}"
        return PostedJob(partner_job_id=partner_job_id, url=f"https://partner.example.com/{partner_job_id}")

    async def update_job(self, partner_job_id, job):
        pass

    async def delete_job(self, partner_job_id):
        pass

    async def process_webhook(self, event):
        pass

    def auth_headers(self):
        return {}


def factory(**per_partner):
    """client_factory building FakePartners; per_partner maps PartnerType -> kwargs."""
    built = {}

    def build(integration, store, config=None):
        client = FakePartner(integration, store, config, **per_partner.get(integration.partner, {}))
        built[integration.partner] = client
        return client

    build.built = built
    return build


def pulled(company, job_id):
    return RawPosting(
        title="Head of Engineering",
        company=company,
        source="fake",
        location="Brazil",
        url=f"https://partner.example.com/{job_id}",
        external_id=job_id,
    )


async def job_signal(store, company, title="VP Engineering"):
    return await store.store_if_new(
        SignalRecord(
            type=SignalType.JOB_POSTING,
            source="serpapi",
            company_name=company,
            title=title,
            job_url=f"https://jobs.example.com/{company}",
            location="São Paulo",
        )
    )


async def active(store, partner):
    return await store.create_integration(partner, status=IntegrationStatus.ACTIVE, api_key="k", access_token="t")


class TestPull:
    async def test_pull_from_all_active_partners(self, store):
        from workflows.partner_sync import PartnerSyncService

        await active(store, PartnerType.LINKEDIN)
        await active(store, PartnerType.INDEED)
        await store.create_integration(PartnerType.GLASSDOOR, status=IntegrationStatus.PENDING)

        service = PartnerSyncService(
            store,
            client_factory=factory(
                **{
                    PartnerType.LINKEDIN: {"search": [pulled("Loft", "l-1")]},
                    PartnerType.INDEED: {"search": [pulled("Kovi", "i-1"), pulled("Stone", "i-2")]},
                }
            ),
        )
        report = await service.sync_from_partners()

        assert report.success is True
        assert [(r.partner, r.records_processed) for r in report.results] == [
            (PartnerType.INDEED, 2),
            (PartnerType.LINKEDIN, 1),
        ]
        assert len(await store.list_signals()) == 3

    async def test_one_failing_partner_does_not_abort_others(self, store):
        from workflows.partner_sync import PartnerSyncService

        linkedin = await active(store, PartnerType.LINKEDIN)
        await active(store, PartnerType.INDEED)

        service = PartnerSyncService(
            store,
            client_factory=factory(
                **{
                    PartnerType.LINKEDIN: {"search_error": PartnerAPIError("LinkedIn API error: 503", 503)},
                    PartnerType.INDEED: {"search": [pulled("Kovi", "i-1")]},
                }
            ),
        )
        report = await service.sync_from_partners()

        assert report.success is False
        by_partner = {r.partner: r for r in report.results}
        assert by_partner[PartnerType.INDEED].success is True
        assert by_partner[PartnerType.LINKEDIN].error == "LinkedIn API error: 503"
        assert (await store.get_integration(linkedin.id)).status == IntegrationStatus.ERROR
        assert report.to_dict()["results"][1]["error"] == "LinkedIn API error: 503"

    async def test_unsupported_partner_logged_as_error(self, store):
        from workflows.partner_sync import PartnerSyncService

        glassdoor = await active(store, PartnerType.GLASSDOOR)

        report = await PartnerSyncService(store).sync_from_partners()

        assert report.success is False
        assert "GLASSDOOR" in report.results[0].error
        assert (await store.get_integration(glassdoor.id)).status == IntegrationStatus.ERROR
        logs = await store.get_sync_logs(glassdoor.id)
        assert logs[0].status == SyncStatus.ERROR

    async def test_partner_filter(self, store):
        from workflows.partner_sync import PartnerSyncService

        await active(store, PartnerType.LINKEDIN)
        await active(store, PartnerType.INDEED)
        build = factory()

        report = await PartnerSyncService(store, client_factory=build).sync_from_partners(PartnerType.INDEED)

        assert [r.partner for r in report.results] == [PartnerType.INDEED]
        assert list(build.built) == [PartnerType.INDEED]

    async def test_no_integrations_is_success(self, store):
        from workflows.partner_sync import PartnerSyncService

        report = await PartnerSyncService(store).sync_from_partners()
        assert report.to_dict() == {"success": True, "results": []}


class TestPush:
    async def test_push_unprocessed_job_signals(self, store):
        from workflows.partner_sync import PartnerSyncService

        integration = await active(store, PartnerType.INDEED)
        first = await job_signal(store, "Acme")
        second = await job_signal(store, "Globex")
        await store.store_if_new(SignalRecord(type=SignalType.FUNDING_ANNOUNCEMENT, source="x", company_name="Kovi"))
        build = factory()

        report = await PartnerSyncService(store, client_factory=build).sync_to_partners()

        assert report.success is True
        assert report.results[0].posted == 2
        assert [job.company for job in build.built[PartnerType.INDEED].posted] == ["Acme", "Globex"]

        posting = await store.get_partner_job_posting(integration.id, "indeed-1")
        assert posting.signal_id == first.id
        assert posting.status == JobPostingStatus.POSTED
        assert posting.metadata == {
            "url": "https://partner.example.com/indeed-1",
            "title": "VP Engineering",
            "location": "São Paulo",
        }
        assert (await store.get_signal(second.id)).processed is True

        logs = await store.get_sync_logs(integration.id)
        assert (logs[0].sync_type, logs[0].status, logs[0].records_processed) == ("job_posting_push", SyncStatus.SUCCESS, 2)
        assert (await store.get_integration(integration.id)).last_sync_at is not None

    async def test_partial_failure(self, store):
        from workflows.partner_sync import PartnerSyncService

        integration = await active(store, PartnerType.LINKEDIN)
        await job_signal(store, "Acme", title="VP Engineering")
        rejected = await job_signal(store, "Globex", title="Bad Title")

        service = PartnerSyncService(
            store, client_factory=factory(**{PartnerType.LINKEDIN: {"fail_titles": ["Bad Title"]}})
        )
        report = await service.sync_to_partners()

        result = report.results[0]
        assert (result.success, result.posted, result.failed) == (False, 1, 1)
        assert result.to_dict() == {
            "partner": "LINKEDIN",
            "direction": "push",
            "success": False,
            "posted": 1,
            "failed": 1,
        }
        assert (await store.get_signal(rejected.id)).processed is False
        logs = await store.get_sync_logs(integration.id)
        assert logs[0].status == SyncStatus.PARTIAL
        assert logs[0].error_message == "1 postings failed"
        assert (await store.get_integration(integration.id)).status == IntegrationStatus.ERROR

    async def test_everything_failing_logs_error(self, store):
        from workflows.partner_sync import PartnerSyncService

        integration = await active(store, PartnerType.LINKEDIN)
        await job_signal(store, "Acme", title="Bad Title")

        service = PartnerSyncService(
            store, client_factory=factory(**{PartnerType.LINKEDIN: {"fail_titles": ["Bad Title"]}})
        )
        await service.sync_to_partners()

        assert (await store.get_sync_logs(integration.id))[0].status == SyncStatus.ERROR
        stored = await store.get_integration(integration.id)
        assert stored.status == IntegrationStatus.ERROR
        assert stored.last_sync_at is None

    async def test_client_build_error_marks_integration(self, store):
        from workflows.partner_sync import PartnerSyncService

        integration = await active(store, PartnerType.GLASSDOOR)
        await job_signal(store, "Acme")

        def unbuildable(integration, store, config=None):
            raise ValidationError("No Glassdoor credentials configured")

        report = await PartnerSyncService(store, client_factory=unbuildable).sync_to_partners()

        assert report.results[0].error == "No Glassdoor credentials configured"
        assert (await store.get_sync_logs(integration.id))[0].status == SyncStatus.ERROR
        assert (await store.get_integration(integration.id)).status == IntegrationStatus.ERROR

    async def test_push_selected_signals_with_limit(self, store):
        from workflows.partner_sync import PartnerSyncService

        await active(store, PartnerType.INDEED)
        picked = await job_signal(store, "Acme")
        await job_signal(store, "Globex")
        build = factory()

        service = PartnerSyncService(store, client_factory=build)
        report = await service.sync_to_partners(signal_ids=[picked.id])
        assert report.results[0].posted == 1

        report = await service.sync_to_partners(limit=1)
        assert report.results[0].posted == 1
        assert await store.get_unprocessed_signals() == []


class TestConflictResolution:
    async def _linked(self, store, posting_title="Head of Engineering (Remote)", posting_location="Remote"):
        integration = await active(store, PartnerType.INDEED)
        signal = await job_signal(store, "Acme", title="Head of Engineering")
        posting = await store.upsert_partner_job_posting(
            integration.id,
            "jk-1",
            JobPostingStatus.POSTED,
            signal_id=signal.id,
            metadata={"title": posting_title, "location": posting_location},
        )
        return integration, signal, posting

    async def test_ours_changes_nothing(self, store):
        from workflows.partner_sync import PartnerSyncService

        integration, signal, _ = await self._linked(store)

        report = await PartnerSyncService(store).resolve_conflicts("ours")

        assert report.results[0].resolved == 0
        assert (await store.get_signal(signal.id)).title == "Head of Engineering"
        logs = await store.get_sync_logs(integration.id)
        assert logs[0].sync_type == "conflict_resolution"
        assert logs[0].metadata == {"strategy": "ours"}
        stored = await store.get_integration(integration.id)
        assert stored.status == IntegrationStatus.ACTIVE
        assert stored.last_sync_at is not None

    async def test_theirs_copies_posting_onto_signal(self, store):
        from workflows.partner_sync import PartnerSyncService

        _, signal, _ = await self._linked(store)

        report = await PartnerSyncService(store).resolve_conflicts("theirs")

        updated = await store.get_signal(signal.id)
        assert (updated.title, updated.location) == ("Head of Engineering (Remote)", "Remote")
        assert report.results[0].to_dict()["resolved"] == 1

    async def test_newest_posting_wins(self, store):
        from workflows.partner_sync import PartnerSyncService

        _, signal, _ = await self._linked(store)

        await PartnerSyncService(store).resolve_conflicts("newest")

        assert (await store.get_signal(signal.id)).title == "Head of Engineering (Remote)"

    async def test_newest_signal_wins(self, store):
        from workflows.partner_sync import PartnerSyncService

        integration, signal, _ = await self._linked(store)
        await store.update_signal_fields(signal.id, title="CTO", location="Lisbon")

        await PartnerSyncService(store).resolve_conflicts("newest")

        posting = await store.get_partner_job_posting(integration.id, "jk-1")
        assert posting.metadata["title"] == "CTO"
        assert posting.metadata["location"] == "Lisbon"
        assert (await store.get_signal(signal.id)).title == "CTO"

    async def test_identical_values_are_not_counted(self, store):
        from workflows.partner_sync import PartnerSyncService

        await self._linked(store, posting_title="Head of Engineering", posting_location="São Paulo")

        report = await PartnerSyncService(store).resolve_conflicts("theirs")
        assert report.results[0].resolved == 0

    async def test_failed_reconciliation_marks_integration(self, store, monkeypatch):
        from workflows.partner_sync import PartnerSyncService

        integration, _, _ = await self._linked(store)

        async def locked(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "update_signal_fields", locked)

        report = await PartnerSyncService(store).resolve_conflicts("theirs")

        assert report.results[0].failed == 1
        assert (await store.get_sync_logs(integration.id))[0].status == SyncStatus.PARTIAL
        assert (await store.get_integration(integration.id)).status == IntegrationStatus.ERROR

    async def test_unknown_strategy(self, store):
        from workflows.partner_sync import PartnerSyncService

        service = PartnerSyncService(store)
        with pytest.raises(ValidationError):
            await service.resolve_conflicts("loudest")
        with pytest.raises(ValidationError):
            await service.bidirectional_sync(resolve_conflicts="loudest")


class TestBidirectional:
    async def test_pull_push_conflicts_in_order(self, store):
        from workflows.partner_sync import PartnerSyncService

        await active(store, PartnerType.INDEED)
        await job_signal(store, "Acme")
        service = PartnerSyncService(
            store, client_factory=factory(**{PartnerType.INDEED: {"search": [pulled("Kovi", "i-1")]}})
        )

        report = await service.bidirectional_sync()

        assert report.success is True
        assert [r.direction for r in report.results] == ["pull", "push", "conflicts"]
        # the pulled posting becomes an unprocessed signal and is pushed back too
        assert report.results[1].posted == 2


class TestMonitoring:
    async def test_no_syncs_reports_full_success_rate(self, store):
        from workflows.partner_sync import PartnerSyncService

        await active(store, PartnerType.INDEED)
        monitoring = await PartnerSyncService(store).get_monitoring()

        assert monitoring["stats"]["syncSuccessRate"] == 100
        assert monitoring["stats"]["totalIntegrations"] == 1
        assert monitoring["syncMetrics"][0]["successRate"] == 0

    async def test_metrics_and_recent_errors(self, store):
        from workflows.partner_sync import PartnerSyncService

        indeed = await active(store, PartnerType.INDEED)
        linkedin = await store.create_integration(PartnerType.LINKEDIN, status=IntegrationStatus.ERROR)
        await store.log_sync(indeed.id, "job_posting", SyncStatus.SUCCESS, records_processed=4)
        await store.log_sync(indeed.id, "job_posting", SyncStatus.SUCCESS, records_processed=2)
        await store.log_sync(indeed.id, "job_posting", SyncStatus.ERROR, error_message="timeout")
        await store.log_sync(linkedin.id, "job_posting", SyncStatus.ERROR, error_message="401")
        posting = await store.upsert_partner_job_posting(indeed.id, "jk-1", JobPostingStatus.POSTED)
        await store.create_application(posting.id, "indeed", {})

        monitoring = await PartnerSyncService(store).get_monitoring()

        stats = monitoring["stats"]
        assert stats["totalIntegrations"] == 2
        assert stats["activeIntegrations"] == 1
        assert stats["recentSyncs"] == 4
        assert stats["syncSuccessRate"] == pytest.approx(50.0)
        assert stats["totalJobPostings"] == 1
        assert stats["totalApplications"] == 1

        indeed_metrics = next(m for m in monitoring["syncMetrics"] if m["partner"] == "INDEED")
        assert indeed_metrics["syncCount"] == 3
        assert indeed_metrics["failureCount"] == 1
        assert indeed_metrics["averageRecordsPerSync"] == pytest.approx(2.0)

        assert {e["partner"] for e in monitoring["recentErrors"]} == {"INDEED", "LINKEDIN"}

        only_indeed = await PartnerSyncService(store).get_monitoring(PartnerType.INDEED)
        assert [e["errorMessage"] for e in only_indeed["recentErrors"]] == ["timeout"]

    async def test_overview(self, store):
        from workflows.partner_sync import PartnerSyncService

        indeed = await active(store, PartnerType.INDEED)
        await store.log_sync(indeed.id, "job_posting", SyncStatus.SUCCESS)
        await store.upsert_partner_job_posting(indeed.id, "jk-1", JobPostingStatus.POSTED)

        overview = await PartnerSyncService(store).get_integrations_overview()

        assert overview[0]["partner"] == "INDEED"
        assert overview[0]["jobPostingCount"] == 1
        assert len(overview[0]["recentSyncs"]) == 1
