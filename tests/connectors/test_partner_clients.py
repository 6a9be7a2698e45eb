"""Tests for the LinkedIn and Indeed partner clients and the pull half of a sync"""

import json
import sqlite3
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from collectors.base import CollectorFilters
from signal_engine.config import EngineConfig
from signal_engine.errors import PartnerAPIError, ValidationError
from signal_engine.models import (
    ApplicationStatus,
    IntegrationStatus,
    JobPostingStatus,
    PartnerType,
    SignalType,
    SyncStatus,
)


INDEED_SEARCH = {
    "results": [
        {
            "jobkey": "jk-1",
            "jobtitle": "Head of Engineering",
            "company": "Loft",
            "formattedLocation": "São Paulo, SP",
            "snippet": "Lead 40 engineers",
            "date": "2024-05-01T10:00:00Z",
        },
        {
            "jobkey": "jk-2",
            "jobtitle": "VP Sales",
            "company": "QuintoAndar",
            "url": "https://www.indeed.com/viewjob?jk=jk-2&from=api",
        },
    ]
}

LINKEDIN_SEARCH = {
    "elements": [
        {
            "id": 3901,
            "title": "Director of Data",
            "companyDetails": {"name": "Creditas"},
            "formattedLocation": "São Paulo, Brazil",
            "jobPostingUrl": "https://www.linkedin.com/jobs/view/3901",
            "listedAt": 1714557600000,
            "description": {"text": "Own the data platform"},
        }
    ]
}


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("connectors.partner_retry._sleep", new=AsyncMock()) as sleep:
        yield sleep


async def indeed(store, handler, status=IntegrationStatus.ACTIVE, config=None, **integration_kwargs):
    from connectors.indeed_client import INDEED_API_URL, IndeedClient

    integration_kwargs.setdefault("api_key", "indeed-key")
    integration = await store.create_integration(PartnerType.INDEED, status=status, **integration_kwargs)
    client = httpx.AsyncClient(base_url=INDEED_API_URL, transport=httpx.MockTransport(handler))
    return IndeedClient(integration, store, config or EngineConfig(indeed_partner_id="partner-7"), client=client)


async def linkedin(store, handler, status=IntegrationStatus.ACTIVE, **integration_kwargs):
    from connectors.linkedin_client import LINKEDIN_API_URL, LinkedInClient

    integration_kwargs.setdefault("access_token", "token")
    integration = await store.create_integration(PartnerType.LINKEDIN, status=status, **integration_kwargs)
    client = httpx.AsyncClient(base_url=LINKEDIN_API_URL, transport=httpx.MockTransport(handler))
    return LinkedInClient(integration, store, EngineConfig(), client=client)


class TestIndeedClient:
    async def test_auth_headers(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200))
        headers = partner.auth_headers()

        assert headers["Authorization"] == "Bearer indeed-key"
        assert headers["X-Indeed-Partner-ID"] == "partner-7"

    async def test_initialize_marks_active(self, store):
        seen = []

        def handler(request):
            seen.append((request.url.path, request.url.params.get("limit")))
            return httpx.Response(200, json={"jobs": []})

        partner = await indeed(store, handler, status=IntegrationStatus.PENDING)
        await partner.initialize()

        assert seen == [("/api/v1/jobs", "1")]
        assert (await store.get_integration(partner.integration.id)).status == IntegrationStatus.ACTIVE

    async def test_initialize_failure_marks_error(self, store):
        partner = await indeed(store, lambda request: httpx.Response(403), status=IntegrationStatus.PENDING)

        with pytest.raises(PartnerAPIError):
            await partner.initialize()
        assert (await store.get_integration(partner.integration.id)).status == IntegrationStatus.ERROR

    async def test_initialize_without_key(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200), api_key=None)
        with pytest.raises(ValidationError):
            await partner.initialize()

    async def test_search_jobs(self, store):
        params = {}

        def handler(request):
            params.update(dict(request.url.params))
            return httpx.Response(200, json=INDEED_SEARCH)

        partner = await indeed(store, handler)
        postings = await partner.search_jobs(CollectorFilters(keywords=["Head of Engineering"], location="Brazil", days_back=14))

        assert params == {"q": "Head of Engineering", "l": "Brazil", "limit": "25", "fromage": "14"}
        assert [p.external_id for p in postings] == ["jk-1", "jk-2"]
        assert postings[0].url == "https://www.indeed.com/viewjob?jk=jk-1"
        assert postings[0].location == "São Paulo, SP"
        assert postings[0].posted_date is not None
        assert postings[1].url == "https://www.indeed.com/viewjob?jk=jk-2&from=api"
        assert postings[1].location == "Brazil"

    async def test_post_update_delete(self, store):
        requests = []

        def handler(request):
            requests.append((request.method, request.url.path, json.loads(request.content or b"null")))
            if request.method == "POST":
                return httpx.Response(201, json={"jobId": "new-9"})
            return httpx.Response(204)

        from connectors.base_partner import JobPostingData

        partner = await indeed(store, handler)
        job = JobPostingData(title="CTO", company="Kovi", location="Brazil", description="Build it")

        posted = await partner.post_job(job)
        await partner.update_job("new-9", JobPostingData(title="CTO (remote)", company="Kovi"))
        await partner.delete_job("new-9")

        assert posted.partner_job_id == "new-9"
        assert posted.url == "https://www.indeed.com/viewjob?jk=new-9"
        assert requests[0][2]["jobType"] == "FULLTIME"
        assert requests[1] == ("PATCH", "/api/v1/jobs/new-9", {"title": "CTO (remote)"})
        assert requests[2][:2] == ("DELETE", "/api/v1/jobs/new-9")

    async def test_application_received_creates_application(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200))
        posting = await store.upsert_partner_job_posting(partner.integration.id, "jk-1", JobPostingStatus.POSTED)

        event = {"type": "application.received", "jobId": "jk-1", "applicationId": "app-77", "candidate": {"name": "Ana"}}
        await partner.process_webhook(event)

        applications = await store.list_applications(posting.id)
        assert len(applications) == 1
        assert applications[0].source == "indeed"
        assert applications[0].partner_data["candidate"] == {"name": "Ana"}
        assert (await store.get_partner_job_posting(partner.integration.id, "jk-1")).application_count == 1

    async def test_application_not_kept_when_count_update_fails(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200))
        posting = await store.upsert_partner_job_posting(partner.integration.id, "jk-1", JobPostingStatus.POSTED)
        await store.db.execute(
            "CREATE TRIGGER freeze_count BEFORE UPDATE OF application_count ON partner_job_postings "
            "BEGIN SELECT RAISE(ABORT, 'count frozen'); END"
        )
        await store.db.commit()

        with pytest.raises(sqlite3.IntegrityError):
            await partner.process_webhook({"type": "application.received", "jobId": "jk-1", "applicationId": "app-1"})

        assert await store.list_applications(posting.id) == []

    async def test_application_for_unknown_job_is_ignored(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200))

        await partner.process_webhook({"type": "application.received", "jobId": "nope", "applicationId": "a"})
        assert await store.count_applications(partner.integration.id) == 0

    async def test_status_changes(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200))
        posting = await store.upsert_partner_job_posting(partner.integration.id, "jk-1", JobPostingStatus.POSTED)
        await partner.process_webhook({"type": "application.received", "jobId": "jk-1", "applicationId": "app-1"})

        await partner.process_webhook({"type": "application.status_changed", "applicationId": "app-1", "status": "Interviewing"})
        await partner.process_webhook({"type": "job.status_changed", "jobId": "jk-1", "status": "closed"})
        await partner.process_webhook({"type": "something.else"})

        assert (await store.list_applications(posting.id))[0].status == ApplicationStatus.INTERVIEWING
        assert (await store.get_partner_job_posting(partner.integration.id, "jk-1")).status == JobPostingStatus.CLOSED

    def test_status_maps_default(self):
        from connectors.indeed_client import map_application_status, map_job_status

        assert map_application_status("weird") == ApplicationStatus.APPLIED
        assert map_job_status(None) == JobPostingStatus.POSTED


class TestLinkedInClient:
    async def test_search_jobs(self, store):
        params = {}

        def handler(request):
            params.update(dict(request.url.params))
            assert request.url.path == "/v2/jobSearch"
            return httpx.Response(200, json=LINKEDIN_SEARCH)

        partner = await linkedin(store, handler)
        postings = await partner.search_jobs(CollectorFilters(keywords=["Director"], location="Brazil"))

        assert params["keywords"] == "Director"
        assert params["count"] == "25"
        posting = postings[0]
        assert posting.external_id == "3901"
        assert posting.company == "Creditas"
        assert posting.description == "Own the data platform"
        assert posting.posted_date.year == 2024

    async def test_post_job_payload(self, store):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 555, "jobPostingUrl": "https://www.linkedin.com/jobs/view/555"})

        from connectors.base_partner import JobPostingData

        partner = await linkedin(store, handler)
        posted = await partner.post_job(JobPostingData(title="VP Sales", company="Stone", location="Recife, Brazil"))

        assert posted.partner_job_id == "555"
        details = bodies[0]["postingDetails"]
        assert details["location"] == {"country": "Brazil", "city": "Recife"}
        assert bodies[0]["visibility"] == {"visibilityType": "PUBLIC"}

    async def test_update_uses_dotted_fields(self, store):
        bodies = []

        def handler(request):
            bodies.append((request.method, json.loads(request.content)))
            return httpx.Response(204)

        from connectors.base_partner import JobPostingData

        partner = await linkedin(store, handler)
        await partner.update_job("555", JobPostingData(title="VP of Sales", company="Stone"))

        assert bodies == [("PATCH", {"postingDetails.title": "VP of Sales"})]

    async def test_webhook_events(self, store):
        partner = await linkedin(store, lambda request: httpx.Response(200))
        posting = await store.upsert_partner_job_posting(partner.integration.id, "3901", JobPostingStatus.POSTED)

        await partner.process_webhook({"eventType": "JOB_APPLICATION", "jobId": 3901, "applicationId": 12})
        await partner.process_webhook({"eventType": "APPLICATION_STATUS_CHANGE", "applicationId": 12, "status": "rejected"})
        await partner.process_webhook({"eventType": "JOB_STATUS_CHANGE", "jobId": 3901, "status": "PAUSED"})

        applications = await store.list_applications(posting.id)
        assert len(applications) == 1
        assert applications[0].status == ApplicationStatus.REJECTED
        stored = await store.get_partner_job_posting(partner.integration.id, "3901")
        assert stored.status == JobPostingStatus.PAUSED
        assert stored.application_count == 1

    def test_location_split(self):
        from connectors.linkedin_client import _split_location

        assert _split_location(None) == {"country": "US", "city": ""}
        assert _split_location("Lisbon") == {"country": "Lisbon", "city": "Lisbon"}


class TestPullSync:
    async def test_sync_jobs_stores_signals_and_postings(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200, json=INDEED_SEARCH))

        result = await partner.sync_jobs("pull", limit=100)

        assert result.success is True
        assert result.records_processed == 2
        signals = await store.list_signals(signal_type=SignalType.JOB_POSTING)
        assert {s.company_name for s in signals} == {"Loft", "QuintoAndar"}

        posting = await store.get_partner_job_posting(partner.integration.id, "jk-1")
        assert posting.status == JobPostingStatus.POSTED
        assert posting.signal_id is not None
        assert posting.metadata["source"] == "indeed"

        logs = await store.get_sync_logs(partner.integration.id)
        assert logs[0].status == SyncStatus.SUCCESS
        assert logs[0].sync_type == "job_posting"
        assert (await store.get_integration(partner.integration.id)).last_sync_at is not None

    async def test_repeat_pull_links_existing_signal(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200, json=INDEED_SEARCH))

        await partner.sync_jobs("pull")
        first = await store.get_partner_job_posting(partner.integration.id, "jk-1")
        await partner.sync_jobs("pull")
        second = await store.get_partner_job_posting(partner.integration.id, "jk-1")

        assert first.signal_id == second.signal_id
        assert len(await store.list_signals()) == 2

    async def test_limit_applies(self, store):
        partner = await indeed(store, lambda request: httpx.Response(200, json=INDEED_SEARCH))

        result = await partner.sync_jobs("pull", limit=1)
        assert result.records_processed == 1
        assert await store.count_job_postings(partner.integration.id) == 1

    async def test_filters_from_integration_config(self, store):
        params = {}

        def handler(request):
            params.update(dict(request.url.params))
            return httpx.Response(200, json={"results": []})

        partner = await indeed(store, handler, config=EngineConfig(default_location="Chile"))
        await partner.sync_jobs("pull")
        assert params["l"] == "Chile"
        assert params["fromage"] == "30"

        await store.create_integration(
            PartnerType.INDEED,
            status=IntegrationStatus.ACTIVE,
            api_key="indeed-key",
            config={"keywords": ["CTO"], "location": "Peru", "days_back": 5},
        )
        partner.integration = await store.get_integration_by_partner(PartnerType.INDEED)
        await partner.sync_jobs("pull")
        assert (params["q"], params["l"], params["fromage"]) == ("CTO", "Peru", "5")

    async def test_search_failure_marks_error_and_raises(self, store):
        partner = await indeed(store, lambda request: httpx.Response(500))

        with pytest.raises(PartnerAPIError):
            await partner.sync_jobs("pull")

        integration = await store.get_integration(partner.integration.id)
        assert integration.status == IntegrationStatus.ERROR
        logs = await store.get_sync_logs(partner.integration.id)
        assert logs[0].status == SyncStatus.ERROR
        assert "500" in logs[0].error_message

    async def test_unstorable_posting_counts_as_failed(self, store):
        payload = {"results": [{"jobtitle": "No id", "company": "Ghost"}, INDEED_SEARCH["results"][0]]}
        partner = await indeed(store, lambda request: httpx.Response(200, json=payload))

        result = await partner.sync_jobs("pull")

        assert result.success is False
        assert result.records_failed == 1
        assert result.to_dict()["errors"]
        logs = await store.get_sync_logs(partner.integration.id)
        assert logs[0].status == SyncStatus.PARTIAL
