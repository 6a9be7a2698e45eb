"""
Tests for the FastAPI surface.

Collectors are replaced through dependency overrides and every test gets its
own database file.
"""

import asyncio
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from api.main import (
    app,
    get_collectors,
    get_config,
    get_funding_collector,
)
from collectors.base import BaseCollector
from collectors.funding import FundingCollector
from signal_engine.config import EngineConfig
from signal_engine.models import IntegrationStatus, PartnerType, RawPosting
from storage.signal_store import signal_store


class StaticCollector(BaseCollector):
    requires_api_key = False
    source = "serpapi"

    def __init__(self):
        super().__init__(api_name="tests")

    async def _collect(self, filters):
        return [
            RawPosting(
                title="Head of Engineering",
                company="Acme",
                source="serpapi",
                location="Brazil",
                url="https://jobs.example.com/acme",
            ),
            RawPosting(
                title="VP of Sales",
                company="Globex",
                source="serpapi",
                location="Brazil",
                url="https://jobs.example.com/globex",
            ),
        ]


class NoFundingCollector(FundingCollector):
    async def collect(self, filters):
        return []


def sign(secret, body):
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def config(tmp_path):
    return EngineConfig(
        db_path=str(tmp_path / "api.db"),
        cron_secret="cron-secret",
        webhook_secret="hook-secret",
        indeed_webhook_secret="in-secret",
    )


@pytest.fixture
def client(config):
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_collectors] = lambda: {"serpapi": StaticCollector()}
    app.dependency_overrides[get_funding_collector] = lambda: NoFundingCollector()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def seed_integration(db_path, partner, status=IntegrationStatus.ACTIVE):
    async def seed():
        async with signal_store(db_path) as store:
            await store.create_integration(partner, status=status, api_key="k")

    asyncio.run(seed())


class TestSystem:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestIngestionRoutes:
    def test_ingest_stores_signals(self, client):
        response = client.post("/api/ingest", json={"keywords": ["Head of Engineering"]})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 2
        assert {s["companyName"] for s in body["signals"]} == {"Acme", "Globex"}

        listed = client.get("/api/signals", params={"type": "job_posting"}).json()
        assert listed["count"] == 2
        assert client.get("/api/stats").json()["total_signals"] == 2

    def test_repeat_ingest_reports_duplicates(self, client):
        client.post("/api/ingest", json={"keywords": ["CTO"]})
        body = client.post("/api/ingest", json={"keywords": ["CTO"]}).json()

        assert body["count"] == 0
        assert body["stats"]["duplicates"] == 2

    def test_empty_keywords_rejected(self, client):
        response = client.post("/api/ingest", json={"keywords": []})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body_rejected(self, client):
        response = client.post("/api/ingest", json={"keywords": ["CTO"], "daysBack": "soon"})
        assert response.status_code == 400

    def test_unknown_source_rejected(self, client):
        response = client.post("/api/ingest", json={"keywords": ["CTO"], "sources": ["monster"]})
        assert response.status_code == 400

    def test_queued_ingest(self, client):
        body = client.post("/api/ingest", json={"keywords": ["CTO"], "useQueue": True}).json()

        assert body["count"] == 0
        assert body["stats"]["queueJobId"]
        assert client.get("/api/queue/stats").json()["waiting"] == 1

    def test_v2_unknown_signal_type(self, client):
        response = client.post("/api/ingest/v2", json={"keywords": ["CTO"], "signalType": "rumour"})
        assert response.status_code == 400

    def test_v2_funding(self, client):
        body = client.post("/api/ingest/v2", json={"signalType": "funding", "minAmount": 1000000}).json()
        assert body == {"success": True, "count": 0, "signals": []}

    def test_unknown_signal_type_filter(self, client):
        assert client.get("/api/signals", params={"type": "rumour"}).status_code == 400


class TestCron:
    def test_requires_bearer_secret(self, client):
        assert client.get("/api/cron/ingest").status_code == 401
        assert client.get("/api/cron/ingest", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_runs_both_ingestions(self, client):
        response = client.get("/api/cron/ingest", headers={"Authorization": "Bearer cron-secret"})

        assert response.status_code == 200
        body = response.json()
        assert body["jobPostings"] == 2
        assert body["fundingSignals"] == 0


class TestSignalsWebhook:
    def test_unknown_type(self, client):
        response = client.post("/api/webhooks/signals", content=json.dumps({"type": "rumour"}))
        assert response.status_code == 400

    def test_invalid_json(self, client):
        assert client.post("/api/webhooks/signals", content="{nope").status_code == 400

    def test_bad_signature(self, client):
        body = json.dumps({"type": "funding", "company_name": "Kovi"})
        response = client.post("/api/webhooks/signals", content=body, headers={"X-Webhook-Signature": "00"})
        assert response.status_code == 401

    def test_funding_items(self, client):
        body = json.dumps(
            {
                "type": "funding",
                "items": [
                    {"type": "funding", "company_name": "Kovi", "funding_amount": 5000000, "round": "Series A"},
                    {"type": "funding", "funding_amount": 100},
                ],
            }
        )
        response = client.post(
            "/api/webhooks/signals",
            content=body,
            headers={"X-Webhook-Signature": sign("hook-secret", body), "X-Signal-Source": "dealroom"},
        )

        assert response.json() == {"success": True, "signalsReceived": 1}
        signals = client.get("/api/signals", params={"type": "funding"}).json()["signals"]
        assert signals[0]["source"] == "dealroom"

    def test_job_posting_is_queued_with_webhook_priority(self, client):
        body = json.dumps({"type": "job_posting", "job_title": "CTO", "location": "Mexico"})
        response = client.post("/api/webhooks/signals", content=body)

        assert response.status_code == 200
        assert response.json()["queueJobId"]
        assert client.get("/api/queue/stats").json()["waiting"] == 1


class TestPartnerWebhooks:
    def test_challenge_echo(self, client):
        response = client.post("/api/webhooks/linkedin", params={"challenge": "abc123"})
        assert response.json() == {"challenge": "abc123"}

    def test_no_active_integration(self, client):
        assert client.post("/api/webhooks/indeed", content="{}").status_code == 404

    def test_bad_signature(self, client, config):
        seed_integration(config.db_path, PartnerType.INDEED)

        response = client.post("/api/webhooks/indeed", content="{}", headers={"X-Indeed-Signature": "00"})
        assert response.status_code == 401

    def test_signed_event_accepted(self, client, config):
        seed_integration(config.db_path, PartnerType.INDEED)
        body = json.dumps({"type": "job.status_changed", "jobId": "unknown", "status": "closed"})

        response = client.post(
            "/api/webhooks/indeed", content=body, headers={"X-Indeed-Signature": sign("in-secret", body)}
        )
        assert response.json() == {"success": True}


class TestPartnerRoutes:
    def test_unknown_direction(self, client):
        assert client.post("/api/partners/sync", json={"direction": "sideways"}).status_code == 400

    def test_unknown_partner(self, client):
        assert client.post("/api/partners/sync", json={"direction": "pull", "partner": "monster"}).status_code == 400

    def test_pull_without_integrations(self, client):
        assert client.post("/api/partners/sync", json={"direction": "pull"}).json() == {
            "success": True,
            "results": [],
        }

    def test_status_and_monitoring(self, client, config):
        seed_integration(config.db_path, PartnerType.LINKEDIN, status=IntegrationStatus.PENDING)

        integrations = client.get("/api/partners/sync").json()["integrations"]
        assert integrations[0]["jobPostingCount"] == 0

        monitoring = client.get("/api/partners/monitoring").json()
        assert monitoring["stats"]["totalIntegrations"] == 1
        assert monitoring["stats"]["syncSuccessRate"] == 100


class TestBucketRoutes:
    def test_classify_then_list(self, client):
        client.post("/api/ingest", json={"keywords": ["Head of Engineering"]})

        response = client.post("/api/buckets", json={})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["stats"]["signals_fetched"] == 2

        listed = client.get("/api/buckets").json()["buckets"]
        assert [b["priority"] for b in listed] == [5, 4, 3, 2, 1]

    def test_unknown_bucket(self, client):
        assert client.get("/api/buckets/missing/candidates").status_code == 404
        assert client.post("/api/buckets/missing/trigger").status_code == 404
