"""
Talent Signals Engine API

FastAPI surface over ingestion, the job queue, bucket classification,
orchestration and partner sync. Each request opens its own store
connections through the dependencies below.

Run:
    uvicorn api.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from collectors import build_collectors, build_funding_collector
from collectors.base import BaseCollector, CollectorFilters
from collectors.funding import FundingCollector, FundingFilters
from connectors.candidate_source import CandidateSource, PlaceholderCandidateSource
from connectors.enrichment import EnrichmentProvider, NullEnrichmentProvider
from connectors.partners import PartnerClientFactory, build_partner_client, parse_partner
from connectors.webhook_handler import WebhookHandler, verify_hmac_signature
from signal_engine import __version__
from signal_engine.config import EngineConfig
from signal_engine.errors import AuthenticationError, IntegrationNotFoundError, ValidationError
from signal_engine.models import PartnerType, SignalType
from storage.signal_store import SignalStore, signal_store
from workflows.engine import SignalEngine, engine_context
from workflows.icp import ICPConfig
from workflows.logistics_engine import LogisticsEngine
from workflows.orchestration import OrchestrationWorkflow
from workflows.partner_sync import PartnerSyncService

load_dotenv()

logger = logging.getLogger(__name__)

CRON_KEYWORDS = ["Head of Engineering", "VP of Sales", "Director", "CTO"]
CRON_MIN_FUNDING = 1_000_000

app = FastAPI(
    title="Talent Signals Engine API",
    description="Hiring and funding signals, action buckets and job-board partner sync",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR MAPPING
# =============================================================================

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    return _error(400, f"Invalid request: {exc.errors()}")


@app.exception_handler(AuthenticationError)
async def handle_authentication_error(request: Request, exc: AuthenticationError):
    return _error(401, str(exc))


@app.exception_handler(IntegrationNotFoundError)
async def handle_integration_not_found(request: Request, exc: IntegrationNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(LookupError)
async def handle_lookup_error(request: Request, exc: LookupError):
    return _error(404, str(exc))


# =============================================================================
# DEPENDENCIES
# =============================================================================

@lru_cache
def get_config() -> EngineConfig:
    return EngineConfig.from_env()


def get_collectors(config: EngineConfig = Depends(get_config)) -> Dict[str, BaseCollector]:
    return build_collectors(config)


def get_funding_collector(config: EngineConfig = Depends(get_config)) -> FundingCollector:
    return build_funding_collector(config)


async def get_store(config: EngineConfig = Depends(get_config)) -> AsyncIterator[SignalStore]:
    async with signal_store(config.db_path) as store:
        yield store


async def get_engine(
    config: EngineConfig = Depends(get_config),
    collectors: Dict[str, BaseCollector] = Depends(get_collectors),
    funding_collector: FundingCollector = Depends(get_funding_collector),
) -> AsyncIterator[SignalEngine]:
    async with engine_context(config, collectors, funding_collector) as engine:
        yield engine


def get_enricher() -> EnrichmentProvider:
    return NullEnrichmentProvider()


def get_candidate_source() -> CandidateSource:
    return PlaceholderCandidateSource()


def get_partner_client_factory() -> PartnerClientFactory:
    return build_partner_client


# =============================================================================
# REQUEST MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str


class IngestRequest(BaseModel):
    keywords: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    daysBack: int = 7
    useQueue: bool = False
    sources: Optional[List[str]] = None


class IngestV2Request(IngestRequest):
    signalType: str = "job_posting"
    minAmount: Optional[float] = None
    rounds: List[str] = Field(default_factory=list)


class PartnerSyncRequest(BaseModel):
    direction: str = "bidirectional"
    partner: Optional[str] = None
    signalIds: Optional[List[str]] = None
    limit: Optional[int] = None
    resolveConflicts: str = "newest"


class ClassifyRequest(BaseModel):
    icpConfig: Optional[Dict[str, Any]] = None


# =============================================================================
# HELPERS
# =============================================================================

async def _ingest_job_postings(engine: SignalEngine, body: IngestRequest, priority_source: str = "manual"):
    filters = CollectorFilters(
        keywords=body.keywords,
        location=body.location or engine.config.default_location,
        days_back=body.daysBack,
    )
    return await engine.ingestion.ingest_job_postings(
        filters,
        use_queue=body.useQueue,
        sources=body.sources,
        priority_source=priority_source,
    )


def _job_posting_response(result) -> Dict[str, Any]:
    return {
        "success": True,
        "count": len(result.signals),
        "stats": result.stats.to_dict(),
        "signals": [
            {"id": s.id, "companyName": s.company_name, "title": s.title, "source": s.source}
            for s in result.signals
        ],
    }


def _partner_or_none(value: Optional[str]) -> Optional[PartnerType]:
    return parse_partner(value) if value else None


# =============================================================================
# SYSTEM
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
    )


# =============================================================================
# INGESTION
# =============================================================================

@app.post("/api/ingest", tags=["Ingestion"])
async def ingest(body: IngestRequest, engine: SignalEngine = Depends(get_engine)):
    result = await _ingest_job_postings(engine, body)
    return _job_posting_response(result)


@app.post("/api/ingest/v2", tags=["Ingestion"])
async def ingest_v2(body: IngestV2Request, engine: SignalEngine = Depends(get_engine)):
    if body.signalType == "funding":
        signals = await engine.ingestion.ingest_funding_signals(
            FundingFilters(min_amount=body.minAmount, rounds=body.rounds, days_back=body.daysBack)
        )
        return {
            "success": True,
            "count": len(signals),
            "signals": [{"id": s.id, "companyName": s.company_name, "type": s.type.value} for s in signals],
        }

    if body.signalType == "job_posting":
        result = await _ingest_job_postings(engine, body)
        return _job_posting_response(result)

    raise ValidationError(f"Unknown signal type: {body.signalType}")


@app.get("/api/cron/ingest", tags=["Ingestion"])
async def cron_ingest(
    authorization: Optional[str] = Header(None),
    config: EngineConfig = Depends(get_config),
    engine: SignalEngine = Depends(get_engine),
):
    if not config.cron_secret or authorization != f"Bearer {config.cron_secret}":
        return _error(401, "Unauthorized")

    result = await engine.ingestion.ingest_job_postings(
        CollectorFilters(keywords=CRON_KEYWORDS, location=config.default_location, days_back=7),
        use_queue=False,
        priority_source="scheduled",
    )
    funding = await engine.ingestion.ingest_funding_signals(
        FundingFilters(min_amount=CRON_MIN_FUNDING, days_back=7)
    )

    logger.info(f"Cron ingestion: {result.stats.total_collected} postings, {len(funding)} funding signals")
    return {
        "success": True,
        "jobPostings": result.stats.total_collected,
        "fundingSignals": len(funding),
        "stats": result.stats.to_dict(),
    }


@app.get("/api/queue/stats", tags=["Ingestion"])
async def queue_stats(engine: SignalEngine = Depends(get_engine)):
    return await engine.ingestion.get_queue_stats()


@app.get("/api/signals", tags=["Signals"])
async def list_signals(
    type: Optional[str] = Query(None, description="Signal type"),
    processed: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    store: SignalStore = Depends(get_store),
):
    signal_type = None
    if type:
        try:
            signal_type = SignalType.parse(type)
        except ValueError:
            raise ValidationError(f"Unknown signal type: {type}") from None

    signals = await store.list_signals(signal_type=signal_type, processed=processed, limit=limit)
    return {"count": len(signals), "signals": [s.to_dict() for s in signals]}


@app.get("/api/stats", tags=["Signals"])
async def signal_stats(store: SignalStore = Depends(get_store)):
    return await store.get_stats()


# =============================================================================
# WEBHOOKS
# =============================================================================

@app.post("/api/webhooks/signals", tags=["Webhooks"])
async def signals_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    x_signal_source: Optional[str] = Header(None),
    config: EngineConfig = Depends(get_config),
    engine: SignalEngine = Depends(get_engine),
):
    body = (await request.body()).decode()
    if x_webhook_signature is not None:
        if not verify_hmac_signature(config.webhook_secret, body, x_webhook_signature):
            logger.warning("Rejected signals webhook: invalid signature")
            raise AuthenticationError("Invalid signature")

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON payload") from None
    if not isinstance(data, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    if data.get("type") == "funding":
        items = data.get("items") if isinstance(data.get("items"), list) else [data]
        if x_signal_source:
            items = [{**item, "source": item.get("source") or x_signal_source} for item in items]
        signals = await engine.ingestion.ingest_funding_webhook(items)
        return {"success": True, "signalsReceived": len(signals)}

    if data.get("type") == "job_posting" or data.get("job_title"):
        keywords = data.get("keywords") or [data.get("job_title") or ""]
        result = await engine.ingestion.ingest_job_postings(
            CollectorFilters(
                keywords=keywords,
                location=data.get("location") or config.default_location,
                days_back=int(data.get("days_back") or 30),
            ),
            use_queue=True,
            priority_source="webhook",
        )
        return {"success": True, "queueJobId": result.stats.queue_job_id, "stats": result.stats.to_dict()}

    raise ValidationError("Unknown signal type")


async def _partner_webhook(
    partner: PartnerType,
    request: Request,
    signature: Optional[str],
    challenge: Optional[str],
    store: SignalStore,
    config: EngineConfig,
    client_factory: PartnerClientFactory,
) -> Dict[str, Any]:
    handler = WebhookHandler(store, config, client_factory)
    if challenge:
        return {"challenge": handler.verify_webhook_challenge(partner, challenge)}

    body = (await request.body()).decode()
    if partner == PartnerType.LINKEDIN:
        return await handler.process_linkedin_webhook(body, signature, request.headers)
    return await handler.process_indeed_webhook(body, signature, request.headers)


@app.post("/api/webhooks/linkedin", tags=["Webhooks"])
async def linkedin_webhook(
    request: Request,
    challenge: Optional[str] = Query(None),
    x_linkedin_signature: Optional[str] = Header(None),
    store: SignalStore = Depends(get_store),
    config: EngineConfig = Depends(get_config),
    client_factory: PartnerClientFactory = Depends(get_partner_client_factory),
):
    return await _partner_webhook(
        PartnerType.LINKEDIN, request, x_linkedin_signature, challenge, store, config, client_factory
    )


@app.post("/api/webhooks/indeed", tags=["Webhooks"])
async def indeed_webhook(
    request: Request,
    challenge: Optional[str] = Query(None),
    x_indeed_signature: Optional[str] = Header(None),
    store: SignalStore = Depends(get_store),
    config: EngineConfig = Depends(get_config),
    client_factory: PartnerClientFactory = Depends(get_partner_client_factory),
):
    return await _partner_webhook(
        PartnerType.INDEED, request, x_indeed_signature, challenge, store, config, client_factory
    )


# =============================================================================
# PARTNERS
# =============================================================================

def get_partner_sync(
    store: SignalStore = Depends(get_store),
    config: EngineConfig = Depends(get_config),
    client_factory: PartnerClientFactory = Depends(get_partner_client_factory),
) -> PartnerSyncService:
    return PartnerSyncService(store, config, client_factory)


@app.post("/api/partners/sync", tags=["Partners"])
async def partner_sync(body: PartnerSyncRequest, service: PartnerSyncService = Depends(get_partner_sync)):
    partner = _partner_or_none(body.partner)

    if body.direction == "pull":
        report = await service.sync_from_partners(partner, limit=body.limit)
    elif body.direction == "push":
        report = await service.sync_to_partners(partner, signal_ids=body.signalIds, limit=body.limit)
    elif body.direction == "bidirectional":
        report = await service.bidirectional_sync(partner, resolve_conflicts=body.resolveConflicts)
    else:
        raise ValidationError(f"Unknown sync direction: {body.direction}")

    logger.info(f"Partner sync ({body.direction}) completed: success={report.success}")
    return report.to_dict()


@app.get("/api/partners/sync", tags=["Partners"])
async def partner_sync_status(service: PartnerSyncService = Depends(get_partner_sync)):
    return {"integrations": await service.get_integrations_overview()}


@app.get("/api/partners/monitoring", tags=["Partners"])
async def partner_monitoring(
    partner: Optional[str] = Query(None),
    days: int = Query(7, ge=1, le=90),
    service: PartnerSyncService = Depends(get_partner_sync),
):
    return await service.get_monitoring(_partner_or_none(partner), days=days)


# =============================================================================
# BUCKETS
# =============================================================================

@app.get("/api/buckets", tags=["Buckets"])
async def list_buckets(store: SignalStore = Depends(get_store), config: EngineConfig = Depends(get_config)):
    engine = LogisticsEngine(store, batch_size=config.classification_batch_size)
    buckets = await engine.get_action_buckets()
    return {"buckets": [b.to_dict() for b in buckets]}


@app.post("/api/buckets", tags=["Buckets"])
async def classify_signals(
    body: ClassifyRequest,
    store: SignalStore = Depends(get_store),
    config: EngineConfig = Depends(get_config),
    enricher: EnrichmentProvider = Depends(get_enricher),
):
    engine = LogisticsEngine(store, enricher, batch_size=config.classification_batch_size)
    buckets = await engine.process_signals(ICPConfig.from_dict(body.icpConfig))
    return {
        "success": True,
        "buckets": [b.to_dict() for b in buckets],
        "stats": engine.last_stats.to_dict() if engine.last_stats else None,
    }


@app.post("/api/buckets/{bucket_id}/trigger", tags=["Buckets"])
async def trigger_bucket(
    bucket_id: str,
    body: Optional[ClassifyRequest] = None,
    store: SignalStore = Depends(get_store),
    candidate_source: CandidateSource = Depends(get_candidate_source),
):
    workflow = OrchestrationWorkflow(store, candidate_source)
    icp = ICPConfig.from_dict(body.icpConfig if body else None)
    candidates = await workflow.trigger_workflow(bucket_id, icp)
    return {
        "success": True,
        "count": len(candidates),
        "candidates": [c.to_dict() for c in candidates],
    }


@app.get("/api/buckets/{bucket_id}/candidates", tags=["Buckets"])
async def bucket_candidates(bucket_id: str, store: SignalStore = Depends(get_store)):
    if await store.get_bucket(bucket_id) is None:
        raise LookupError(f"Bucket not found: {bucket_id}")
    workflow = OrchestrationWorkflow(store)
    candidates = await workflow.get_candidates_for_bucket(bucket_id)
    return {"count": len(candidates), "candidates": [c.to_dict() for c in candidates]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
