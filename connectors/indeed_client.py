"""
Indeed partner client.

Indeed authenticates with a static API key plus the partner id header, so
there is no token refresh.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from collectors.base import CollectorFilters
from connectors.base_partner import BasePartner, JobPostingData, PostedJob
from signal_engine.errors import PartnerAPIError, ValidationError
from signal_engine.models import (
    ApplicationStatus,
    IntegrationStatus,
    JobPostingStatus,
    PartnerType,
    RawPosting,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

INDEED_API_URL = "https://ads.indeed.com"
INDEED_VIEWJOB_URL = "https://www.indeed.com/viewjob?jk="

APPLICATION_STATUS_MAP = {
    "applied": ApplicationStatus.APPLIED,
    "reviewing": ApplicationStatus.REVIEWING,
    "screening": ApplicationStatus.SCREENING,
    "interviewing": ApplicationStatus.INTERVIEWING,
    "offered": ApplicationStatus.OFFERED,
    "accepted": ApplicationStatus.ACCEPTED,
    "rejected": ApplicationStatus.REJECTED,
    "withdrawn": ApplicationStatus.WITHDRAWN,
}

JOB_STATUS_MAP = {
    "active": JobPostingStatus.POSTED,
    "paused": JobPostingStatus.PAUSED,
    "closed": JobPostingStatus.CLOSED,
    "deleted": JobPostingStatus.DELETED,
    "expired": JobPostingStatus.EXPIRED,
    "draft": JobPostingStatus.DRAFT,
}


def map_application_status(value: Optional[str]) -> ApplicationStatus:
    return APPLICATION_STATUS_MAP.get((value or "").lower(), ApplicationStatus.APPLIED)


def map_job_status(value: Optional[str]) -> JobPostingStatus:
    return JOB_STATUS_MAP.get((value or "").lower(), JobPostingStatus.POSTED)


def job_url(job: Dict[str, Any]) -> str:
    if job.get("url"):
        return job["url"]
    if job.get("jobkey"):
        return f"{INDEED_VIEWJOB_URL}{job['jobkey']}"
    return ""


class IndeedClient(BasePartner):
    partner_type = PartnerType.INDEED
    name = "Indeed"
    base_url = INDEED_API_URL
    source = "indeed"

    def auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.integration.api_key}",
            "Content-Type": "application/json",
            "X-Indeed-Partner-ID": self.config.indeed_partner_id or "",
        }

    async def initialize(self) -> None:
        if not self.integration.api_key:
            raise ValidationError("Indeed API key not configured")

        try:
            await self.request("GET", "/api/v1/jobs", params={"limit": 1})
        except PartnerAPIError:
            await self.update_integration_status(IntegrationStatus.ERROR)
            raise
        await self.update_integration_status(IntegrationStatus.ACTIVE)

    async def search_jobs(self, filters: CollectorFilters) -> List[RawPosting]:
        data = await self.request_json(
            "GET",
            "/api/v1/jobs/search",
            params={
                "q": filters.query,
                "l": filters.location or "",
                "limit": 25,
                "fromage": filters.days_back or 30,
            },
        )

        postings = []
        for job in data.get("results") or []:
            postings.append(
                RawPosting(
                    title=job.get("jobtitle") or "",
                    company=job.get("company") or "",
                    source=self.source,
                    location=job.get("formattedLocation") or job.get("location") or filters.location,
                    url=job_url(job),
                    posted_date=parse_timestamp(job.get("date")),
                    description=job.get("snippet") or "",
                    external_id=job.get("jobkey"),
                    raw=job,
                )
            )

        logger.info(f"Indeed job search returned {len(postings)} postings")
        return postings

    async def post_job(self, job: JobPostingData) -> PostedJob:
        payload = {
            "title": job.title,
            "description": job.description,
            "company": job.company,
            "location": job.location or "",
            "jobType": "FULLTIME",
        }
        data = await self.request_json("POST", "/api/v1/jobs", json=payload)
        partner_job_id = str(data.get("jobId") or data["id"])
        posted = PostedJob(
            partner_job_id=partner_job_id,
            url=data.get("url") or f"{INDEED_VIEWJOB_URL}{partner_job_id}",
        )
        logger.info(f"Indeed job posted: {partner_job_id} ({job.title})")
        return posted

    async def update_job(self, partner_job_id: str, job: JobPostingData) -> None:
        payload = {
            key: value
            for key, value in (
                ("title", job.title),
                ("description", job.description),
                ("location", job.location),
            )
            if value
        }
        await self.request("PATCH", f"/api/v1/jobs/{partner_job_id}", json=payload)

    async def delete_job(self, partner_job_id: str) -> None:
        await self.request("DELETE", f"/api/v1/jobs/{partner_job_id}")

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    async def process_webhook(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        logger.info(f"Processing Indeed webhook: {event_type}")

        if event_type == "application.received":
            await self._handle_application(event)
        elif event_type == "application.status_changed":
            await self._handle_application_status(event)
        elif event_type == "job.status_changed":
            await self._handle_job_status(event)
        else:
            logger.warning(f"Unknown Indeed webhook event type: {event_type}")

    async def _handle_application(self, event: Dict[str, Any]) -> None:
        posting = await self.store.get_partner_job_posting(self.integration.id, str(event.get("jobId")))
        if posting is None:
            logger.warning(f"Indeed application for unknown job {event.get('jobId')}")
            return

        application_id = event.get("applicationId")
        await self.store.record_application(
            posting.id,
            source=self.source,
            partner_data=event,
            partner_application_id=str(application_id) if application_id else None,
        )

    async def _handle_application_status(self, event: Dict[str, Any]) -> None:
        application_id = event.get("applicationId")
        if not application_id:
            return
        updated = await self.store.update_application_status(
            str(application_id), map_application_status(event.get("status"))
        )
        if not updated:
            logger.warning(f"Indeed status change for unknown application {application_id}")

    async def _handle_job_status(self, event: Dict[str, Any]) -> None:
        await self.store.update_partner_job_status(
            self.integration.id, str(event.get("jobId")), map_job_status(event.get("status"))
        )
