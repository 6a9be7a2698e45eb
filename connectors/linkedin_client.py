"""
LinkedIn partner client.

OAuth 2.0 bearer tokens; an expired token is refreshed through the
accessToken endpoint and the new pair is persisted on the integration.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from collectors.base import CollectorFilters
from connectors.base_partner import BasePartner, JobPostingData, PostedJob
from signal_engine.errors import PartnerAPIError, ValidationError
from signal_engine.models import (
    ApplicationStatus,
    IntegrationStatus,
    JobPostingStatus,
    PartnerType,
    RawPosting,
)

logger = logging.getLogger(__name__)

LINKEDIN_API_URL = "https://api.linkedin.com/v2"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"

JOB_STATUS_MAP = {
    "ACTIVE": JobPostingStatus.POSTED,
    "PAUSED": JobPostingStatus.PAUSED,
    "CLOSED": JobPostingStatus.CLOSED,
    "DELETED": JobPostingStatus.DELETED,
    "EXPIRED": JobPostingStatus.EXPIRED,
    "DRAFT": JobPostingStatus.DRAFT,
}


def map_job_status(value: Optional[str]) -> JobPostingStatus:
    return JOB_STATUS_MAP.get((value or "").upper(), JobPostingStatus.POSTED)


def map_application_status(value: Optional[str]) -> ApplicationStatus:
    try:
        return ApplicationStatus((value or "").upper())
    except ValueError:
        return ApplicationStatus.APPLIED


def _split_location(location: Optional[str]) -> Dict[str, str]:
    if not location:
        return {"country": "US", "city": ""}
    parts = [p.strip() for p in location.split(",")]
    return {"country": parts[-1] or "US", "city": parts[0]}


def _listed_at(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class LinkedInClient(BasePartner):
    partner_type = PartnerType.LINKEDIN
    name = "LinkedIn"
    base_url = LINKEDIN_API_URL
    source = "linkedin"

    def auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.integration.access_token}",
            "Content-Type": "application/json",
        }

    async def initialize(self) -> None:
        if not self.integration.access_token:
            raise ValidationError("LinkedIn access token not configured")

        try:
            await self.request("GET", "/me")
        except PartnerAPIError:
            await self.update_integration_status(IntegrationStatus.ERROR)
            raise
        await self.update_integration_status(IntegrationStatus.ACTIVE)

    async def refresh_token(self) -> Optional[str]:
        refresh = self.integration.refresh_token
        client_id = self.config.linkedin_client_id
        client_secret = self.config.linkedin_client_secret
        if not (refresh and client_id and client_secret):
            logger.warning("Cannot refresh LinkedIn token: missing credentials")
            return None

        try:
            response = await self.client.post(
                LINKEDIN_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh,
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            tokens = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to refresh LinkedIn token: {e}")
            return None

        access_token = tokens.get("access_token")
        if not access_token:
            return None
        new_refresh = tokens.get("refresh_token") or refresh

        self.integration.access_token = access_token
        self.integration.refresh_token = new_refresh
        await self.store.update_integration_tokens(self.integration.id, access_token, new_refresh)
        logger.info("LinkedIn access token refreshed")
        return access_token

    async def search_jobs(self, filters: CollectorFilters) -> List[RawPosting]:
        data = await self.request_json(
            "GET",
            "/jobSearch",
            params={
                "keywords": filters.query,
                "location": filters.location or "",
                "count": 25,
                "start": 0,
            },
        )

        postings = []
        for job in data.get("elements") or []:
            postings.append(
                RawPosting(
                    title=job.get("title") or "",
                    company=(job.get("companyDetails") or {}).get("name") or "",
                    source=self.source,
                    location=job.get("formattedLocation") or filters.location,
                    url=job.get("jobPostingUrl") or "",
                    posted_date=_listed_at(job.get("listedAt")),
                    description=(job.get("description") or {}).get("text") or "",
                    external_id=str(job["id"]) if job.get("id") else None,
                    raw=job,
                )
            )

        logger.info(f"LinkedIn job search returned {len(postings)} postings")
        return postings

    async def post_job(self, job: JobPostingData) -> PostedJob:
        payload = {
            "postingDetails": {
                "title": job.title,
                "description": {"text": job.description},
                "companyDetails": {"name": job.company},
                "location": _split_location(job.location),
            },
            "visibility": {"visibilityType": "PUBLIC"},
        }
        data = await self.request_json("POST", "/jobPostings", json=payload)
        posted = PostedJob(partner_job_id=str(data["id"]), url=data.get("jobPostingUrl") or "")
        logger.info(f"LinkedIn job posted: {posted.partner_job_id} ({job.title})")
        return posted

    async def update_job(self, partner_job_id: str, job: JobPostingData) -> None:
        payload: Dict[str, Any] = {}
        if job.title:
            payload["postingDetails.title"] = job.title
        if job.description:
            payload["postingDetails.description.text"] = job.description
        await self.request("PATCH", f"/jobPostings/{partner_job_id}", json=payload)

    async def delete_job(self, partner_job_id: str) -> None:
        await self.request("DELETE", f"/jobPostings/{partner_job_id}")

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    async def process_webhook(self, event: Dict[str, Any]) -> None:
        event_type = event.get("eventType")
        logger.info(f"Processing LinkedIn webhook: {event_type}")

        if event_type == "JOB_APPLICATION":
            await self._handle_application(event)
        elif event_type == "APPLICATION_STATUS_CHANGE":
            await self._handle_application_status(event)
        elif event_type == "JOB_STATUS_CHANGE":
            await self._handle_job_status(event)
        else:
            logger.warning(f"Unknown LinkedIn webhook event type: {event_type}")

    async def _handle_application(self, event: Dict[str, Any]) -> None:
        posting = await self.store.get_partner_job_posting(self.integration.id, str(event.get("jobId")))
        if posting is None:
            logger.warning(f"LinkedIn application for unknown job {event.get('jobId')}")
            return

        await self.store.record_application(
            posting.id,
            source=self.source,
            partner_data=event,
            partner_application_id=str(event["applicationId"]) if event.get("applicationId") else None,
        )

    async def _handle_application_status(self, event: Dict[str, Any]) -> None:
        application_id = event.get("applicationId")
        if not application_id:
            return
        await self.store.update_application_status(
            str(application_id), map_application_status(event.get("status"))
        )

    async def _handle_job_status(self, event: Dict[str, Any]) -> None:
        await self.store.update_partner_job_status(
            self.integration.id, str(event.get("jobId")), map_job_status(event.get("status"))
        )
