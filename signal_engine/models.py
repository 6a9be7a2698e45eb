"""
Shared data model for the Talent Signals Engine.

Raw collector output (RawPosting, RawFundingEvent) is normalized into Signal
records by the ingestion layer. Classification attaches signals to
ActionBuckets through BucketAssignments, and the partner layer mirrors job
posting state in PartnerJobPosting rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# ENUMS
# =============================================================================

class SignalType(str, Enum):
    JOB_POSTING = "job_posting"
    FUNDING_ANNOUNCEMENT = "funding_announcement"
    EXPANSION = "expansion"
    HIRING_SPIKE = "hiring_spike"
    SKILLS_SHIFT = "skills_shift"
    MERGER_ACQUISITION = "merger_acquisition"

    @classmethod
    def parse(cls, value: str) -> "SignalType":
        normalized = (value or "").strip().lower()
        if normalized == "expansion_signal":
            return cls.EXPANSION
        if normalized == "funding":
            return cls.FUNDING_ANNOUNCEMENT
        return cls(normalized)


class BucketType(str, Enum):
    POACH = "POACH"
    SCALE = "SCALE"
    SKILLS_SHIFT = "SKILLS_SHIFT"
    EXPANSION = "EXPANSION"
    FUNDING_BOOST = "FUNDING_BOOST"


class PartnerType(str, Enum):
    LINKEDIN = "LINKEDIN"
    INDEED = "INDEED"
    GLASSDOOR = "GLASSDOOR"


class IntegrationStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    ERROR = "ERROR"


class JobPostingStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"
    EXPIRED = "EXPIRED"
    DELETED = "DELETED"


class ApplicationStatus(str, Enum):
    APPLIED = "APPLIED"
    REVIEWING = "REVIEWING"
    SCREENING = "SCREENING"
    INTERVIEWING = "INTERVIEWING"
    OFFERED = "OFFERED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"


# =============================================================================
# COLLECTOR OUTPUT
# =============================================================================

@dataclass
class RawPosting:
    """A job posting as returned by a collector, before normalization."""
    title: str
    company: str
    source: str
    location: Optional[str] = None
    url: Optional[str] = None
    posted_date: Optional[datetime] = None
    description: Optional[str] = None
    external_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "company": self.company,
            "source": self.source,
            "location": self.location,
            "url": self.url,
            "posted_date": self.posted_date.isoformat() if self.posted_date else None,
            "description": self.description,
            "external_id": self.external_id,
        }


@dataclass
class RawFundingEvent:
    """A funding round as returned by the funding collector."""
    company_name: str
    source: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    round_type: Optional[str] = None
    announced_on: Optional[datetime] = None
    investors: List[str] = field(default_factory=list)
    company_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        parts = [self.company_name, "raised"]
        if self.amount:
            parts.append(f"{self.currency or 'USD'} {self.amount:,.0f}")
        if self.round_type:
            parts.append(f"({self.round_type})")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company_name": self.company_name,
            "source": self.source,
            "amount": self.amount,
            "currency": self.currency,
            "round_type": self.round_type,
            "announced_on": self.announced_on.isoformat() if self.announced_on else None,
            "investors": list(self.investors),
            "company_url": self.company_url,
        }


@dataclass
class SignalRecord:
    """Normalized signal data ready to be stored."""
    type: SignalType
    source: str
    company_name: str
    title: Optional[str] = None
    company_url: Optional[str] = None
    job_url: Optional[str] = None
    location: Optional[str] = None
    posted_date: Optional[datetime] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_posting(cls, posting: RawPosting) -> "SignalRecord":
        return cls(
            type=SignalType.JOB_POSTING,
            source=posting.source,
            company_name=posting.company,
            title=posting.title,
            job_url=posting.url,
            location=posting.location,
            posted_date=posting.posted_date,
            raw_data=posting.to_dict(),
        )

    @classmethod
    def from_funding(cls, event: RawFundingEvent) -> "SignalRecord":
        return cls(
            type=SignalType.FUNDING_ANNOUNCEMENT,
            source=event.source,
            company_name=event.company_name,
            title=event.title,
            company_url=event.company_url,
            posted_date=event.announced_on,
            raw_data=event.to_dict(),
        )


# =============================================================================
# STORED ENTITIES
# =============================================================================

@dataclass
class Signal:
    id: str
    type: SignalType
    source: str
    company_name: str
    title: Optional[str] = None
    company_url: Optional[str] = None
    job_url: Optional[str] = None
    location: Optional[str] = None
    posted_date: Optional[datetime] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)
    processed: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "companyName": self.company_name,
            "title": self.title,
            "companyUrl": self.company_url,
            "jobUrl": self.job_url,
            "location": self.location,
            "postedDate": self.posted_date.isoformat() if self.posted_date else None,
            "processed": self.processed,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class Enrichment:
    """Company metadata attached to a signal (0 or 1 per signal)."""
    signal_id: str
    company_size: Optional[int] = None
    employee_count_in_target_country: Optional[int] = None
    industry: Optional[str] = None
    headquarters: Optional[str] = None
    funding_amount: Optional[float] = None
    funding_date: Optional[datetime] = None
    decision_makers: List[Dict[str, Any]] = field(default_factory=list)
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def headquarters_country(self) -> Optional[str]:
        if not self.headquarters:
            return None
        country = self.headquarters.split(",")[-1].strip()
        return country or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "companySize": self.company_size,
            "employeeCountInTargetCountry": self.employee_count_in_target_country,
            "industry": self.industry,
            "headquarters": self.headquarters,
            "fundingAmount": self.funding_amount,
            "fundingDate": self.funding_date.isoformat() if self.funding_date else None,
            "decisionMakers": self.decision_makers,
        }


@dataclass
class ActionBucket:
    id: str
    type: BucketType
    name: str
    description: str
    priority: int = 0
    is_active: bool = True


@dataclass
class BucketAssignment:
    bucket_id: str
    signal_id: str
    confidence: float


@dataclass
class CandidateProfile:
    name: str
    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    linkedin_url: Optional[str] = None
    email: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    tenure_months: Optional[int] = None
    likelihood_to_move: float = 0.0
    bucket_id: Optional[str] = None
    source: str = "apollo"
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "linkedinUrl": self.linkedin_url,
            "email": self.email,
            "skills": list(self.skills),
            "tenureMonths": self.tenure_months,
            "likelihoodToMove": self.likelihood_to_move,
            "bucketId": self.bucket_id,
            "source": self.source,
        }


@dataclass
class PartnerIntegration:
    id: str
    partner: PartnerType
    status: IntegrationStatus = IntegrationStatus.PENDING
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    last_sync_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "partner": self.partner.value,
            "status": self.status.value,
            "lastSyncAt": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class PartnerJobPosting:
    id: str
    integration_id: str
    partner_job_id: str
    status: JobPostingStatus
    signal_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    application_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class SyncLogEntry:
    id: str
    integration_id: str
    sync_type: str
    status: SyncStatus
    records_processed: int = 0
    records_failed: int = 0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integrationId": self.integration_id,
            "syncType": self.sync_type,
            "status": self.status.value,
            "recordsProcessed": self.records_processed,
            "recordsFailed": self.records_failed,
            "errorMessage": self.error_message,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class Application:
    id: str
    job_posting_id: str
    status: ApplicationStatus
    source: str
    partner_data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
