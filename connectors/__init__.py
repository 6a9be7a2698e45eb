"""
Connectors to systems outside the engine: job-board partners, company
enrichment and candidate search.
"""

from connectors.base_partner import BasePartner, JobPostingData, PostedJob, SyncResult
from connectors.candidate_source import CandidateSource, PlaceholderCandidateSource
from connectors.enrichment import EnrichmentProvider, NullEnrichmentProvider, StaticEnrichmentProvider
from connectors.indeed_client import IndeedClient
from connectors.linkedin_client import LinkedInClient
from connectors.partner_retry import partner_retry
from connectors.partners import PARTNER_CLIENTS, build_partner_client, parse_partner
from connectors.webhook_handler import WebhookHandler, verify_hmac_signature

__all__ = [
    "BasePartner",
    "JobPostingData",
    "PostedJob",
    "SyncResult",
    "CandidateSource",
    "PlaceholderCandidateSource",
    "EnrichmentProvider",
    "NullEnrichmentProvider",
    "StaticEnrichmentProvider",
    "IndeedClient",
    "LinkedInClient",
    "partner_retry",
    "PARTNER_CLIENTS",
    "build_partner_client",
    "parse_partner",
    "WebhookHandler",
    "verify_hmac_signature",
]
