"""
Partner client registry.

Clients are chosen by the integration's PartnerType tag. Glassdoor is a known
partner type without a client.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Type

from connectors.base_partner import BasePartner
from connectors.indeed_client import IndeedClient
from connectors.linkedin_client import LinkedInClient
from signal_engine.config import EngineConfig
from signal_engine.errors import ValidationError
from signal_engine.models import PartnerIntegration, PartnerType
from storage.signal_store import SignalStore

PARTNER_CLIENTS: Dict[PartnerType, Type[BasePartner]] = {
    PartnerType.LINKEDIN: LinkedInClient,
    PartnerType.INDEED: IndeedClient,
}

PartnerClientFactory = Callable[[PartnerIntegration, SignalStore, EngineConfig], BasePartner]


def build_partner_client(
    integration: PartnerIntegration,
    store: SignalStore,
    config: Optional[EngineConfig] = None,
) -> BasePartner:
    client_cls = PARTNER_CLIENTS.get(integration.partner)
    if client_cls is None:
        raise ValidationError(f"Unsupported partner: {integration.partner.value}")
    return client_cls(integration, store, config)


def parse_partner(value: str) -> PartnerType:
    """PartnerType from user input such as 'linkedin' or 'INDEED'."""
    try:
        return PartnerType((value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown partner: {value}") from None
