"""
Company enrichment providers.

The classification engine asks a provider for company metadata when a signal
has none yet. Real providers (Apollo and similar) live outside this
repository; the two here cover the no-enrichment default and fixtures.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Optional

from signal_engine.models import Enrichment, Signal

logger = logging.getLogger(__name__)


class EnrichmentProvider(ABC):
    @abstractmethod
    async def enrich(self, signal: Signal) -> Optional[Enrichment]:
        """Company metadata for the signal's company, or None if unknown."""


class NullEnrichmentProvider(EnrichmentProvider):
    """Never enriches."""

    async def enrich(self, signal: Signal) -> Optional[Enrichment]:
        return None


class StaticEnrichmentProvider(EnrichmentProvider):
    """
    Lookup table keyed by company name (case-insensitive).

    Usage:
        provider = StaticEnrichmentProvider({
            "Acme": Enrichment(signal_id="", headquarters="Austin, USA", industry="Software"),
        })
    """

    def __init__(self, companies: Dict[str, Enrichment]):
        self._companies = {name.strip().lower(): e for name, e in companies.items()}

    async def enrich(self, signal: Signal) -> Optional[Enrichment]:
        template = self._companies.get(signal.company_name.strip().lower())
        if template is None:
            return None
        return replace(template, signal_id=signal.id)
