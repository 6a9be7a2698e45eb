"""
Bucket Classification Engine

Turns unprocessed signals into bucket assignments:

  fetch batch -> enrich (if missing) -> ICP filter -> rules -> upsert assignments -> processed

Every fetched signal ends the run processed, whether it was rejected,
assigned, or matched no rule. A signal may land in several buckets.

Usage:
    engine = LogisticsEngine(store, StaticEnrichmentProvider({...}))
    buckets = await engine.process_signals(ICPConfig.default())
    print(engine.last_stats.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from connectors.enrichment import EnrichmentProvider, NullEnrichmentProvider
from signal_engine.models import ActionBucket, BucketType, Enrichment, Signal, SignalType
from storage.signal_store import BucketView, SignalStore
from workflows.icp import ICPConfig, check_icp_compliance

logger = logging.getLogger(__name__)


# =============================================================================
# BUCKET DEFINITIONS
# =============================================================================

BUCKET_DEFINITIONS: Dict[BucketType, Dict[str, Any]] = {
    BucketType.FUNDING_BOOST: {
        "name": "The Funding Boost",
        "description": "Recently funded startups",
        "priority": 5,
    },
    BucketType.SCALE: {
        "name": "The Scale",
        "description": "Companies that just hired VP-level, need to scale team",
        "priority": 4,
    },
    BucketType.EXPANSION: {
        "name": "The Expansion",
        "description": "Companies opening new offices",
        "priority": 3,
    },
    BucketType.SKILLS_SHIFT: {
        "name": "The Skills Shift",
        "description": "Companies changing tech stack",
        "priority": 2,
    },
    BucketType.POACH: {
        "name": "The Poach",
        "description": "Companies undergoing merger or restructuring",
        "priority": 1,
    },
}


@dataclass
class BucketRules:
    """Rule constants. Confidence is always taken from here, never ad hoc."""

    senior_markers: Tuple[str, ...] = ("VP", "Head of", "Director", "Chief")
    scale_confidence: float = 0.8
    funding_confidence: float = 0.9
    expansion_confidence: float = 0.85
    skills_shift_confidence: float = 0.75

    def evaluate(self, signal: Signal) -> List[Tuple[BucketType, float]]:
        """All (bucket, confidence) matches for a signal, each rule independent."""
        matches: List[Tuple[BucketType, float]] = []

        # marker match is case-sensitive
        if signal.type == SignalType.JOB_POSTING and signal.title:
            if any(marker in signal.title for marker in self.senior_markers):
                matches.append((BucketType.SCALE, self.scale_confidence))

        if signal.type == SignalType.FUNDING_ANNOUNCEMENT:
            matches.append((BucketType.FUNDING_BOOST, self.funding_confidence))

        if signal.type == SignalType.EXPANSION:
            matches.append((BucketType.EXPANSION, self.expansion_confidence))

        if signal.type == SignalType.SKILLS_SHIFT:
            matches.append((BucketType.SKILLS_SHIFT, self.skills_shift_confidence))

        return matches


@dataclass
class ProcessingStats:
    """Statistics from one classification run"""

    signals_fetched: int = 0
    enriched: int = 0
    enrichment_failures: int = 0
    rejected: int = 0
    assigned_signals: int = 0
    assignments: int = 0
    unmatched: int = 0

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def complete(self):
        self.completed_at = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signals_fetched": self.signals_fetched,
            "enriched": self.enriched,
            "enrichment_failures": self.enrichment_failures,
            "rejected": self.rejected,
            "assigned_signals": self.assigned_signals,
            "assignments": self.assignments,
            "unmatched": self.unmatched,
            "duration_seconds": self.duration_seconds,
        }


# =============================================================================
# ENGINE
# =============================================================================

class LogisticsEngine:
    """Classifies signals into action buckets."""

    def __init__(
        self,
        store: SignalStore,
        enricher: Optional[EnrichmentProvider] = None,
        rules: Optional[BucketRules] = None,
        batch_size: int = 100,
    ):
        self.store = store
        self.enricher = enricher or NullEnrichmentProvider()
        self.rules = rules or BucketRules()
        self.batch_size = batch_size
        self.last_stats: Optional[ProcessingStats] = None

    async def ensure_buckets(self) -> Dict[BucketType, ActionBucket]:
        """Idempotently create the fixed set of buckets."""
        buckets = {}
        for bucket_type, definition in BUCKET_DEFINITIONS.items():
            buckets[bucket_type] = await self.store.ensure_bucket(
                bucket_type,
                name=definition["name"],
                description=definition["description"],
                priority=definition["priority"],
            )
        return buckets

    async def process_signals(self, icp: ICPConfig) -> List[BucketView]:
        """
        Classify one batch of unprocessed signals.

        Args:
            icp: ICP filter for this run

        Returns:
            Active buckets with their signals, highest priority first
        """
        stats = ProcessingStats()
        buckets = await self.ensure_buckets()
        signals = await self.store.get_unprocessed_signals(limit=self.batch_size)
        stats.signals_fetched = len(signals)

        logger.info(f"Classifying {len(signals)} unprocessed signals")

        for signal in signals:
            enrichment = await self._get_or_enrich(signal, stats)

            if not check_icp_compliance(enrichment, icp):
                stats.rejected += 1
                await self.store.mark_processed(signal.id)
                continue

            matches = self.rules.evaluate(signal)
            for bucket_type, confidence in matches:
                await self.store.upsert_assignment(buckets[bucket_type].id, signal.id, confidence)

            if matches:
                stats.assigned_signals += 1
                stats.assignments += len(matches)
            else:
                stats.unmatched += 1

            await self.store.mark_processed(signal.id)

        stats.complete()
        self.last_stats = stats
        logger.info(
            f"Classification complete: {stats.assigned_signals} assigned, "
            f"{stats.rejected} rejected, {stats.unmatched} unmatched"
        )
        return await self.get_action_buckets()

    async def _get_or_enrich(self, signal: Signal, stats: ProcessingStats) -> Optional[Enrichment]:
        enrichment = await self.store.get_enrichment(signal.id)
        if enrichment is not None:
            return enrichment

        try:
            enrichment = await self.enricher.enrich(signal)
        except Exception as e:
            stats.enrichment_failures += 1
            logger.warning(f"Enrichment failed for {signal.company_name} ({signal.id}): {e}")
            return None

        if enrichment is None:
            return None

        enrichment.signal_id = signal.id
        await self.store.upsert_enrichment(enrichment)
        stats.enriched += 1
        return enrichment

    async def get_action_buckets(self) -> List[BucketView]:
        return await self.store.get_active_buckets_with_signals()
