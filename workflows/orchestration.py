"""
Orchestration Workflow - candidate shortlists for an action bucket.

For a bucket, the highest-confidence signal is the primary one. Its company
is searched for people matching the bucket's ideal profile, and each person
is scored on how likely they are to move:

  base 0.5, +0.3 at 24+ months tenure, +0.1 at 12-23 months,
  plus a perturbation in [-jitter, +jitter], clamped to [0, 1].

Scores above 0.5 are kept, the top 10 are stored and returned.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from connectors.candidate_source import CandidateSource, PlaceholderCandidateSource
from signal_engine.models import BucketType, CandidateProfile
from storage.signal_store import SignalStore
from workflows.icp import ICPConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdealProfile:
    titles: Tuple[str, ...] = ()
    skills: Tuple[str, ...] = ()
    experience: Optional[str] = None


IDEAL_PROFILES: Dict[BucketType, IdealProfile] = {
    BucketType.SCALE: IdealProfile(
        titles=("Senior Engineer", "Lead Engineer", "Engineering Manager"),
        experience="5+ years",
    ),
    BucketType.FUNDING_BOOST: IdealProfile(
        titles=("Head of Engineering", "CTO", "VP Engineering"),
        experience="10+ years",
    ),
    BucketType.EXPANSION: IdealProfile(
        titles=("Country Manager", "Regional Director", "Head of Operations"),
        experience="7+ years",
    ),
}


def ideal_profile_for(bucket_type: BucketType) -> IdealProfile:
    return IDEAL_PROFILES.get(bucket_type, IdealProfile())


@dataclass
class ScoringThresholds:
    base: float = 0.5
    long_tenure_months: int = 24
    long_tenure_bonus: float = 0.3
    mid_tenure_months: int = 12
    mid_tenure_bonus: float = 0.1
    jitter: float = 0.1
    keep_above: float = 0.5
    top_n: int = 10


def base_likelihood(tenure_months: Optional[int], thresholds: Optional[ScoringThresholds] = None) -> float:
    """Tenure-only score, before perturbation."""
    t = thresholds or ScoringThresholds()
    score = t.base
    if tenure_months:
        if tenure_months >= t.long_tenure_months:
            score += t.long_tenure_bonus
        elif tenure_months >= t.mid_tenure_months:
            score += t.mid_tenure_bonus
    return score


def score_candidate(
    candidate: CandidateProfile,
    rng: Optional[random.Random] = None,
    thresholds: Optional[ScoringThresholds] = None,
) -> float:
    t = thresholds or ScoringThresholds()
    score = base_likelihood(candidate.tenure_months, t)
    if t.jitter:
        score += (rng or random).uniform(-t.jitter, t.jitter)
    return min(1.0, max(0.0, score))


class OrchestrationWorkflow:
    """
    Usage:
        workflow = OrchestrationWorkflow(store, PlaceholderCandidateSource(seed=7))
        candidates = await workflow.trigger_workflow(bucket_id, ICPConfig.default())
    """

    def __init__(
        self,
        store: SignalStore,
        candidate_source: Optional[CandidateSource] = None,
        thresholds: Optional[ScoringThresholds] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.candidate_source = candidate_source or PlaceholderCandidateSource()
        self.thresholds = thresholds or ScoringThresholds()
        self.rng = rng or random.Random()

    async def trigger_workflow(self, bucket_id: str, icp: ICPConfig) -> List[CandidateProfile]:
        """
        Build and store the shortlist for a bucket.

        Raises:
            LookupError: Unknown bucket id
        """
        bucket = await self.store.get_bucket(bucket_id)
        if bucket is None:
            raise LookupError(f"Bucket not found: {bucket_id}")

        assigned = await self.store.get_bucket_signals(bucket_id)
        if not assigned:
            logger.info(f"Bucket {bucket.type.value} has no signals, nothing to orchestrate")
            return []

        primary = max(assigned, key=lambda a: a.confidence).signal
        profile = ideal_profile_for(bucket.type)

        location = primary.location or icp.target_country
        logger.debug(f"Searching {primary.company_name} for {profile.titles} ({location})")
        candidates = await self.candidate_source.find_candidates(primary.company_name, profile, location=location)

        for candidate in candidates:
            candidate.likelihood_to_move = score_candidate(candidate, self.rng, self.thresholds)

        shortlist = sorted(
            (c for c in candidates if c.likelihood_to_move > self.thresholds.keep_above),
            key=lambda c: c.likelihood_to_move,
            reverse=True,
        )[: self.thresholds.top_n]

        for candidate in shortlist:
            candidate.source = "apollo"

        await self.store.save_candidate_profiles(bucket_id, shortlist)
        logger.info(
            f"Orchestrated {bucket.type.value} for {primary.company_name}: "
            f"{len(shortlist)}/{len(candidates)} candidates kept"
        )
        return shortlist

    async def get_candidates_for_bucket(self, bucket_id: str) -> List[CandidateProfile]:
        return await self.store.get_candidates_for_bucket(bucket_id)
