"""
Candidate sources for the orchestration workflow.

A CandidateSource finds people at a company who match an ideal profile.
The production source (Apollo/Clay) is an external collaborator; the
placeholder source generates deterministic-per-seed candidates for demos
and tests.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import List, Optional, TYPE_CHECKING

from signal_engine.models import CandidateProfile

if TYPE_CHECKING:
    from workflows.orchestration import IdealProfile


class CandidateSource(ABC):
    @abstractmethod
    async def find_candidates(
        self,
        company: str,
        profile: "IdealProfile",
        location: Optional[str] = None,
    ) -> List[CandidateProfile]:
        """Candidates at `company` matching `profile`."""


class PlaceholderCandidateSource(CandidateSource):
    """One generated candidate per ideal title, tenure 12-48 months."""

    DEFAULT_TITLES = ["Software Engineer", "Product Manager"]
    DEFAULT_SKILLS = ["JavaScript", "TypeScript", "React"]
    DEFAULT_LOCATION = "São Paulo, Brazil"

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    async def find_candidates(
        self,
        company: str,
        profile: "IdealProfile",
        location: Optional[str] = None,
    ) -> List[CandidateProfile]:
        titles = list(profile.titles) or self.DEFAULT_TITLES
        skills = list(profile.skills) or self.DEFAULT_SKILLS

        return [
            CandidateProfile(
                name=f"Candidate {i + 1}",
                title=title,
                company=company,
                location=location or self.DEFAULT_LOCATION,
                linkedin_url=f"https://linkedin.com/in/candidate{i}",
                email=f"candidate{i}@example.com",
                skills=list(skills),
                tenure_months=self._random.randint(12, 48),
            )
            for i, title in enumerate(titles)
        ]
