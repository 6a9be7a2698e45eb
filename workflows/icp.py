"""
Ideal Customer Profile (ICP) filter.

ICPConfig is a plain value passed into each classification or orchestration
run; there is no process-wide cached copy.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from signal_engine.models import Enrichment

logger = logging.getLogger(__name__)


@dataclass
class ICPConfig:
    """Which companies and signals are in scope."""

    target_country: str = "Brazil"
    excluded_hq_countries: List[str] = field(default_factory=list)
    min_job_title_level: List[str] = field(default_factory=list)
    required_languages: List[str] = field(default_factory=list)
    max_employees_in_target_country: Optional[int] = None
    industries: List[str] = field(default_factory=list)
    min_funding_amount: Optional[float] = None
    require_enrichment: bool = False

    @classmethod
    def default(cls) -> "ICPConfig":
        """Foreign companies with a small footprint in Brazil."""
        return cls(
            target_country="Brazil",
            excluded_hq_countries=["Brazil"],
            max_employees_in_target_country=100,
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ICPConfig":
        """Build from camelCase (API) or snake_case keys."""
        if not data:
            return cls.default()

        def pick(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        return cls(
            target_country=pick("target_country", "targetCountry", "Brazil"),
            excluded_hq_countries=list(pick("excluded_hq_countries", "excludedHQCountries", []) or []),
            min_job_title_level=list(pick("min_job_title_level", "minJobTitleLevel", []) or []),
            required_languages=list(pick("required_languages", "requiredLanguages", []) or []),
            max_employees_in_target_country=pick(
                "max_employees_in_target_country", "maxEmployeesInTargetCountry"
            ),
            industries=list(pick("industries", "industries", []) or []),
            min_funding_amount=pick("min_funding_amount", "minFundingAmount"),
            require_enrichment=bool(pick("require_enrichment", "requireEnrichment", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def check_icp_compliance(enrichment: Optional[Enrichment], icp: ICPConfig) -> bool:
    """
    True when the signal's company fits the ICP.

    Rejects on an excluded headquarters country, too many employees in the
    target country, or (when both sides are present) an industry matching none
    of the ICP industries. Missing enrichment passes unless require_enrichment.
    """
    if enrichment is None:
        return not icp.require_enrichment

    country = enrichment.headquarters_country
    if country and icp.excluded_hq_countries:
        excluded = {c.strip().lower() for c in icp.excluded_hq_countries}
        if country.lower() in excluded:
            logger.debug(f"ICP reject {enrichment.signal_id}: HQ country {country}")
            return False

    if icp.max_employees_in_target_country is not None:
        if (enrichment.employee_count_in_target_country or 0) > icp.max_employees_in_target_country:
            logger.debug(f"ICP reject {enrichment.signal_id}: too many employees in target country")
            return False

    if icp.industries and enrichment.industry:
        industry = enrichment.industry.lower()
        if not any(ind.lower() in industry for ind in icp.industries):
            logger.debug(f"ICP reject {enrichment.signal_id}: industry {enrichment.industry}")
            return False

    return True
