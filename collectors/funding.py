"""
Funding Collector - Funding rounds from Crunchbase, plus pushed webhook items.

API: https://api.crunchbase.com/v4/funding-rounds
Auth: user_key query parameter
Timeout: 30s

Signal use: a fresh round means a hiring budget (FUNDING_BOOST bucket).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from collectors.base import BaseCollector
from signal_engine.models import RawFundingEvent, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

CRUNCHBASE_FUNDING_ROUNDS = "https://api.crunchbase.com/v4/funding-rounds"


@dataclass
class FundingFilters:
    min_amount: Optional[float] = None
    rounds: List[str] = field(default_factory=list)
    days_back: int = 30

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FundingFilters":
        return cls(
            min_amount=data.get("min_amount", data.get("minAmount")),
            rounds=list(data.get("rounds") or []),
            days_back=int(data.get("days_back") or data.get("daysBack") or 30),
        )


def _money_value(value: Any) -> Optional[float]:
    """money_raised is either a number or {"value": ..., "currency": ...}."""
    if isinstance(value, dict):
        value = value.get("value_usd", value.get("value"))
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class FundingCollector(BaseCollector):
    """Funding rounds from Crunchbase."""

    source = "crunchbase"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("timeout", 30.0)
        super().__init__(api_key=api_key, **kwargs)

    async def _collect(self, filters: FundingFilters) -> List[RawFundingEvent]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=filters.days_back)
        params: Dict[str, Any] = {
            "user_key": self.api_key,
            "announced_on": f">={cutoff.date().isoformat()}",
        }
        if filters.rounds:
            params["funding_type"] = ",".join(filters.rounds)

        response = await self._http_get(CRUNCHBASE_FUNDING_ROUNDS, params=params)
        data = response.json() or {}

        events = []
        for entity in data.get("entities") or []:
            event = self._map_round(entity)
            if event is None:
                continue
            if filters.min_amount and (event.amount or 0) < filters.min_amount:
                continue
            events.append(event)
        return events

    def _map_round(self, entity: Dict[str, Any]) -> Optional[RawFundingEvent]:
        props = entity.get("properties") or {}

        company = props.get("organization_name")
        if not company:
            identifier = props.get("funded_organization_identifier") or {}
            company = identifier.get("value")
        if not company:
            return None

        money = props.get("money_raised")
        currency = money.get("currency") if isinstance(money, dict) else None

        investors = [
            inv.get("value") if isinstance(inv, dict) else str(inv)
            for inv in props.get("investor_identifiers") or []
        ]

        return RawFundingEvent(
            company_name=company,
            source=self.source,
            amount=_money_value(money),
            currency=currency,
            round_type=props.get("investment_type"),
            announced_on=parse_timestamp(props.get("announced_on")) or utc_now(),
            investors=[i for i in investors if i],
            company_url=props.get("website_url"),
            raw=entity,
        )

    def collect_from_webhook(self, items: Any) -> List[RawFundingEvent]:
        """
        Convert pushed items into funding events.

        Items qualify when type == "funding" or they carry funding_amount.
        Anything that is not a list yields [].
        """
        if not isinstance(items, list):
            return []

        events = []
        for item in items:
            if not isinstance(item, dict):
                continue
            if item.get("type") != "funding" and not item.get("funding_amount"):
                continue

            company = item.get("company_name") or item.get("company")
            if not company:
                logger.warning("Skipping funding webhook item without a company name")
                continue

            events.append(
                RawFundingEvent(
                    company_name=company,
                    source=item.get("source") or "webhook",
                    amount=_money_value(item.get("funding_amount") or item.get("amount")),
                    currency=item.get("currency"),
                    round_type=item.get("round") or item.get("round_type"),
                    announced_on=parse_timestamp(item.get("date")) or utc_now(),
                    investors=list(item.get("investors") or []),
                    company_url=item.get("company_url"),
                    raw=item,
                )
            )
        return events
