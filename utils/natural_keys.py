"""
Deduplication keys for signals.

Two keys are used:

- The natural key, stored with each signal and protected by a UNIQUE
  constraint per signal type:
    job_posting           -> company name + job URL
    everything else       -> company name + posted date
- The batch key (company:title:url), used in memory to skip redundant
  store round-trips within a single ingestion run.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from signal_engine.models import SignalRecord, SignalType

_SEPARATOR = "|"


def _norm(value: Optional[str]) -> str:
    return (value or "").strip()


def _date_part(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.date().isoformat()


def build_natural_key(
    signal_type: SignalType,
    company_name: str,
    job_url: Optional[str] = None,
    posted_date: Optional[datetime] = None,
) -> str:
    """
    Build the natural key for a signal.

    Examples:
        >>> build_natural_key(SignalType.JOB_POSTING, "Acme", job_url="https://x/1")
        'Acme|https://x/1'
    """
    company = _norm(company_name)
    if signal_type == SignalType.JOB_POSTING:
        return f"{company}{_SEPARATOR}{_norm(job_url)}"
    return f"{company}{_SEPARATOR}{_date_part(posted_date)}"


def natural_key_for(record: SignalRecord) -> str:
    return build_natural_key(
        record.type,
        record.company_name,
        job_url=record.job_url,
        posted_date=record.posted_date,
    )


def batch_key(company: Optional[str], title: Optional[str], url: Optional[str]) -> str:
    """In-memory dedup key for one ingestion batch."""
    return f"{_norm(company)}:{_norm(title)}:{_norm(url)}"
