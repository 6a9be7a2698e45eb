"""
Two-layer deduplication for ingestion batches.

Layer 1 (BatchDeduplicator) drops repeats inside one batch by
company:title:url without touching the database. Layer 2 is
SignalStore.store_if_new, whose UNIQUE(type, natural_key) constraint is the
authority across concurrent runs. A posting rejected by either layer counts
once as a duplicate and is not stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Set, Tuple

from signal_engine.models import RawFundingEvent, RawPosting, Signal, SignalRecord
from storage.signal_store import SignalStore
from utils.natural_keys import batch_key, natural_key_for

logger = logging.getLogger(__name__)


@dataclass
class BatchDeduplicator:
    """In-memory seen-set for one ingestion batch."""
    _seen: Set[str] = field(default_factory=set)

    def is_new(self, key: str) -> bool:
        """Record the key; False if it was already seen in this batch."""
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __len__(self) -> int:
        return len(self._seen)


async def deduplicate_and_store(
    store: SignalStore,
    postings: Iterable[RawPosting],
) -> Tuple[List[Signal], int]:
    """
    Store new job postings.

    Returns:
        (newly stored signals, number of duplicates)
    """
    batch = BatchDeduplicator()
    signals: List[Signal] = []
    duplicates = 0

    for posting in postings:
        if not batch.is_new(batch_key(posting.company, posting.title, posting.url)):
            duplicates += 1
            continue

        signal = await store.store_if_new(SignalRecord.from_posting(posting))
        if signal is None:
            duplicates += 1
            continue
        signals.append(signal)

    logger.info(f"Deduplication: {len(signals)} stored, {duplicates} duplicates")
    return signals, duplicates


async def store_funding_events(
    store: SignalStore,
    events: Iterable[RawFundingEvent],
) -> Tuple[List[Signal], int]:
    """Same two layers for funding events, keyed by company and announcement date."""
    batch = BatchDeduplicator()
    signals: List[Signal] = []
    duplicates = 0

    for event in events:
        record = SignalRecord.from_funding(event)
        if not batch.is_new(natural_key_for(record)):
            duplicates += 1
            continue

        signal = await store.store_if_new(record)
        if signal is None:
            duplicates += 1
            continue
        signals.append(signal)

    logger.info(f"Funding dedup: {len(signals)} stored, {duplicates} duplicates")
    return signals, duplicates
