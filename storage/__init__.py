"""
Storage layer for the Talent Signals Engine.

Persistent aiosqlite stores sharing one database file:
- SignalStore: signals with natural-key dedup, enrichment, buckets,
  candidates and partner state
- JobStore: durable background job queue
- CounterStore: shared rate-limit counters

Quick start:
    from storage import signal_store

    async with signal_store("signals.db") as store:
        signal = await store.store_if_new(record)
        if signal is None:
            print("Already seen this posting")

        pending = await store.get_unprocessed_signals(limit=100)
        await store.mark_processed(pending[0].id)
"""

from storage.counter_store import CounterStore
from storage.job_store import Job, JobStatus, JobStore, job_store
from storage.signal_store import (
    CURRENT_SCHEMA_VERSION,
    AssignedSignal,
    BucketView,
    SignalStore,
    signal_store,
)

__all__ = [
    "SignalStore",
    "AssignedSignal",
    "BucketView",
    "signal_store",
    "CURRENT_SCHEMA_VERSION",
    "JobStore",
    "Job",
    "JobStatus",
    "job_store",
    "CounterStore",
]

__version__ = "1.0.0"
