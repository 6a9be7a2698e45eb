"""
Workflows for the Talent Signals Engine

This package contains the high-level orchestration:
- ingestion.py: Multi-source ingestion with rate limiting and dedup
- job_queue.py: Persistent priority queue and worker
- logistics_engine.py: Bucket classification under an ICP
- orchestration.py: Candidate shortlists per bucket
- partner_sync.py: Job-board partner sync and monitoring
- scheduler.py: Periodic ingestion

Usage:
    from workflows.logistics_engine import LogisticsEngine
    from workflows.icp import ICPConfig
    engine = LogisticsEngine(store)
    buckets = await engine.process_signals(ICPConfig.default())
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "SignalIngestion",
    "JobQueue",
    "JobWorker",
    "LogisticsEngine",
    "ICPConfig",
    "OrchestrationWorkflow",
    "PartnerSyncService",
    "IngestionScheduler",
]

_LAZY = {
    "SignalIngestion": "workflows.ingestion",
    "JobQueue": "workflows.job_queue",
    "JobWorker": "workflows.job_queue",
    "LogisticsEngine": "workflows.logistics_engine",
    "ICPConfig": "workflows.icp",
    "OrchestrationWorkflow": "workflows.orchestration",
    "PartnerSyncService": "workflows.partner_sync",
    "IngestionScheduler": "workflows.scheduler",
}


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    module_name = _LAZY.get(name)
    if module_name is None:
        raise AttributeError(f"module 'workflows' has no attribute {name!r}")

    import importlib

    return getattr(importlib.import_module(module_name), name)
