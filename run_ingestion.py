#!/usr/bin/env python3
"""
CLI interface for the Talent Signals Engine.

Commands:
  ingest       - Collect job postings (inline or queued)
  funding      - Collect funding rounds
  classify     - Sort unprocessed signals into action buckets
  trigger      - Build the candidate shortlist for a bucket
  sync         - Sync job postings with partners
  worker       - Run queued ingestion jobs
  schedule     - Run the periodic scheduler with a worker
  queue-stats  - Show job queue counts
  stats        - Show signal store statistics

Examples:
  python run_ingestion.py ingest --keywords "Head of Engineering,CTO" --location Brazil
  python run_ingestion.py ingest --keywords Director --queue
  python run_ingestion.py worker --drain
  python run_ingestion.py classify --icp icp.json
  python run_ingestion.py sync --direction pull --partner linkedin
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from collectors.base import CollectorFilters
from collectors.funding import FundingFilters
from connectors.enrichment import NullEnrichmentProvider
from connectors.partners import parse_partner
from signal_engine.config import EngineConfig
from signal_engine.errors import SignalEngineError
from workflows.engine import engine_context
from workflows.icp import ICPConfig
from workflows.logistics_engine import LogisticsEngine
from workflows.orchestration import OrchestrationWorkflow
from workflows.partner_sync import PartnerSyncService
from workflows.scheduler import IngestionScheduler


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(verbose: bool = False):
    """Configure logging for the CLI"""
    level = logging.DEBUG if verbose else logging.INFO

    if sys.stdout.isatty():
        colors = {
            "DEBUG": "\033[36m",
            "INFO": "\033[32m",
            "WARNING": "\033[33m",
            "ERROR": "\033[31m",
            "CRITICAL": "\033[35m",
            "RESET": "\033[0m",
        }

        class ColoredFormatter(logging.Formatter):
            def format(self, record):
                levelname = record.levelname
                if levelname in colors:
                    record.levelname = f"{colors[levelname]}{levelname}{colors['RESET']}"
                return super().format(record)

        formatter = ColoredFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[handler])

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def load_config(args) -> EngineConfig:
    config = EngineConfig.from_env()
    if getattr(args, "db_path", None):
        config.db_path = args.db_path
    return config


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

async def cmd_ingest(args):
    config = load_config(args)
    filters = CollectorFilters(
        keywords=split_csv(args.keywords),
        location=args.location or config.default_location,
        days_back=args.days_back,
    )
    async with engine_context(config) as engine:
        result = await engine.ingestion.ingest_job_postings(
            filters,
            use_queue=args.queue,
            sources=split_csv(args.sources) or None,
        )
    print_json({"count": len(result.signals), "stats": result.stats.to_dict()})


async def cmd_funding(args):
    config = load_config(args)
    filters = FundingFilters(
        min_amount=args.min_amount,
        rounds=split_csv(args.rounds),
        days_back=args.days_back,
    )
    async with engine_context(config) as engine:
        signals = await engine.ingestion.ingest_funding_signals(filters)
    print_json({"count": len(signals), "signals": [s.to_dict() for s in signals]})


async def cmd_classify(args):
    config = load_config(args)
    icp = ICPConfig.default()
    if args.icp:
        icp = ICPConfig.from_dict(json.loads(Path(args.icp).read_text()))

    async with engine_context(config) as engine:
        logistics = LogisticsEngine(
            engine.store,
            NullEnrichmentProvider(),
            batch_size=args.batch_size or config.classification_batch_size,
        )
        buckets = await logistics.process_signals(icp)
    print_json(
        {
            "stats": logistics.last_stats.to_dict() if logistics.last_stats else None,
            "buckets": [b.to_dict() for b in buckets],
        }
    )


async def cmd_trigger(args):
    config = load_config(args)
    async with engine_context(config) as engine:
        workflow = OrchestrationWorkflow(engine.store)
        candidates = await workflow.trigger_workflow(args.bucket_id, ICPConfig.default())
    print_json({"count": len(candidates), "candidates": [c.to_dict() for c in candidates]})


async def cmd_sync(args):
    config = load_config(args)
    partner = parse_partner(args.partner) if args.partner else None

    async with engine_context(config) as engine:
        service = PartnerSyncService(engine.store, config)
        if args.direction == "pull":
            report = await service.sync_from_partners(partner, limit=args.limit)
        elif args.direction == "push":
            report = await service.sync_to_partners(partner, limit=args.limit)
        else:
            report = await service.bidirectional_sync(partner, resolve_conflicts=args.resolve_conflicts)
    print_json(report.to_dict())
    return 0 if report.success else 1


async def cmd_worker(args):
    config = load_config(args)
    async with engine_context(config) as engine:
        worker = engine.build_worker()
        if args.forever:
            await worker.run_forever(poll_interval=args.poll_interval)
            return 0
        summary = await worker.drain(limit=args.limit)
    print_json(summary)
    return 0


async def cmd_schedule(args):
    config = load_config(args)
    async with engine_context(config) as engine:
        scheduler = IngestionScheduler(engine.ingestion, location=config.default_location)
        worker = engine.build_worker()
        scheduler.start()
        try:
            await worker.run_forever(poll_interval=args.poll_interval)
        finally:
            scheduler.shutdown()
            worker.stop()


async def cmd_queue_stats(args):
    config = load_config(args)
    async with engine_context(config) as engine:
        print_json(await engine.ingestion.get_queue_stats())


async def cmd_stats(args):
    config = load_config(args)
    async with engine_context(config) as engine:
        print_json(await engine.store.get_stats())


# =============================================================================
# ARGUMENT PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Talent Signals Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db-path", type=str, help="Path to SQLite database (overrides env var)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    ingest_parser = subparsers.add_parser("ingest", parents=[common], help="Collect job postings")
    ingest_parser.add_argument("--keywords", type=str, required=True, help="Comma-separated keywords")
    ingest_parser.add_argument("--location", type=str, help="Location (default: DEFAULT_LOCATION)")
    ingest_parser.add_argument("--days-back", type=int, default=7, help="Look-back window in days")
    ingest_parser.add_argument("--sources", type=str, help="Comma-separated sources (serpapi,scraperapi,rss)")
    ingest_parser.add_argument("--queue", action="store_true", help="Enqueue instead of running inline")

    funding_parser = subparsers.add_parser("funding", parents=[common], help="Collect funding rounds")
    funding_parser.add_argument("--min-amount", type=float, help="Minimum round size")
    funding_parser.add_argument("--rounds", type=str, help="Comma-separated round types")
    funding_parser.add_argument("--days-back", type=int, default=30, help="Look-back window in days")

    classify_parser = subparsers.add_parser("classify", parents=[common], help="Classify unprocessed signals")
    classify_parser.add_argument("--icp", type=str, help="Path to an ICP JSON file")
    classify_parser.add_argument("--batch-size", type=int, help="Signals per run")

    trigger_parser = subparsers.add_parser("trigger", parents=[common], help="Build a bucket's shortlist")
    trigger_parser.add_argument("bucket_id", type=str, help="Action bucket id")

    sync_parser = subparsers.add_parser("sync", parents=[common], help="Sync with job-board partners")
    sync_parser.add_argument(
        "--direction",
        choices=["pull", "push", "bidirectional"],
        default="bidirectional",
    )
    sync_parser.add_argument("--partner", type=str, help="linkedin or indeed (default: all active)")
    sync_parser.add_argument("--limit", type=int, help="Maximum records per partner")
    sync_parser.add_argument(
        "--resolve-conflicts",
        choices=["newest", "ours", "theirs"],
        default="newest",
    )

    worker_parser = subparsers.add_parser("worker", parents=[common], help="Run queued ingestion jobs")
    mode = worker_parser.add_mutually_exclusive_group()
    mode.add_argument("--drain", action="store_true", help="Process ready jobs and exit (default)")
    mode.add_argument("--forever", action="store_true", help="Keep polling for jobs")
    worker_parser.add_argument("--limit", type=int, help="Maximum jobs to drain")
    worker_parser.add_argument("--poll-interval", type=float, default=1.0, help="Seconds between polls")

    schedule_parser = subparsers.add_parser("schedule", parents=[common], help="Run scheduler and worker")
    schedule_parser.add_argument("--poll-interval", type=float, default=1.0, help="Seconds between polls")

    subparsers.add_parser("queue-stats", parents=[common], help="Show job queue counts")
    subparsers.add_parser("stats", parents=[common], help="Show signal statistics")

    return parser


COMMANDS = {
    "ingest": cmd_ingest,
    "funding": cmd_funding,
    "classify": cmd_classify,
    "trigger": cmd_trigger,
    "sync": cmd_sync,
    "worker": cmd_worker,
    "schedule": cmd_schedule,
    "queue-stats": cmd_queue_stats,
    "stats": cmd_stats,
}


# =============================================================================
# MAIN
# =============================================================================

async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    try:
        exit_code = await COMMANDS[args.command](args)
        return exit_code or 0
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except SignalEngineError as e:
        print(f"\nError: {e}")
        return 1
    except Exception as e:
        logging.exception("Fatal error")
        print(f"\nFatal error: {e}")
        return 1


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
