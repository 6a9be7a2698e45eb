"""
Engine configuration.

Values are read from the environment (optionally populated from a .env file by
the entry points via python-dotenv). Every component receives its settings
explicitly; nothing reads os.environ after startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


@dataclass
class EngineConfig:
    """Configuration for ingestion, queue, classification and partner sync"""

    # Storage
    db_path: str = "signals.db"

    # Collectors
    serpapi_key: Optional[str] = None
    scraperapi_key: Optional[str] = None
    crunchbase_api_key: Optional[str] = None

    # Inbound auth
    cron_secret: Optional[str] = None
    webhook_secret: Optional[str] = None

    # Partners
    linkedin_client_id: Optional[str] = None
    linkedin_client_secret: Optional[str] = None
    linkedin_webhook_secret: str = ""
    indeed_webhook_secret: str = ""
    indeed_partner_id: Optional[str] = None

    # Ingestion
    default_location: str = "Brazil"
    ingestion_concurrency: int = 5
    source_rate_limit: int = 50
    source_rate_window: int = 60

    # Queue
    queue_concurrency: int = 5
    queue_rate_per_second: int = 10

    # Classification
    classification_batch_size: int = 100

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables"""
        return cls(
            db_path=os.getenv("SIGNALS_DB_PATH", "signals.db"),
            serpapi_key=os.getenv("SERPAPI_KEY"),
            scraperapi_key=os.getenv("SCRAPERAPI_KEY"),
            crunchbase_api_key=os.getenv("CRUNCHBASE_API_KEY"),
            cron_secret=os.getenv("CRON_SECRET"),
            webhook_secret=os.getenv("WEBHOOK_SECRET"),
            linkedin_client_id=os.getenv("LINKEDIN_CLIENT_ID"),
            linkedin_client_secret=os.getenv("LINKEDIN_CLIENT_SECRET"),
            linkedin_webhook_secret=os.getenv("LINKEDIN_WEBHOOK_SECRET", ""),
            indeed_webhook_secret=os.getenv("INDEED_WEBHOOK_SECRET", ""),
            indeed_partner_id=os.getenv("INDEED_PARTNER_ID"),
            default_location=os.getenv("DEFAULT_LOCATION") or "Brazil",
            ingestion_concurrency=_get_int("INGESTION_CONCURRENCY", 5),
            source_rate_limit=_get_int("SOURCE_RATE_LIMIT", 50),
            source_rate_window=_get_int("SOURCE_RATE_WINDOW", 60),
            queue_concurrency=_get_int("QUEUE_CONCURRENCY", 5),
            queue_rate_per_second=_get_int("QUEUE_RATE_PER_SECOND", 10),
            classification_batch_size=_get_int("CLASSIFICATION_BATCH_SIZE", 100),
        )
