"""
Shared rate-limit counters.

A counter is a (key, count, expires_at) row. Incrementing an expired row
restarts it at 1 with a fresh expiry, so a window starts at the first request
rather than on a fixed grid. The increment is a single UPSERT, which keeps it
atomic across the API, worker and scheduler processes sharing the file.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from storage.base_store import SQLiteStore

logger = logging.getLogger(__name__)


MIGRATIONS = {
    1: """
    CREATE TABLE IF NOT EXISTS rate_limit_counters (
        key TEXT PRIMARY KEY,
        count INTEGER NOT NULL,
        expires_at REAL NOT NULL  -- epoch seconds
    );
    """,
}


class CounterStore(SQLiteStore):
    """Atomic windowed counters backed by aiosqlite."""

    MIGRATIONS = MIGRATIONS
    MIGRATION_TABLE = "counter_migrations"

    async def increment(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        """
        Increment a counter, starting a new window if the old one expired.

        Returns:
            (count after increment, window expiry as epoch seconds)
        """
        expires_at = now + window_seconds
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO rate_limit_counters (key, count, expires_at)
                VALUES (?, 1, ?)
                ON CONFLICT(key) DO UPDATE SET
                    count = CASE
                        WHEN rate_limit_counters.expires_at <= ? THEN 1
                        ELSE rate_limit_counters.count + 1
                    END,
                    expires_at = CASE
                        WHEN rate_limit_counters.expires_at <= ? THEN excluded.expires_at
                        ELSE rate_limit_counters.expires_at
                    END
                """,
                (key, expires_at, now, now),
            )
            cursor = await conn.execute(
                "SELECT count, expires_at FROM rate_limit_counters WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()

        return row["count"], row["expires_at"]

    async def get(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        """Current (count, expires_at) for a live counter, None if absent or expired."""
        cursor = await self.db.execute(
            "SELECT count, expires_at FROM rate_limit_counters WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None or row["expires_at"] <= now:
            return None
        return row["count"], row["expires_at"]

    async def delete(self, key: str) -> None:
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM rate_limit_counters WHERE key = ?", (key,))

    async def purge_expired(self, now: float) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM rate_limit_counters WHERE expires_at <= ?",
                (now,),
            )
            deleted = cursor.rowcount
        if deleted:
            logger.debug(f"Purged {deleted} expired rate-limit counters")
        return deleted
