"""
Common lifecycle for the aiosqlite-backed stores.

Each store owns one connection, applies the standard pragmas, and tracks its
own numbered migrations so several stores can share a database file.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteStore:
    """
    Base class for async SQLite stores.

    Subclasses set MIGRATIONS (version -> SQL script) and MIGRATION_TABLE.
    """

    MIGRATIONS: Dict[int, str] = {}
    MIGRATION_TABLE = "schema_migrations"
    BUSY_TIMEOUT_MS = 5000

    def __init__(self, db_path: str | Path = "signals.db"):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    async def initialize(self) -> None:
        """
        Open the connection and apply migrations.
        Should be called once at startup.
        """
        if not self.is_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        await self._configure_connection()
        await self._apply_migrations()

        logger.info(f"{type(self).__name__} initialized: {self.db_path}")

    async def _configure_connection(self) -> None:
        # WAL lets the API read while a queue worker writes to the same file
        await self.db.execute("PRAGMA foreign_keys = ON")
        if not self.is_memory:
            await self.db.execute("PRAGMA journal_mode = WAL")
        await self.db.execute(f"PRAGMA busy_timeout = {self.BUSY_TIMEOUT_MS}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Context manager for transactions.

        Usage:
            async with store.transaction() as conn:
                await conn.execute(...)
                # Commits on success, rolls back on exception
        """
        db = self.db
        async with self._lock:
            try:
                await db.execute("BEGIN IMMEDIATE")
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    async def _apply_migrations(self) -> None:
        """Apply pending schema migrations."""
        db = self.db

        await db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.MIGRATION_TABLE} (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL,
                description TEXT
            )
            """
        )
        await db.commit()

        cursor = await db.execute(f"SELECT MAX(version) FROM {self.MIGRATION_TABLE}")
        row = await cursor.fetchone()
        current_version = row[0] if row and row[0] else 0

        for version in sorted(self.MIGRATIONS.keys()):
            if version <= current_version:
                continue

            logger.info(f"Applying {self.MIGRATION_TABLE} v{version}...")
            await db.executescript(self.MIGRATIONS[version])
            await db.execute(
                f"""
                INSERT INTO {self.MIGRATION_TABLE} (version, applied_at, description)
                VALUES (?, ?, ?)
                """,
                (version, datetime.now(timezone.utc).isoformat(), f"Schema version {version}"),
            )
            await db.commit()
