"""
Tests for SignalEngine wiring and the engine_context lifecycle.
"""

import sqlite3

import pytest

from signal_engine.config import EngineConfig
from storage.job_store import JobStore


class TestEngineContext:
    async def test_stores_open_inside_and_closed_after(self, db_path):
        from workflows.engine import engine_context

        async with engine_context(EngineConfig(db_path=db_path), collectors={}) as engine:
            assert (await engine.store.get_stats())["total_signals"] == 0
            assert (await engine.queue.get_stats())["waiting"] == 0

        assert engine.store._db is None
        assert engine.jobs._db is None

    async def test_failed_initialize_still_closes_opened_stores(self, db_path, monkeypatch):
        from workflows.engine import SignalEngine, engine_context

        async def unavailable(self):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(JobStore, "initialize", unavailable)

        closed = []
        original_close = SignalEngine.close

        async def tracking_close(engine):
            await original_close(engine)
            closed.append(engine)

        monkeypatch.setattr(SignalEngine, "close", tracking_close)

        with pytest.raises(sqlite3.OperationalError):
            async with engine_context(EngineConfig(db_path=db_path), collectors={}):
                pass

        assert len(closed) == 1
        assert closed[0].store._db is None
