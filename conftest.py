"""
Root-level pytest configuration for the Talent Signals Engine.

Configures:
- pytest-asyncio for async test support
- Custom markers (integration, etc.)
- Shared temporary-database fixtures
"""

import pytest


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (may require network access)"
    )
    config.addinivalue_line(
        "markers",
        "asyncio: marks tests as async (automatically handled by pytest-asyncio)"
    )


# asyncio_mode is "auto" (pyproject.toml), so async tests need no decorator
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(scope="session")
def event_loop_policy():
    import asyncio
    return asyncio.get_event_loop_policy()


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh SQLite file for one test."""
    return str(tmp_path / "signals.db")


@pytest.fixture
async def store(db_path):
    """Initialized SignalStore on a fresh database."""
    from storage.signal_store import SignalStore

    signal_store = SignalStore(db_path)
    await signal_store.initialize()
    yield signal_store
    await signal_store.close()
