"""Shared pytest fixtures for merge engine tests."""

import pytest
import pytest_asyncio

from config import Settings
from db.database import create_engine_for, create_session_maker, create_tables
from services.entity_merge import EntityMergeService
from services.entity_store import EntityStore
from services.merge_coordinator import MergeTransactionCoordinator
from tests.factories import GraphFactory

# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def settings():
    """Settings with defaults only, never read from the environment or .env."""
    return Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with the schema created.

    A file (rather than :memory:) gives each session its own connection, so
    the session under test and the factory sessions never share a
    transaction.
    """
    async_engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'casegraph.db'}")
    await create_tables(async_engine)
    yield async_engine
    await async_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest_asyncio.fixture
async def session(session_maker):
    """Session handed to the code under test."""
    async with session_maker() as s:
        yield s


@pytest.fixture
def graph(session_maker):
    """Seeds rows and reads back committed state through separate sessions."""
    return GraphFactory(session_maker)


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def store(session):
    return EntityStore(session)


@pytest.fixture
def coordinator(store, settings):
    return MergeTransactionCoordinator(store, settings)


@pytest.fixture
def merge_service(store, settings):
    return EntityMergeService(store, settings)
