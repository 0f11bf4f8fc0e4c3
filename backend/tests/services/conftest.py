"""Service test fixtures: async DB, seeded aggregate, FastAPI test client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - get_db and get_settings dependencies overridden per test
    - db_manager patched for background shadow runs that bypass get_db
    - Seeded email body contains every default evidence span verbatim

Design Decisions:
    - SQLite in-memory: fast, no external dependency, sufficient for executor and
      route tests (PostgreSQL-specific features not exercised here)
    - Settings built per test (not the lru_cache singleton): flags differ per test
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

import decisioning.infrastructure.database as db_module
from decisioning.api.routes.decisioning import get_extraction_provider
from decisioning.config import Settings, get_settings
from decisioning.db.base import Base
from decisioning.infrastructure.database import DatabaseSessionManager, get_db
from decisioning.main import app
from tests.services.mock_extraction import ScriptedProvider
from tests.services.seed_data import seed_application, seed_email


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def settings():
    """All pipeline stages enabled; tests flip flags off where needed."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        shadow_decisioning_enabled=True,
        shadow_dry_run_enabled=True,
        decision_execution_enabled=True,
        email_facts_extraction_enabled=True,
    )


# ─── Seeded aggregate ────────────────────────────────────────────

@pytest.fixture
async def seeded(test_db):
    """Matched email plus an active/interviewing application with one pending round."""
    application = await seed_application(test_db)
    email = await seed_email(
        test_db, application, extracted_data={"signal_company_name": "Acme"},
    )
    return application, email


# ─── API client ──────────────────────────────────────────────────

@pytest.fixture
def scripted_provider():
    """Route-level provider; tests queue responses on it."""
    return ScriptedProvider()


@pytest.fixture
async def client(test_engine, test_session_factory, settings, scripted_provider):
    """FastAPI test client with DB, settings and provider dependencies overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_extraction_provider] = lambda: scripted_provider

    # Patch db_manager for background tasks that use it directly
    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = test_session_factory
    db_module.db_manager = fake_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager
