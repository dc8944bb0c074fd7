from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from benefit_flow.config import Settings, set_settings
from benefit_flow.db import build_engine, build_session_factory, get_session
from benefit_flow.main import app
from benefit_flow.models import SQLModel
from benefit_flow.services.events import LoggingEventDispatcher, RecordingEventDispatcher, set_event_dispatcher
from benefit_flow.services.roles import InMemoryRoleProvider, set_role_provider

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

# Point at a disposable Postgres database to run the suite against asyncpg;
# each test otherwise gets its own SQLite file through aiosqlite.
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Create a per-test async engine with a fresh schema."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'benefit_flow.db'}"
    _engine = build_engine(url)
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await _engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Yield a database session. Engine operations commit for real."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def async_client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    """Async HTTP client; every request gets its own session on the test database."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def settings() -> Iterator[Settings]:
    """Fresh settings for every test, restored to environment defaults afterwards."""
    _settings = Settings()
    set_settings(_settings)
    yield _settings
    set_settings(None)


@pytest.fixture(autouse=True)
def roles() -> Iterator[InMemoryRoleProvider]:
    """Empty in-memory role provider; test modules seed the actors they need."""
    provider = InMemoryRoleProvider()
    set_role_provider(provider)
    yield provider
    set_role_provider(InMemoryRoleProvider())


@pytest.fixture(autouse=True)
def dispatcher() -> Iterator[RecordingEventDispatcher]:
    """Record every dispatched transition."""
    recorder = RecordingEventDispatcher()
    set_event_dispatcher(recorder)
    yield recorder
    set_event_dispatcher(LoggingEventDispatcher())
