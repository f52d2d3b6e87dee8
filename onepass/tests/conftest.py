"""
Test configuration for OnePass backend tests.

Every test gets a fresh in-memory SQLite database (aiosqlite) built from the
ORM metadata, so no postgres or redis is needed. The FastAPI app is driven
through httpx ASGITransport with the process-wide services (registry,
mailer, storage, sequence locks) swapped via dependency_overrides.
"""
from __future__ import annotations

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from onepass.billing.codes import SequenceLocks
from onepass.database import Base, get_db
from onepass.dependencies import get_mailer, get_registry, get_sequence_locks, get_storage
from onepass.realtime.connections import ConnectionManager
from onepass.realtime.registry import SessionRegistry
from onepass.storage import LocalStorage
from onepass.tests.fakes import RecordingMailer

import onepass.models  # noqa: F401  (register tables on Base.metadata)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def registry() -> SessionRegistry:
    return SessionRegistry(ConnectionManager())


@pytest_asyncio.fixture
async def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest_asyncio.fixture
async def locks() -> SequenceLocks:
    return SequenceLocks()


@pytest_asyncio.fixture
async def client(session_factory, registry, mailer, locks, tmp_path):
    """Async httpx client using ASGI transport - no live server needed."""
    from onepass.config import Settings
    from onepass.main import app

    storage = LocalStorage(Settings(upload_dir=str(tmp_path), public_base_url="http://test"))

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_sequence_locks] = lambda: locks
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
