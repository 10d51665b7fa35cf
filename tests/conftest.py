"""Fixtures shared by every test module: one in-memory database, one app."""
from __future__ import annotations

from contextlib import asynccontextmanager

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.db.engine as engine_module
import src.services.scheduler as scheduler_module
from src.db.engine import get_session
from src.db.tables import Base

# StaticPool keeps a single connection, so the memory DB outlives each session
TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)

engine_module.engine = test_engine
engine_module.async_session = TestSession
scheduler_module.async_session = TestSession

from src.api.main import app  # noqa: E402


async def _test_session_dependency():
    async with TestSession() as s:
        yield s


app.dependency_overrides[get_session] = _test_session_dependency


@asynccontextmanager
async def get_test_session():
    """Seed or inspect rows outside a request."""
    async with TestSession() as s:
        yield s


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    import src.db.notification_tables  # noqa: F401
    import src.db.subscription_tables  # noqa: F401
    import src.db.webhook_tables  # noqa: F401
    from src.middleware.metrics import metrics

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield
    finally:
        metrics.reset()
        async with test_engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
