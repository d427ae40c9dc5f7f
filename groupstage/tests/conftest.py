"""
Shared fixtures: in-memory SQLite per test and an httpx client bound to the app.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULE_DEFAULT_TIME"] = "unset"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from groupstage.core import tournament_guard
from groupstage.database import get_db
from groupstage.main import app
from groupstage.orm.base import Base
from groupstage.services.broadcast_service import MessagingManager
from groupstage.tests.helpers import HOST, STRANGER, auth_headers

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """App client; every request gets its own session on the test engine."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_process_state():
    tournament_guard._tournament_locks.clear()
    MessagingManager.reset()
    yield
    tournament_guard._tournament_locks.clear()
    MessagingManager.reset()


@pytest.fixture
def host_headers():
    return auth_headers(HOST)


@pytest.fixture
def stranger_headers():
    return auth_headers(STRANGER)
