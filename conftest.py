import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Load .env.test if present, then fall back to an in-memory SQLite database
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from fakeredis import FakeAsyncRedis, FakeServer
from libs.common.config import get_settings
from libs.common.redis import set_redis
from libs.db.base import Base

# Import all models so metadata includes every table
from services.ordering_service import models as _ordering_models  # noqa: F401

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
settings = get_settings()


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh database per test.
    SQLite in memory unless DATABASE_URL points elsewhere.
    """
    if settings.DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            settings.DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(settings.DATABASE_URL, future=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_redis():
    """
    Fresh in-memory Redis per test.
    Cached balances and blacklist answers must not leak between tests.
    """
    server = FakeServer()
    redis = FakeAsyncRedis(server=server, decode_responses=True)
    set_redis(redis)
    yield server
    set_redis(None)


@pytest_asyncio.fixture
async def client(
    db_session, fake_stripe, fake_notifier
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient with the app and overridden DB, Stripe and email dependencies.
    """
    from libs.common.emails.client import get_email_client
    from libs.db.session import get_async_db
    from services.ordering_service.app.main import app
    from services.ordering_service.stripe_client import get_stripe_client

    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_stripe_client] = lambda: fake_stripe
    app.dependency_overrides[get_email_client] = lambda: fake_notifier

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
