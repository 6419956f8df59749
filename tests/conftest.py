import os

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Settings are cached on first use, so the test environment is set before any app import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_metrics")

from metrics_server.web.app.config import RetryPolicy
from metrics_server.web.app.models import Base


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path):
    """
    Session factory over a fresh file-backed sqlite database per test.

    A file database is used because the collectors open several sessions
    concurrently and an in-memory database is private to one connection.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'metrics.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def empty_session_factory(tmp_path):
    """Session factory over a database with no tables; every query fails."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def retry_policy():
    return RetryPolicy(attempts=2, backoff_seconds=0.0, timeout_seconds=5.0)
