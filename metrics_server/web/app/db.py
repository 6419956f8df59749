from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from metrics_server.web.app.config import get_settings
from metrics_server.web.app.models import Base

engine = create_async_engine(get_settings().DATABASE_URL, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

__all__ = ["Base", "engine", "AsyncSessionLocal", "get_session_factory"]


def get_session_factory() -> async_sessionmaker:
    """Collectors open one session per query, so they take the factory, not a session."""
    return AsyncSessionLocal
