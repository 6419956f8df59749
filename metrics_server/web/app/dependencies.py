"""
Application-wide dependencies for FastAPI.
"""
from typing import Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import Settings, get_settings
from .db import get_session_factory
from .services.access_gate import AccessGate
from .services.metrics_engine import MetricsEngine
from .services.snapshot_repository import SnapshotRepository


def get_access_gate(
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AccessGate:
    return AccessGate(
        session_factory,
        jwt_secret=settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        admin_role=settings.ADMIN_ROLE,
    )


def get_engine_factory(
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> Callable[[], MetricsEngine]:
    """
    Engines are built only after the access gate has passed, so the route
    receives a factory rather than an engine.
    """
    def build() -> MetricsEngine:
        return MetricsEngine.from_config(settings.engine_config(), session_factory)
    return build


def get_snapshot_repository(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> SnapshotRepository:
    return SnapshotRepository(session_factory)
