"""
Admin Metrics API Endpoints

Provides the on-demand investor metrics snapshot for the admin dashboard.
"""

import asyncio
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import ConfigurationError
from ..dependencies import get_access_gate, get_engine_factory, get_snapshot_repository
from ..exceptions import ComputationError, MetricsEngineError
from ..schemas import ErrorResponse, MetricsSnapshot
from ..services.access_gate import AccessGate
from ..services.logging_service import get_logger
from ..services.metrics_engine import MetricsEngine
from ..services.snapshot_repository import SnapshotRepository

logger = get_logger("api")

router = APIRouter(prefix="/api/admin", tags=["admin_metrics"])

# auto_error is off so a missing header is reported as 401 by the access gate.
bearer = HTTPBearer(auto_error=False)

# nginx's "client closed request" status
CLIENT_CLOSED_REQUEST = 499


async def wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def run_until_disconnect(request: Request, engine: MetricsEngine) -> Optional[MetricsSnapshot]:
    """
    Run the engine while watching the connection.

    Returns None if the caller disconnects first; the engine's in-flight
    calls are cancelled in that case.
    """
    work = asyncio.create_task(engine.run())
    watcher = asyncio.create_task(wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, watcher):
            task.cancel()
        await asyncio.gather(work, watcher, return_exceptions=True)

    if work in done:
        return work.result()
    return None


@router.post(
    "/investor-metrics",
    response_model=MetricsSnapshot,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def investor_metrics(
    request: Request,
    background_tasks: BackgroundTasks,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    gate: AccessGate = Depends(get_access_gate),
    engine_factory: Callable[[], MetricsEngine] = Depends(get_engine_factory),
    repository: SnapshotRepository = Depends(get_snapshot_repository),
):
    """Compute a fresh metrics snapshot and append it to history after responding"""
    try:
        await gate.authorize(credentials.credentials if credentials else None)

        engine = engine_factory()
        try:
            snapshot = await run_until_disconnect(request, engine)
        finally:
            await engine.aclose()
    except (MetricsEngineError, ConfigurationError):
        raise
    except Exception as e:
        logger.exception("Unexpected error while computing metrics")
        raise ComputationError(f"Unexpected error while computing metrics: {type(e).__name__}") from e

    if snapshot is None:
        logger.warning("Caller disconnected, snapshot discarded")
        return JSONResponse(status_code=CLIENT_CLOSED_REQUEST, content={"error": "Client disconnected"})

    background_tasks.add_task(repository.append_in_background, snapshot)
    return snapshot
