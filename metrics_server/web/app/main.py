# metrics_server/web/app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from metrics_server.web.app.api import admin_metrics
from metrics_server.web.app.config import ConfigurationError, get_settings
from metrics_server.web.app.exceptions import MetricsEngineError
from metrics_server.web.app.services.logging_service import (
    LoggingMiddleware,
    get_logger,
    setup_logging,
)

settings = get_settings()
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL, json_output=not settings.DEBUG)
    logger.info(f"{settings.APP_NAME} {settings.VERSION} starting")
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Role-gated business metrics snapshots reconciled from billing and product usage.",
    version=settings.VERSION,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# CORS middleware; the admin dashboard calls cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(MetricsEngineError)
async def metrics_error_handler(request: Request, exc: MetricsEngineError):
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log_step("ERROR", level=level, error=exc.message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(status_code=HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})


app.include_router(admin_metrics.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "metrics", "version": settings.VERSION}
