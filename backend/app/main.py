"""
NaviStream API - FastAPI Application Entry Point.

Initializes the FastAPI application:
- Lifespan: logging setup, MongoDB connection and indexes, staging directory
  creation and a sweep of scratch directories left by a crashed process
- CORS and request logging middleware (``X-Request-ID``, ``X-Process-Time``)
- Exception handlers rendering every failure as ``{error, ...}``
- The v1 router under ``/api/v1`` plus ``/``, ``/health`` and ``/ready``

Usage:
    uvicorn app.main:app --host 0.0.0.0 --port 3001
"""

import logging
import time

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import uvicorn

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1 import api_router
from app.config import get_settings
from app.core.database import close_db, get_db_client, init_db
from app.core.errors import UploadPipelineError, VideoServiceError
from app.services.staging_service import StagingStore
from app.utils.logger import add_log_context, setup_logging


logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

HTTP_ERROR_THRESHOLD = 400
HTTP_SERVER_ERROR_THRESHOLD = 500


# =============================================================================
# Application Lifespan Management
# =============================================================================


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """
    Startup: configure logging, connect MongoDB, prepare the staging area.
    Shutdown: close MongoDB.

    A MongoDB connection failure aborts startup.
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.json_logs)

    logger.info(
        "Starting %s (env=%s, debug=%s) on %s:%d",
        settings.app_name,
        settings.app_env,
        settings.debug,
        settings.host,
        settings.port,
    )

    try:
        await init_db(settings)
    except Exception as e:
        logger.exception("Failed to initialize MongoDB")
        raise RuntimeError(f"MongoDB initialization failed: {e}") from e

    staging = StagingStore.from_settings(settings)
    staging.ensure_root()
    await staging.sweep_stale_async(settings.stale_staging_max_age_seconds)

    logger.info("%s ready to accept requests", settings.app_name)

    yield

    logger.info("%s shutting down", settings.app_name)
    await close_db()
    logger.info("%s shutdown complete", settings.app_name)


# =============================================================================
# FastAPI Application Instance
# =============================================================================

_settings = get_settings()

app = FastAPI(
    title="NaviStream API",
    description="Video upload, storage and playback metadata for NaviStream.",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=_settings.debug,
)


# =============================================================================
# Middleware Configuration
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
)


@app.middleware("http")
async def request_logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """
    Assign a request id, time the request and log its outcome.

    The id is stored on ``request.state`` so the auth dependency carries it
    into the request context, and is echoed in ``X-Request-ID``.
    """
    request_id = request.headers.get("x-request-id") or uuid4().hex
    request.state.request_id = request_id
    log = add_log_context(logger, request_id=request_id)

    start_time = time.perf_counter()
    log.debug("Request started: %s %s", request.method, request.url.path)

    try:
        response = await call_next(request)
    except Exception:
        log.exception("Request failed: %s %s", request.method, request.url.path)
        raise

    process_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
    response.headers["X-Process-Time"] = f"{process_time_ms}ms"
    response.headers["X-Request-ID"] = request_id

    log_level = logging.INFO if response.status_code < HTTP_ERROR_THRESHOLD else logging.WARNING
    log.log(
        log_level,
        "Request completed: %s %s [Status: %d] [Time: %sms]",
        request.method,
        request.url.path,
        response.status_code,
        process_time_ms,
    )
    return response


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(UploadPipelineError)
async def upload_pipeline_error_handler(request: Request, exc: UploadPipelineError) -> JSONResponse:
    """Render an upload failure as ``{error, code, details?}``."""
    if exc.status_code >= HTTP_SERVER_ERROR_THRESHOLD:
        logger.error(
            "Upload failed at %s on %s: %s",
            exc.stage.value,
            request.url.path,
            exc.details or exc.message,
            extra={"request_id": getattr(request.state, "request_id", None), "stage": exc.stage.value},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(VideoServiceError)
async def video_service_error_handler(_request: Request, exc: VideoServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors (401, 404, ...) as ``{error}``, keeping their headers."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body validation errors are a 400 with one detail per field."""
    details = [
        {
            "field": ".".join(str(loc) for loc in err.get("loc", ()) if loc != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log unexpected errors with traceback and return a generic 500 so no
    internal detail reaches the client.
    """
    logger.error(
        "Internal server error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# API Router Registration
# =============================================================================

app.include_router(api_router, prefix="/api/v1")


# =============================================================================
# Core Endpoints
# =============================================================================


@app.get("/", tags=["root"], summary="API Root")
async def root() -> dict[str, Any]:
    return {
        "name": "NaviStream API",
        "version": API_VERSION,
        "documentation": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json",
        },
        "api_prefix": "/api/v1",
        "endpoints": {"videos": "/api/v1/videos"},
    }


@app.get("/health", tags=["health"], summary="Health Check")
async def health_check() -> dict[str, Any]:
    """Liveness probe; does not touch any dependency."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": API_VERSION,
        "service": "NaviStream API",
    }


@app.get("/ready", tags=["health"], summary="Readiness Check")
async def readiness_check() -> JSONResponse:
    """
    Readiness probe: ready once MongoDB answers a ping.

    Returns 503 while it does not.
    """
    checks: dict[str, bool] = {}
    try:
        checks["mongodb"] = await get_db_client().ping()
    except RuntimeError:
        checks["mongodb"] = False

    is_ready = all(checks.values())
    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "ready": is_ready,
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
        },
    )


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level,
    )
