# wchic/main.py
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from wchic import __version__
from wchic.core.config import settings
from wchic.core.exceptions import BaseAPIException
from wchic.core.logging import configure_structlog, get_structlog_logger
from wchic.db import session as db_session
from wchic.middleware import LoggingMiddleware, RateLimitingMiddleware, RequestIdMiddleware
from wchic.routes import auth, dashboard, franchises, health, intake, leads, webhooks
from wchic.services.jobs import scheduler_loop
from wchic.services.podio.workspaces import get_registry
from wchic.services.redis import close_redis_pool, init_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger = get_structlog_logger(__name__)
    logger.info("application.starting", environment=settings.environment)

    try:
        await init_redis_pool()
    except Exception as e:
        logger.error("redis.connection_failed", error=str(e))
        if settings.is_production:
            raise

    # Broken workspace mappings must stop the process before any traffic.
    registry = get_registry()
    logger.info("podio.workspaces.ready", workspaces=registry.keys(), enabled=settings.podio_enabled)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    stop_event = asyncio.Event()
    scheduler_task = None
    if settings.jobs_enabled and not settings.is_testing:
        scheduler_task = asyncio.create_task(scheduler_loop(stop_event))

    logger.info("application.started")
    yield

    logger.info("application.shutting_down")
    if scheduler_task is not None:
        stop_event.set()
        try:
            await asyncio.wait_for(scheduler_task, timeout=10)
        except asyncio.TimeoutError:
            scheduler_task.cancel()

    await close_redis_pool()
    if db_session.engine is not None:
        await db_session.engine.dispose()
        logger.info("database.connection_closed")
    logger.info("application.shutdown_complete")


configure_structlog()
logger = get_structlog_logger(__name__)

app = FastAPI(
    title="WChic API",
    version=__version__,
    description="WhatsApp lead qualification, franchise routing and Podio synchronization",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins(),
    allow_credentials=True,
    allow_methods=settings.methods(),
    allow_headers=settings.allowed_headers.split(","),
    expose_headers=["X-Request-ID", "X-Response-Time"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIdMiddleware)

if not settings.is_development and not settings.is_testing:
    app.add_middleware(RateLimitingMiddleware)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    logger.warning(
        "api.exception",
        status_code=exc.status_code,
        code=exc.code,
        path=request.url.path,
        method=request.method,
    )
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.warning("validation.error", path=request.url.path, method=request.method, errors=errors)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"code": "validation_error", "message": "Request validation failed", "details": {"errors": errors}},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = f"err_{int(time.time())}_{hash(str(exc)) % 10000:04d}"
    logger.error(
        "unhandled.exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    message = f"Internal server error: {exc}" if settings.is_development else "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"code": "internal_error", "message": message, "details": {"error_id": error_id}},
        headers={"X-Error-ID": error_id},
    )


app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(intake.router, prefix=settings.api_prefix)
app.include_router(webhooks.router, prefix=settings.api_prefix)
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(leads.router, prefix=settings.api_prefix)
app.include_router(franchises.router, prefix=settings.api_prefix)
app.include_router(dashboard.router, prefix=settings.api_prefix)

if not settings.is_testing:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
async def root():
    return {
        "name": "WChic API",
        "version": app.version,
        "environment": settings.environment,
        "health": "/health",
        "podio_enabled": settings.podio_enabled,
    }


logger.info("application.configured", environment=settings.environment)
