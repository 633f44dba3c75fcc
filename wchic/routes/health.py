# wchic/routes/health.py
from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Dict, List

import psutil
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wchic import __version__
from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger
from wchic.db.session import health_check as database_health_check
from wchic.services.podio.workspaces import WorkspaceConfigError, get_registry
from wchic.services.redis import health_check as redis_health_check

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])

CRITICAL_CHECKS = ("database", "podio_mappings")


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    version: str
    timestamp: str
    uptime: float
    checks: Dict[str, Dict[str, str]]
    dependencies: List[str]


async def check_database() -> Dict[str, str]:
    result = await database_health_check()
    check = {"status": result.get("status", "unhealthy")}
    if result.get("error"):
        check["error"] = str(result["error"])
    return check


async def check_redis() -> Dict[str, str]:
    result = await redis_health_check()
    check = {"status": result.get("status", "unhealthy")}
    if result.get("error"):
        check["error"] = str(result["error"])
    return check


def check_podio() -> Dict[str, Dict[str, str]]:
    try:
        registry = get_registry()
    except WorkspaceConfigError as e:
        return {"podio_mappings": {"status": "unhealthy", "error": e.message}}
    return {
        "podio_mappings": {"status": "healthy", "workspaces": ",".join(registry.keys())},
        "podio_api": {
            "status": "healthy" if settings.podio_enabled else "disabled",
        },
    }


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Aggregate health of the database, Redis and the Podio workspace mappings."""
    db_result, redis_result = await asyncio.gather(check_database(), check_redis())
    all_checks = {"database": db_result, "redis": redis_result, **check_podio()}

    overall_status = "healthy"
    for service, result in all_checks.items():
        if result.get("status") in ("healthy", "disabled"):
            continue
        if service in CRITICAL_CHECKS:
            overall_status = "unhealthy"
            break
        overall_status = "degraded"

    process = psutil.Process()
    dependencies = ["postgresql", "redis", "podio"]
    if settings.sentry_dsn:
        dependencies.append("sentry")

    response = HealthCheckResponse(
        status=overall_status,
        service="wchic",
        environment=settings.environment,
        version=__version__,
        timestamp=datetime.utcnow().isoformat() + "Z",
        uptime=time.time() - process.create_time(),
        checks=all_checks,
        dependencies=dependencies,
    )

    if overall_status == "healthy":
        logger.info("health.check", status=overall_status)
    else:
        logger.warning("health.check", status=overall_status, checks=all_checks)

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE if overall_status == "unhealthy" else status.HTTP_200_OK
    return JSONResponse(status_code=status_code, content=response.model_dump())


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_probe():
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat() + "Z"}
