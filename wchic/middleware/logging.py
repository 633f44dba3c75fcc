# wchic/middleware/logging.py
from __future__ import annotations

import time
from typing import Dict, Mapping

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from wchic.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

QUIET_PATHS = ("/health", "/health/live", "/metrics")

SENSITIVE_HEADERS = (
    "authorization",
    "cookie",
    "set-cookie",
    "x-hub-signature",
    "x-api-key",
    "token",
    "secret",
)


def filter_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Redact credentials and signatures from logged headers."""
    filtered = {}
    for key, value in headers.items():
        if any(sensitive in key.lower() for sensitive in SENSITIVE_HEADERS):
            filtered[key] = "[REDACTED]"
        else:
            filtered[key] = value
    return filtered


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        quiet = request.url.path in QUIET_PATHS

        if not quiet:
            logger.info(
                "request.received",
                method=request.method,
                path=request.url.path,
                query_params=dict(request.query_params) if request.query_params else None,
                client_ip=request.client.host if request.client else "unknown",
                headers=filter_headers(request.headers),
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request.exception",
                method=request.method,
                path=request.url.path,
                error=str(e),
                response_time=round(time.time() - start_time, 3),
                exc_info=True,
            )
            raise

        response_time = time.time() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}"

        if not quiet:
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                "request.completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                response_time=round(response_time, 3),
            )
        return response
