# wchic/middleware/rate_limiter.py
from __future__ import annotations

import time
from typing import Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from wchic.core.config import settings
from wchic.core.exceptions import RateLimitError
from wchic.core.logging import get_structlog_logger
from wchic.services.redis import get_redis_client

logger = get_structlog_logger(__name__)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Fixed-window rate limiting backed by Redis. Fails open when Redis is down."""

    # Vendor webhooks must always be acknowledged.
    exempt_prefixes = ("/health", "/metrics", "/docs", "/redoc", "/openapi.json", "/webhook/")

    def __init__(self, app):
        super().__init__(app)
        self.rate_limit_requests = settings.rate_limit_requests
        self.rate_limit_period = settings.rate_limit_period

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        client_id = self._get_client_id(request)
        allowed, remaining, reset_time = await self._check_rate_limit(client_id, request)

        if not allowed:
            retry_after = max(0, reset_time - int(time.time()))
            logger.warning(
                "rate_limit.exceeded",
                client_id=client_id[:50],
                path=request.url.path,
                retry_after=retry_after,
            )
            error = RateLimitError(
                retry_after=retry_after,
                details={"limit": self.rate_limit_requests, "period": self.rate_limit_period},
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.rate_limit_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response

    def _get_client_id(self, request: Request) -> str:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            return f"token:{auth_header[7:]}"

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return f"ip:{forwarded_for.split(',')[0].strip()}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    async def _check_rate_limit(self, client_id: str, request: Request) -> Tuple[bool, int, int]:
        window = int(time.time() // self.rate_limit_period)
        reset_time = (window + 1) * self.rate_limit_period
        key = f"ratelimit:{client_id}:{window}"

        try:
            redis = await get_redis_client()
            async with redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.rate_limit_period)
                results = await pipe.execute()
            current_count = results[0]
        except Exception as e:
            logger.error("rate_limit.error", error=str(e), client_id=client_id[:50])
            return True, self.rate_limit_requests, reset_time

        remaining = max(0, self.rate_limit_requests - current_count)
        return current_count <= self.rate_limit_requests, remaining, reset_time
