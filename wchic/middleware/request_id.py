# wchic/middleware/request_id.py
from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from wchic.core.logging import set_request_id


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the structlog context and echoes it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = self._get_or_create_request_id(request)
        request.state.request_id = request_id
        set_request_id(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    def _get_or_create_request_id(self, request: Request) -> str:
        for header in ("X-Request-ID", "X-Correlation-ID"):
            value = request.headers.get(header)
            if value:
                return value

        # W3C trace context: 00-<32 hex trace id>-...
        traceparent = request.headers.get("traceparent")
        if traceparent and traceparent.startswith("00-") and len(traceparent) >= 35:
            return traceparent[3:35]

        return str(uuid.uuid4())
