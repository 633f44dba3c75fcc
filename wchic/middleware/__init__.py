# wchic/middleware/__init__.py
from wchic.middleware.logging import LoggingMiddleware
from wchic.middleware.rate_limiter import RateLimitingMiddleware
from wchic.middleware.request_id import RequestIdMiddleware

__all__ = [
    "LoggingMiddleware",
    "RateLimitingMiddleware",
    "RequestIdMiddleware",
]
