# wchic/routes/__init__.py
"""
API route handlers organized by domain.
"""

from wchic.routes import auth, dashboard, franchises, health, intake, leads, webhooks

__all__ = [
    "auth",
    "dashboard",
    "franchises",
    "health",
    "intake",
    "leads",
    "webhooks",
]
