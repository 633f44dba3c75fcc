# wchic/core/__init__.py
"""
Core package for configuration, logging, and shared exceptions.
"""

from wchic.core.config import Settings, settings
from wchic.core.logging import configure_structlog, get_structlog_logger

__all__ = [
    "Settings",
    "settings",
    "configure_structlog",
    "get_structlog_logger",
]
