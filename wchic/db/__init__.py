# wchic/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from wchic.db.base import Base
from wchic.db.session import get_session, session_scope

__all__ = [
    "Base",
    "get_session",
    "session_scope",
]
