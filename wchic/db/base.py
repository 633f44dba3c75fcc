from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Use naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = MetaData(naming_convention=convention)

    def to_dict(self, exclude: Optional[list[str]] = None) -> Dict[str, Any]:
        """Convert model instance to dictionary."""
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.name)

            # Handle datetime serialization
            if hasattr(value, "isoformat"):
                value = value.isoformat()

            result[column.name] = value

        return result

    def update(self, **kwargs) -> None:
        """Update model attributes."""
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def __repr__(self) -> str:
        attrs = []
        for column in self.__table__.columns:
            if column.primary_key or column.name in ["created_at", "updated_at"]:
                continue
            value = getattr(self, column.name)
            if value is not None:
                attrs.append(f"{column.name}={repr(value)}")

        return f"<{self.__class__.__name__}({', '.join(attrs)})>"


__all__ = ["Base"]
