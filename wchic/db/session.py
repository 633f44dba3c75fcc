from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from wchic.core.config import settings
from wchic.core.exceptions import DatabaseError
from wchic.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global engine instance
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_database_engine() -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None:
        return engine

    if settings.is_testing:
        # Use NullPool for tests to ensure clean state
        engine = create_async_engine(
            settings.database_url,
            poolclass=NullPool,
            echo=settings.debug,
        )
    else:
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            echo=settings.debug,
            connect_args={
                "command_timeout": 60,
                "server_settings": {"application_name": "wchic_api"},
            },
        )

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info(
        "database.engine.created",
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        testing=settings.is_testing,
    )

    return engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    if AsyncSessionLocal is None:
        create_database_engine()

    session = AsyncSessionLocal()

    try:
        await session.execute(
            text(f"SET statement_timeout = {settings.database_statement_timeout * 1000}")
        )
        yield session

    except SQLAlchemyError as e:
        logger.error("database.session_error", error=str(e))
        await session.rollback()
        raise DatabaseError(
            message="Database session error",
            details={"error": str(e)},
        ) from e

    finally:
        await session.close()


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Session for work running outside a request (background tasks, jobs, CLI)."""
    if AsyncSessionLocal is None:
        create_database_engine()

    session = AsyncSessionLocal()

    try:
        yield session
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("database.scope_error", error=str(e))
        raise DatabaseError(
            message="Database operation failed",
            details={"error": str(e)},
        ) from e
    finally:
        await session.close()


async def health_check() -> Dict[str, Any]:
    """Check database health."""
    if engine is None:
        create_database_engine()

    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            row = result.fetchone()
            return {
                "status": "healthy" if row and row[0] == 1 else "unhealthy",
                "timestamp": datetime.utcnow().isoformat(),
            }
    except Exception as e:
        logger.error("database.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.utcnow().isoformat(),
        }
