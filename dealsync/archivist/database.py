"""
Database session management for async SQLAlchemy operations.

The engine is created lazily so importing the package never opens a
connection. Pipeline components receive an ``async_sessionmaker`` so tests
can hand them an in-memory SQLite factory instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from ..config.settings import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _engine_options(database_url: str) -> dict:
    """Pool and timeout options; PostgreSQL only."""
    if not database_url.startswith("postgresql"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,   # Detect stale connections before use
        "pool_recycle": 3600,
        "pool_timeout": 30,
        "connect_args": {
            "command_timeout": settings.db_statement_timeout_ms / 1000,
            "server_settings": {
                "statement_timeout": str(settings.db_statement_timeout_ms),
            },
        },
    }


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def configure_database(database_url: Optional[str] = None) -> async_sessionmaker:
    """Create (or replace) the process-wide engine and session factory."""
    global _engine, _session_factory

    url = database_url or settings.database_url
    _engine = create_async_engine(url, echo=False, **_engine_options(url))
    _session_factory = create_session_factory(_engine)
    return _session_factory


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_database()
    return _engine


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        configure_database()
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None):
    """Create any missing tables."""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db():
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session(
    session_factory: Optional[async_sessionmaker] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session that commits on success.

    Rolls back and re-raises on any error. Statement timeouts are enforced by
    PostgreSQL (statement_timeout) rather than by cancelling the commit.
    """
    factory = session_factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database session error, rolling back: {e}")
            await session.rollback()
            raise
