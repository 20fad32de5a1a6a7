"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures.
For markup builders and fake collaborators, see test_helpers.py.

Storage tests run against an in-memory SQLite database (aiosqlite) so the
real queries, unique constraints and transaction boundaries are exercised.
"""

from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from dealsync.archivist import models  # noqa: F401  (registers tables)
from dealsync.archivist.database import create_session_factory
from dealsync.archivist.models import Investor, Project, Round


# =============================================================================
# Database fixtures
# =============================================================================
@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def seed_round(session_factory):
    """Insert a project with one round; returns a coroutine taking the project name."""

    async def _seed(name: str, date: datetime = datetime(2025, 9, 1), round_type: str = "Seed", amount: str = "500000"):
        async with session_factory() as session:
            project = Project(slug=name.lower().replace(" ", "-"), name=name)
            session.add(project)
            await session.flush()
            session.add(Round(project_id=project.id, type=round_type, date=date, amount=amount))
            await session.commit()
            return project.id

    return _seed


@pytest_asyncio.fixture
async def seed_investor(session_factory):
    """Insert an investor; returns a coroutine taking (name, slug)."""

    async def _seed(name: str, slug: str):
        async with session_factory() as session:
            investor = Investor(name=name, slug=slug)
            session.add(investor)
            await session.commit()
            return investor.id

    return _seed


# =============================================================================
# Settings
# =============================================================================
@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No real backoff sleeps in tests."""
    from dealsync.config.settings import settings
    monkeypatch.setattr(settings, "db_retry_delay", 0.0)
