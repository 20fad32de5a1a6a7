"""
Storage operations used by the sync pipeline.

Everything here takes an open ``AsyncSession`` and never commits; callers
decide the transaction boundary (one record per transaction in the replay
upserter, one investor per session in the resolver).

There is no bulk upsert primitive: "upsert" is find-then-create at the
application level, so every create is preceded by an exact-match lookup.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.dates import utc_now_naive
from ..common.errors import SlugExhaustedError
from ..common.slugs import slugify, suffixed_slug
from ..config.settings import settings
from .models import (
    Currency,
    Investment,
    Investor,
    InvestorScrapeCache,
    Project,
    ProjectStatus,
    Round,
)

logger = logging.getLogger(__name__)


@dataclass
class LatestRound:
    """The most recently persisted round and the name of its project."""
    round_id: int
    project_name: str
    date: datetime
    created_at: datetime


# =============================================================================
# Sync position
# =============================================================================

async def get_latest_round(session: AsyncSession) -> Optional[LatestRound]:
    """
    Read the most recent round (date desc, then creation time desc).

    Storage is the only source of sync position: the owning project's name is
    the stop marker for gap detection.
    """
    stmt = (
        select(Round.id, Round.date, Round.created_at, Project.name)
        .join(Project, Project.id == Round.project_id)
        .order_by(Round.date.desc(), Round.created_at.desc(), Round.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    row = result.first()
    if row is None:
        return None
    return LatestRound(round_id=row[0], date=row[1], created_at=row[2], project_name=row[3])


# =============================================================================
# Projects
# =============================================================================

async def find_project_by_name(session: AsyncSession, name: str) -> Optional[Project]:
    result = await session.execute(select(Project).where(Project.name == name).limit(1))
    return result.scalars().first()


async def project_slug_exists(session: AsyncSession, slug: str) -> bool:
    result = await session.execute(select(Project.id).where(Project.slug == slug).limit(1))
    return result.first() is not None


async def generate_unique_project_slug(
    session: AsyncSession,
    name: str,
    max_attempts: Optional[int] = None,
) -> str:
    """
    Probe ``base``, ``base-1``, ``base-2``... until a free project slug is found.

    Raises:
        SlugExhaustedError: If every probe up to max_attempts is taken
    """
    limit = max_attempts if max_attempts is not None else settings.max_slug_attempts
    base_slug = slugify(name)
    for attempt in range(limit + 1):
        candidate = suffixed_slug(base_slug, attempt)
        if not await project_slug_exists(session, candidate):
            return candidate
    raise SlugExhaustedError(base_slug, limit, entity="project")


async def get_or_create_project(
    session: AsyncSession,
    name: str,
    logo: Optional[str] = None,
    categories: Optional[Sequence[str]] = None,
) -> Tuple[Project, bool]:
    """
    Resolve a project by name or create it under a fresh unique slug.

    Existing projects only get a light update: logo and meta image are
    backfilled when missing, nothing else is touched.

    Returns:
        (project, created)
    """
    project = await find_project_by_name(session, name)
    if project is not None:
        if logo and (not project.logo or not project.meta_image):
            project.logo = project.logo or logo
            project.meta_image = project.meta_image or logo
            project.updated_at = utc_now_naive()
            session.add(project)
            await session.flush()
            logger.debug(f"Backfilled logo for project {name!r}")
        return project, False

    slug = await generate_unique_project_slug(session, name)
    project = Project(
        slug=slug,
        name=name,
        logo=logo or None,
        logo_alt_text=name,
        category=list(categories or []),
        links=[],
        status=ProjectStatus.APPROVED.value,
        meta_title=f"{name} - Crypto Project",
        meta_image=logo or None,
    )
    session.add(project)
    await session.flush()
    logger.info(f"Created project: {name} ({slug})")
    return project, True


# =============================================================================
# Rounds
# =============================================================================

async def find_round(
    session: AsyncSession,
    project_id: int,
    round_type: str,
    date: datetime,
    amount: str,
) -> Optional[Round]:
    """Exact match on the full (project, type, date, amount) tuple."""
    stmt = select(Round).where(
        Round.project_id == project_id,
        Round.type == round_type,
        Round.date == date,
        Round.amount == amount,
    ).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_or_create_round(
    session: AsyncSession,
    project_id: int,
    round_type: str,
    date: datetime,
    amount: str,
) -> Tuple[Round, bool]:
    existing = await find_round(session, project_id, round_type, date, amount)
    if existing is not None:
        return existing, False

    now = utc_now_naive()
    round_ = Round(
        project_id=project_id,
        type=round_type,
        date=date,
        amount=amount,
        created_at=now,
        updated_at=now,
    )
    session.add(round_)
    await session.flush()
    return round_, True


# =============================================================================
# Investments
# =============================================================================

async def existing_investor_ids_for_round(
    session: AsyncSession,
    round_id: int,
    investor_ids: Iterable[int],
) -> set:
    ids = list(investor_ids)
    if not ids:
        return set()
    stmt = select(Investment.investor_id).where(
        Investment.round_id == round_id,
        Investment.investor_id.in_(ids),
    )
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def create_investments(
    session: AsyncSession,
    round_id: int,
    investor_ids: Sequence[int],
    amount: str,
    invested_at: datetime,
    currency: str = Currency.USD.value,
) -> int:
    """Insert all (round, investor) pairs in one statement. Returns rows inserted."""
    if not investor_ids:
        return 0
    now = utc_now_naive()
    rows = [
        {
            "round_id": round_id,
            "investor_id": investor_id,
            "amount": amount,
            "currency": currency,
            "invested_at": invested_at,
            "created_at": now,
            "updated_at": now,
        }
        for investor_id in investor_ids
    ]
    await session.execute(insert(Investment), rows)
    return len(rows)


# =============================================================================
# Investors
# =============================================================================

async def find_investors_by_slugs(
    session: AsyncSession,
    slugs: Iterable[str],
) -> Dict[str, Tuple[int, str]]:
    """Batch lookup. Returns slug -> (investor id, name) for every slug that exists."""
    wanted = sorted({s for s in slugs if s})
    if not wanted:
        return {}
    stmt = select(Investor.slug, Investor.id, Investor.name).where(Investor.slug.in_(wanted))
    result = await session.execute(stmt)
    return {slug: (investor_id, name) for slug, investor_id, name in result.all()}


async def investor_slug_exists(session: AsyncSession, slug: str) -> bool:
    result = await session.execute(select(Investor.id).where(Investor.slug == slug).limit(1))
    return result.first() is not None


async def create_investor(session: AsyncSession, **fields: Any) -> Investor:
    investor = Investor(**fields)
    session.add(investor)
    await session.flush()
    return investor


# =============================================================================
# Investor profile cache
# =============================================================================

async def get_cached_investor_profile(
    session: AsyncSession,
    slug: str,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Return the cached profile payload unless it has expired."""
    stmt = select(InvestorScrapeCache.payload).where(
        InvestorScrapeCache.slug == slug,
        InvestorScrapeCache.expires_at > (now or utc_now_naive()),
    ).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def store_investor_profile(
    session: AsyncSession,
    slug: str,
    payload: Dict[str, Any],
    ttl_days: Optional[int] = None,
) -> None:
    """Insert or refresh a cache entry."""
    days = ttl_days if ttl_days is not None else settings.investor_cache_ttl_days
    now = utc_now_naive()
    result = await session.execute(
        select(InvestorScrapeCache).where(InvestorScrapeCache.slug == slug).limit(1)
    )
    entry = result.scalars().first()
    if entry is None:
        entry = InvestorScrapeCache(slug=slug, payload=payload, scraped_at=now, expires_at=now + timedelta(days=days))
    else:
        entry.payload = payload
        entry.scraped_at = now
        entry.expires_at = now + timedelta(days=days)
    session.add(entry)
    await session.flush()


async def purge_expired_profiles(session: AsyncSession) -> int:
    """Delete expired cache entries. Returns number removed."""
    result = await session.execute(
        select(InvestorScrapeCache).where(InvestorScrapeCache.expires_at <= utc_now_naive())
    )
    expired: List[InvestorScrapeCache] = list(result.scalars().all())
    for entry in expired:
        await session.delete(entry)
    return len(expired)
