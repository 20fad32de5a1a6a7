"""
Database models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- Project: A fundraising project (one per distinct project name)
- Round: A funding round belonging to one project
- Investor: A fund, angel or other backer
- Investment: Join table linking rounds to investors with per-investor amount
- InvestorScrapeCache: Durable cache of scraped investor profile pages
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, Relationship, SQLModel

from ..common.dates import utc_now_naive

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Timestamps are naive UTC (TIMESTAMP WITHOUT TIME ZONE); see utc_now_naive


class ProjectStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class InvestorStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    ETH = "ETH"
    BTC = "BTC"


class Project(SQLModel, table=True):
    """A project that raised one or more rounds."""
    __tablename__ = "projects"

    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str = Field(index=True)
    logo: Optional[str] = None
    logo_alt_text: Optional[str] = None
    category: List[str] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False, default=list))
    links: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False, default=list))
    status: str = Field(default=ProjectStatus.APPROVED.value)
    meta_title: Optional[str] = None
    meta_image: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )
    updated_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )

    # Relationships
    rounds: List["Round"] = Relationship(back_populates="project")


class Round(SQLModel, table=True):
    """A funding round.

    Identity for deduplication is (project_id, type, date, amount); a new row is
    only written when no existing round matches all four exactly.
    """
    __tablename__ = "rounds"
    __table_args__ = (
        Index("idx_rounds_identity", "project_id", "type", "date", "amount"),
        Index("idx_rounds_latest", "date", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True)
    type: str
    date: datetime = Field(sa_column=Column(DateTime(), nullable=False))
    amount: str = "0"  # Decimal encoded as string
    created_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, index=True, default=utc_now_naive),
    )
    updated_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )

    # Relationships
    project: Project = Relationship(back_populates="rounds")
    investments: List["Investment"] = Relationship(back_populates="round")


class Investor(SQLModel, table=True):
    """A backer that appears on round investor lists."""
    __tablename__ = "investors"

    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str
    logo: Optional[str] = None
    logo_alt_text: Optional[str] = None
    links: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False, default=list))
    type: str = "Other Investor"
    status: str = Field(default=InvestorStatus.APPROVED.value)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_image: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )
    updated_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )

    # Relationships
    investments: List["Investment"] = Relationship(back_populates="investor")


class Investment(SQLModel, table=True):
    """Join table: which investors participated in which rounds."""
    __tablename__ = "investments"
    __table_args__ = (
        UniqueConstraint("round_id", "investor_id", name="uq_investments_round_investor"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    round_id: int = Field(foreign_key="rounds.id", index=True)
    investor_id: int = Field(foreign_key="investors.id", index=True)
    amount: str = "0"
    currency: str = Field(default=Currency.USD.value)
    invested_at: datetime = Field(sa_column=Column(DateTime(), nullable=False))
    created_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )
    updated_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )

    # Relationships
    round: Round = Relationship(back_populates="investments")
    investor: Investor = Relationship(back_populates="investments")


class InvestorScrapeCache(SQLModel, table=True):
    """Persistent cache of scraped investor profile pages.

    Profiles rarely change, so a scraped page is reused across cycles until
    ``expires_at`` (investor_cache_ttl_days after scraping).
    """
    __tablename__ = "investor_scrape_cache"

    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONType, nullable=False))
    scraped_at: datetime = Field(
        default_factory=utc_now_naive,
        sa_column=Column(DateTime(), nullable=False, default=utc_now_naive),
    )
    expires_at: datetime = Field(sa_column=Column(DateTime(), nullable=False, index=True))
