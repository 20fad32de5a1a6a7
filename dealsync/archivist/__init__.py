"""Database models and storage utilities."""

from .models import (
    Project,
    Round,
    Investor,
    Investment,
    InvestorScrapeCache,
    ProjectStatus,
    InvestorStatus,
    Currency,
)
from .database import configure_database, get_session, get_session_factory, init_db, close_db
from .storage import LatestRound, get_latest_round, get_or_create_project, get_or_create_round

__all__ = [
    "Project",
    "Round",
    "Investor",
    "Investment",
    "InvestorScrapeCache",
    "ProjectStatus",
    "InvestorStatus",
    "Currency",
    "configure_database",
    "get_session",
    "get_session_factory",
    "init_db",
    "close_db",
    "LatestRound",
    "get_latest_round",
    "get_or_create_project",
    "get_or_create_round",
]
