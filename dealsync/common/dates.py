"""
Loose date parsing for round dates shown on the deal-flow listing.

The listing shows dates as "Oct 2025", "31 Oct 2025" and occasionally ISO
strings. All results are timezone-naive UTC datetimes, matching the
TIMESTAMP WITHOUT TIME ZONE columns they are stored in.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as date_parser

from .errors import UnparseableDateError

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

MONTH_YEAR_PATTERN = re.compile(r"^([A-Za-z]+)\.?\s+(\d{4})$")
DAY_MONTH_YEAR_PATTERN = re.compile(r"^(\d{1,2})\s+([A-Za-z]+)\.?\s+(\d{4})$")


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_deal_date(text: Optional[str], strict: bool = False, now: Optional[datetime] = None) -> datetime:
    """
    Normalize a listing date to a naive UTC datetime.

    "Oct 2025" maps to the first of the month, "31 Oct 2025" to that day, and
    anything else goes through dateutil. When nothing works the current time
    is returned with a warning, which silently moves the round to "today";
    pass ``strict=True`` to raise ``UnparseableDateError`` instead.

    Args:
        text: Date text as shown on the listing
        strict: Raise instead of falling back to the current time
        now: Fallback timestamp (defaults to the current UTC time)

    Returns:
        Naive datetime in UTC
    """
    date_str = (text or "").strip()

    parsed = _parse_listing_format(date_str)
    if parsed is None and date_str and not _looks_like_listing_format(date_str):
        parsed = _parse_freeform(date_str)

    if parsed is not None:
        logger.debug(f"Parsed date {date_str!r} -> {parsed.isoformat()}")
        return parsed

    if strict:
        raise UnparseableDateError(date_str)

    fallback = now or utc_now_naive()
    logger.warning(f"Could not parse date {date_str!r}, using current date {fallback.isoformat()}")
    return fallback


def _looks_like_listing_format(date_str: str) -> bool:
    return bool(MONTH_YEAR_PATTERN.match(date_str) or DAY_MONTH_YEAR_PATTERN.match(date_str))


def _parse_listing_format(date_str: str) -> Optional[datetime]:
    match = MONTH_YEAR_PATTERN.match(date_str)
    if match:
        month = MONTHS.get(match.group(1).lower())
        if month is None:
            logger.warning(f"Unknown month {match.group(1)!r} in date {date_str!r}")
            return None
        return datetime(int(match.group(2)), month, 1)

    match = DAY_MONTH_YEAR_PATTERN.match(date_str)
    if match:
        month = MONTHS.get(match.group(2).lower())
        if month is None:
            logger.warning(f"Unknown month {match.group(2)!r} in date {date_str!r}")
            return None
        try:
            return datetime(int(match.group(3)), month, int(match.group(1)))
        except ValueError:
            logger.warning(f"Day out of range in date {date_str!r}")
            return None

    return None


def _parse_freeform(date_str: str) -> Optional[datetime]:
    try:
        parsed = date_parser.parse(date_str)
    except (ValueError, OverflowError, TypeError):
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
