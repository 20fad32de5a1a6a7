"""
Deal Row Parser - turns one listing page into DealRecord objects.

Pure and synchronous: markup in, records out, in document order (newest
deal first). A malformed row is logged and skipped; it never aborts the page.

Listing row layout:
    .hpt-col1                  rank
    .hpt-col2 a.t-project-link project link, .cointitle name, .cointextbadge logo
    .hpt-col3 / .hpt-col4      round, date, raised, FDV, tradable (in order)
    .hpt-col5 .catitem         categories
    .hpt-col6 a[href*=/funds/] investors; .individuals marks anonymous angels
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from ..common.slugs import CandidateSlugSet
from ..config.settings import settings

logger = logging.getLogger(__name__)

INDIVIDUAL_INVESTORS_NAME = "Individual investors"

BACKGROUND_IMAGE_PATTERN = re.compile(
    r"background-image\s*:\s*url\(\s*(['\"]?)(.*?)\1\s*\)", re.IGNORECASE
)


@dataclass(frozen=True)
class InvestorRef:
    """An investor as referenced from a listing row."""
    name: str = ""
    url: str = ""

    @property
    def slugs(self) -> CandidateSlugSet:
        return CandidateSlugSet.from_reference(self.name, self.url)


@dataclass
class DealRecord:
    """One row of the deal-flow listing. Never persisted verbatim."""
    page: int
    rank: str
    project_name: str
    project_url: str = ""
    logo_url: str = ""
    round_type: str = ""
    date_text: str = ""
    raised_amount: Optional[int] = None
    fdv: Optional[int] = None
    tradable: str = ""
    categories: List[str] = field(default_factory=list)
    investor_refs: List[InvestorRef] = field(default_factory=list)


def parse_deal_rows(html: str, page_number: int, row_selector: Optional[str] = None) -> List[DealRecord]:
    """
    Parse a listing page into deal records.

    Args:
        html: Rendered listing markup
        page_number: Page the markup came from (stored on each record)
        row_selector: CSS selector for deal rows (default: settings.listing_row_selector)

    Returns:
        Records in document order
    """
    soup = BeautifulSoup(html, "lxml")
    records = []

    for index, row in enumerate(soup.select(row_selector or settings.listing_row_selector)):
        try:
            records.append(parse_deal_row(row, page_number))
        except (ValueError, AttributeError, IndexError, TypeError) as e:
            logger.warning(f"Skipping malformed row {index + 1} on page {page_number}: {e}")

    logger.info(f"Page {page_number} parsed: {len(records)} records")
    return records


def parse_deal_row(row: Tag, page_number: int) -> DealRecord:
    """Parse a single listing row. Raises ValueError if the row has no project name."""
    rank = _text(row.select_one(".hpt-col1"))

    project_link = row.select_one(".hpt-col2 a.t-project-link")
    if project_link is None:
        raise ValueError("row has no project link")

    project_name = _text(project_link.select_one(".cointitle"))
    if not project_name:
        raise ValueError("row has no project name")

    cols = row.select(".hpt-col3, .hpt-col4")

    return DealRecord(
        page=page_number,
        rank=rank,
        project_name=project_name,
        project_url=project_link.get("href") or "",
        logo_url=_background_image(project_link.select_one(".cointextbadge")),
        round_type=_text(_nth(cols, 0)),
        date_text=_text(_nth(cols, 1)),
        raised_amount=_numeric(_nth(cols, 2)),
        fdv=_numeric(_nth(cols, 3)),
        tradable=_text(_nth(cols, 4)),
        categories=[c for c in (_text(el) for el in row.select(".hpt-col5 .catitem")) if c],
        investor_refs=_investor_refs(row),
    )


def _investor_refs(row: Tag) -> List[InvestorRef]:
    refs = []
    for link in row.select('.hpt-col6 a[href*="/funds/"]'):
        name = (link.get("title") or link.get_text(strip=True) or "").strip()
        url = (link.get("href") or "").strip()
        if name or url:
            refs.append(InvestorRef(name=name, url=url))

    if row.select_one(".hpt-col6 .individuals"):
        refs.append(InvestorRef(name=INDIVIDUAL_INVESTORS_NAME))

    return refs


def _nth(elements: List[Tag], index: int) -> Optional[Tag]:
    return elements[index] if index < len(elements) else None


def _text(element: Optional[Tag]) -> str:
    return element.get_text(strip=True) if element is not None else ""


def _numeric(column: Optional[Tag]) -> Optional[int]:
    """Read the machine-readable amount from .abbrusd.numeric[data-numeric]."""
    if column is None:
        return None
    el = column.select_one(".abbrusd.numeric")
    raw = (el.get("data-numeric") or "").strip() if el is not None else ""
    if not raw:
        return None
    try:
        return int(float(raw))
    except ValueError:
        logger.debug(f"Non-numeric amount {raw!r}")
        return None


def _background_image(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    match = BACKGROUND_IMAGE_PATTERN.search(element.get("style") or "")
    return match.group(2).strip() if match else ""
