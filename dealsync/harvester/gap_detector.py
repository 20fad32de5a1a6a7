"""
Sync-Gap Detector - finds the listing records newer than local storage.

The newest persisted round (date desc, then creation time desc) names the
stop marker: its project's name. Listing pages are scanned from page 1 and
records are collected in page order until a record with that exact name
shows up. The marker record itself and everything after it are excluded.

Matching on the project name is the only signal the listing offers. A
project renamed upstream will never match, so the scan runs to the page
limit and collects far too much; that case is logged loudly.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..archivist import storage
from ..archivist.database import get_session, get_session_factory
from ..common.retry import with_retry
from ..config.settings import settings
from .deal_parser import DealRecord, parse_deal_rows

logger = logging.getLogger(__name__)


class PageSource(Protocol):
    async def fetch_pages(self, page_numbers: Sequence[int]) -> Dict[int, Union[str, Exception]]:
        ...


@dataclass
class StopMarker:
    project_name: str
    round_date: Optional[datetime] = None
    round_created_at: Optional[datetime] = None


@dataclass
class GapScan:
    """Outcome of one gap scan. ``records`` are newest-first, as scraped."""
    records: List[DealRecord] = field(default_factory=list)
    scanned_pages: int = 0
    stop_marker: Optional[StopMarker] = None
    found_marker: bool = False
    marker_page: Optional[int] = None
    failed_pages: List[int] = field(default_factory=list)
    hit_page_limit: bool = False
    cancelled: bool = False

    @property
    def is_synced(self) -> bool:
        return not self.records


async def read_stop_marker(session_factory: Optional[async_sessionmaker] = None) -> Optional[StopMarker]:
    """Project name of the most recently persisted round, or None on a fresh store."""

    async def load():
        async with get_session(session_factory) as session:
            return await storage.get_latest_round(session)

    latest = await with_retry(load, "Fetch latest round from DB")
    if latest is None:
        return None
    return StopMarker(
        project_name=latest.project_name,
        round_date=latest.date,
        round_created_at=latest.created_at,
    )


class SyncGapDetector:
    """
    Scans listing pages front to back until the stop marker appears.

    Pages are requested in groups of ``concurrency`` and evaluated strictly in
    page order, so a group that contains the stop page simply drops whatever
    was fetched past it.
    """

    def __init__(
        self,
        fetcher: PageSource,
        session_factory: Optional[async_sessionmaker] = None,
        max_pages: Optional[int] = None,
        first_run_pages: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        self.fetcher = fetcher
        self.session_factory = session_factory or get_session_factory()
        self.max_pages = max_pages or settings.vc_updater_max_pages
        self.first_run_pages = first_run_pages or settings.vc_updater_stop_after
        self.concurrency = concurrency or settings.concurrent_pages

    async def find_new_records(
        self,
        max_pages: Optional[int] = None,
        stop_signal: Optional[asyncio.Event] = None,
    ) -> GapScan:
        """
        Collect every listing record newer than the stop marker.

        Args:
            max_pages: Override for the safety page limit
            stop_signal: When set, the scan stops before the next page group

        Returns:
            GapScan with records in scraped (newest-first) order
        """
        page_limit = max_pages or self.max_pages
        marker = await read_stop_marker(self.session_factory)
        scan = GapScan(stop_marker=marker)

        if marker is None:
            page_limit = min(page_limit, self.first_run_pages)
            logger.info(f"No rounds in DB yet, first run will scan at most {page_limit} pages")
        else:
            logger.info(f"Latest deal in DB: {marker.project_name!r}")

        page = 1
        while page <= page_limit and not scan.found_marker:
            if stop_signal is not None and stop_signal.is_set():
                logger.warning(f"Gap scan cancelled before page {page}")
                scan.cancelled = True
                break

            group = list(range(page, min(page + self.concurrency, page_limit + 1)))
            results = await self.fetcher.fetch_pages(group)

            for page_number in group:
                outcome = results.get(page_number)
                if isinstance(outcome, Exception) or outcome is None:
                    logger.error(f"Failed to scrape page {page_number}, skipping: {outcome}")
                    scan.failed_pages.append(page_number)
                    continue

                scan.scanned_pages += 1
                if self._collect_page(scan, parse_deal_rows(outcome, page_number), page_number):
                    break

            page = group[-1] + 1

        if marker is not None and not scan.found_marker and not scan.cancelled:
            scan.hit_page_limit = True
            logger.warning(
                f"Did not find latest project {marker.project_name!r} in the first {page_limit} pages. "
                f"Local state may be more than {page_limit} pages behind, or the project was renamed upstream."
            )

        logger.info(f"Collected {len(scan.records)} new records from {scan.scanned_pages} pages")
        return scan

    @staticmethod
    def _collect_page(scan: GapScan, records: List[DealRecord], page_number: int) -> bool:
        """Append records up to the stop marker. Returns True once the marker is found."""
        marker_name = scan.stop_marker.project_name if scan.stop_marker else None
        for record in records:
            if marker_name is not None and record.project_name == marker_name:
                logger.info(f"Found latest project {marker_name!r} on page {page_number}, stopping scan")
                scan.found_marker = True
                scan.marker_page = page_number
                return True
            scan.records.append(record)
        return False
