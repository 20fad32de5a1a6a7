"""
Sync cycle orchestration.

One cycle:
1. Gap scan: fetch listing pages until the newest stored deal shows up
2. Reverse to oldest-first and apply the optional record limit
3. Resolve every investor reference (scrape + create missing ones)
4. Replay the records one transaction at a time

``dry_run`` performs step 1 plus a read-only investor check and reports what
a real cycle would write.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..archivist.database import get_session_factory
from ..config.settings import settings
from .deal_parser import DealRecord, InvestorRef
from .gap_detector import GapScan, PageSource, StopMarker, SyncGapDetector, read_stop_marker
from .investor_resolver import InvestorResolver, ProfileSource
from .investor_scraper import InvestorProfileScraper
from .listing_fetcher import ListingPageFetcher
from .upserter import ReplayUpserter, oldest_first

logger = logging.getLogger(__name__)


def new_cycle_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


@dataclass
class CycleResult:
    """Counts reported by one sync cycle."""
    cycle_id: str
    created: int = 0
    skipped: int = 0
    failed: int = 0
    new_records: int = 0
    processed: int = 0
    scanned_pages: int = 0
    failed_pages: List[int] = field(default_factory=list)
    investors_created: int = 0
    duration: float = 0.0

    @property
    def synced(self) -> bool:
        return self.new_records == 0

    def summary(self) -> str:
        return (
            f"created {self.created}/{self.new_records} new records "
            f"(skipped {self.skipped}, failed {self.failed}), "
            f"scanned {self.scanned_pages} pages in {self.duration:.1f}s"
        )


@dataclass
class InvestorCheck:
    name: str
    slug: str
    existing_name: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.existing_name is not None


@dataclass
class DryRunReport:
    """What a real cycle would do, computed without writing anything."""
    stop_marker: Optional[StopMarker] = None
    scan: Optional[GapScan] = None
    insertion_order: List[DealRecord] = field(default_factory=list)
    investor_checks: List[List[InvestorCheck]] = field(default_factory=list)
    limit: Optional[int] = None

    @property
    def fresh_import(self) -> bool:
        return self.stop_marker is None

    @property
    def fully_synced(self) -> bool:
        return self.scan is not None and self.scan.is_synced

    def render(self) -> str:
        lines = ["========== DRY RUN =========="]
        if self.fresh_import:
            lines.append("No rounds found in database. This would be a fresh import.")
            return "\n".join(lines)

        marker = self.stop_marker
        lines.append(f"Latest deal in DB: {marker.project_name!r}")
        lines.append(f"  Round date: {marker.round_date.isoformat() if marker.round_date else 'N/A'}")
        lines.append(f"  Round created: {marker.round_created_at.isoformat() if marker.round_created_at else 'N/A'}")

        scan = self.scan
        if scan.hit_page_limit and scan.records:
            lines.append(
                f"Did not find latest project {marker.project_name!r} in first {scan.scanned_pages} pages. "
                "You may be significantly behind or the project name changed."
            )
        if scan.failed_pages:
            lines.append(f"Pages that could not be scraped: {', '.join(str(p) for p in scan.failed_pages)}")

        if self.fully_synced:
            lines.append("========== FULLY SYNCED ==========")
            lines.append("Your database is up to date with the latest deals.")
            return "\n".join(lines)

        lines.append("========== SYNC STATUS ==========")
        lines.append(f"Projects behind: {len(scan.records)}")
        lines.append(f"Pages scanned: {scan.scanned_pages}")
        lines.append("")
        lines.append("New projects found (in scraped order):")
        for index, record in enumerate(scan.records, start=1):
            lines.extend(_describe_record(index, record))

        lines.append("")
        lines.append("========== INSERTION ORDER (REVERSED) ==========")
        if self.limit is not None and len(scan.records) > len(self.insertion_order):
            lines.append(f"LIMIT MODE: showing only first {len(self.insertion_order)} of {len(scan.records)} records")
        for step, (record, checks) in enumerate(zip(self.insertion_order, self.investor_checks), start=1):
            lines.append(f"Step {step}: Insert {record.project_name!r}")
            lines.append(f"  Round: {record.round_type or 'N/A'} on {record.date_text or 'N/A'}")
            lines.append(f"  Amount: {_money(record.raised_amount)}")
            lines.append(f"  Investors ({len(checks)}):")
            for check in checks:
                if check.exists:
                    lines.append(f"    {check.existing_name} (slug: {check.slug}) - EXISTS")
                else:
                    lines.append(f"    {check.name or 'Unknown'} (slug: {check.slug}) - WILL BE CREATED")
        lines.append("Dry run complete. Run without --dry-run to apply changes.")
        return "\n".join(lines)


def _money(amount: Optional[int]) -> str:
    return f"${amount:,}" if amount is not None else "N/A"


def _describe_record(index: int, record: DealRecord) -> List[str]:
    names = [ref.name for ref in record.investor_refs]
    shown = ", ".join(names[:5]) + ("..." if len(names) > 5 else "")
    return [
        f"{index}. {record.project_name}",
        f"   Round: {record.round_type or 'N/A'} | Date: {record.date_text or 'N/A'} | Raised: {_money(record.raised_amount)}",
        f"   Categories: {', '.join(record.categories) or 'None'}",
        f"   Investors ({len(names)}): {shown}",
    ]


def _all_refs(records: List[DealRecord]) -> List[InvestorRef]:
    return [ref for record in records for ref in record.investor_refs]


class DealSyncPipeline:
    """Wires the detector, resolver and upserter for one data source."""

    def __init__(
        self,
        fetcher: PageSource,
        session_factory: Optional[async_sessionmaker] = None,
        profile_source: Optional[ProfileSource] = None,
        max_pages: Optional[int] = None,
        first_run_pages: Optional[int] = None,
        strict_dates: Optional[bool] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.detector = SyncGapDetector(
            fetcher,
            session_factory=self.session_factory,
            max_pages=max_pages,
            first_run_pages=first_run_pages,
        )
        self.resolver = InvestorResolver(self.session_factory, profile_source)
        self.upserter = ReplayUpserter(self.session_factory, strict_dates=strict_dates)

    async def run_cycle(self, limit: Optional[int] = None, stop_signal=None) -> CycleResult:
        """
        Run one detect -> resolve -> replay cycle.

        Args:
            limit: Process at most this many (oldest) new records
            stop_signal: asyncio.Event that cancels the gap scan early

        Returns:
            CycleResult with created/skipped/failed counts
        """
        cycle_id = new_cycle_id()
        started = time.monotonic()
        result = CycleResult(cycle_id=cycle_id)
        logger.info(f"[{cycle_id}] Updater cycle started")

        scan = await self.detector.find_new_records(stop_signal=stop_signal)
        result.new_records = len(scan.records)
        result.scanned_pages = scan.scanned_pages
        result.failed_pages = list(scan.failed_pages)

        if scan.is_synced:
            logger.info(f"[{cycle_id}] Fully synced: no new deals since {self._marker_name(scan)!r}")
            result.duration = time.monotonic() - started
            return result

        records = oldest_first(scan.records, limit)
        logger.info(f"[{cycle_id}] Processing {len(records)} records in reverse order (oldest first)")

        investor_map = await self.resolver.resolve(_all_refs(records))
        result.investors_created = self.resolver.stats.created
        logger.info(f"[{cycle_id}] All investors ready: {len(investor_map)} slug mappings")

        replay = await self.upserter.replay(records, investor_map)
        result.created = replay.created
        result.skipped = replay.skipped
        result.failed = replay.failed
        result.processed = replay.processed
        result.duration = time.monotonic() - started

        logger.info(f"[{cycle_id}] Cycle complete: {result.summary()}")
        return result

    async def dry_run(self, limit: Optional[int] = None) -> DryRunReport:
        """Gap scan plus a read-only investor check; nothing is written."""
        marker = await read_stop_marker(self.session_factory)
        report = DryRunReport(stop_marker=marker, limit=limit)
        if marker is None:
            return report

        report.scan = await self.detector.find_new_records()
        if report.scan.is_synced:
            return report

        report.insertion_order = oldest_first(report.scan.records, limit)
        existing = await self.resolver.find_existing(_all_refs(report.insertion_order))
        logger.info(
            f"Pre-check: {len(existing)} of the referenced investor slugs already in DB"
        )
        for record in report.insertion_order:
            report.investor_checks.append([self._check(ref, existing) for ref in record.investor_refs])
        return report

    @staticmethod
    def _check(ref: InvestorRef, existing) -> InvestorCheck:
        slugs = ref.slugs
        for slug in slugs.lookup_order:
            if slug in existing:
                return InvestorCheck(name=ref.name, slug=slug, existing_name=existing[slug][1])
        return InvestorCheck(name=ref.name, slug=slugs.base)

    @staticmethod
    def _marker_name(scan: GapScan) -> str:
        return scan.stop_marker.project_name if scan.stop_marker else ""


async def run_cycle(
    limit: Optional[int] = None,
    max_pages: Optional[int] = None,
    stop_signal=None,
) -> CycleResult:
    """Run one cycle against the live source with the configured settings."""
    async with ListingPageFetcher() as fetcher, InvestorProfileScraper() as scraper:
        pipeline = DealSyncPipeline(
            fetcher,
            profile_source=scraper,
            max_pages=max_pages or settings.vc_updater_max_pages,
        )
        result = await pipeline.run_cycle(limit=limit, stop_signal=stop_signal)
        try:
            await scraper.purge_expired()
        except Exception as e:
            logger.warning(f"Investor cache purge failed: {e}")
        return result


async def dry_run_check(limit: Optional[int] = None, max_pages: Optional[int] = None) -> DryRunReport:
    """Report the sync gap against the live source without writing."""
    async with ListingPageFetcher() as fetcher:
        pipeline = DealSyncPipeline(fetcher, max_pages=max_pages or settings.vc_updater_max_pages)
        report = await pipeline.dry_run(limit=limit)
    logger.info("\n" + report.render())
    return report
