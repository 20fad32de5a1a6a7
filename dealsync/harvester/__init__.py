from .session import SessionCookie, SessionProvider, StaticSessionProvider, FileSessionProvider
from .deal_parser import DealRecord, InvestorRef, parse_deal_rows, INDIVIDUAL_INVESTORS_NAME
from .listing_fetcher import ListingPageFetcher
from .investor_scraper import InvestorProfile, InvestorProfileScraper, parse_investor_profile
from .investor_resolver import InvestorResolver, categorize_links, investor_type_for, resolve_investor_id
from .gap_detector import GapScan, StopMarker, SyncGapDetector, read_stop_marker
from .upserter import RecordOutcome, ReplayResult, ReplayUpserter, oldest_first
from .pipeline import CycleResult, DealSyncPipeline, DryRunReport, dry_run_check, run_cycle

__all__ = [
    "SessionCookie",
    "SessionProvider",
    "StaticSessionProvider",
    "FileSessionProvider",
    "DealRecord",
    "InvestorRef",
    "parse_deal_rows",
    "INDIVIDUAL_INVESTORS_NAME",
    "ListingPageFetcher",
    "InvestorProfile",
    "InvestorProfileScraper",
    "parse_investor_profile",
    "InvestorResolver",
    "categorize_links",
    "investor_type_for",
    "resolve_investor_id",
    "GapScan",
    "StopMarker",
    "SyncGapDetector",
    "read_stop_marker",
    "RecordOutcome",
    "ReplayResult",
    "ReplayUpserter",
    "oldest_first",
    "CycleResult",
    "DealSyncPipeline",
    "DryRunReport",
    "dry_run_check",
    "run_cycle",
]
