"""
Common utilities and shared modules.
"""

from .dates import parse_deal_date, utc_now_naive
from .errors import DealSyncError, PageFetchError, SlugExhaustedError, UnparseableDateError
from .http_client import create_scraper_client, USER_AGENT_BROWSER
from .retry import is_retryable_error, with_retry
from .slugs import CandidateSlugSet, slugify, suffixed_slug, url_tail_slug

__all__ = [
    # Dates
    "parse_deal_date",
    "utc_now_naive",
    # Errors
    "DealSyncError",
    "PageFetchError",
    "SlugExhaustedError",
    "UnparseableDateError",
    # HTTP client utilities
    "create_scraper_client",
    "USER_AGENT_BROWSER",
    # Retry
    "is_retryable_error",
    "with_retry",
    # Slugs
    "CandidateSlugSet",
    "slugify",
    "suffixed_slug",
    "url_tail_slug",
]
