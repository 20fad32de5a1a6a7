"""
Shared HTTP Client Configuration.

Provides standardized HTTP client creation and User-Agent strings for the
investor profile scraper and the Playwright listing fetcher.

Usage:
    from dealsync.common.http_client import create_scraper_client, USER_AGENT_BROWSER

    async with create_scraper_client() as client:
        response = await client.get(url)
"""

import httpx
from typing import Optional

from ..config.settings import settings


# =============================================================================
# User-Agent Constants
# =============================================================================

# The deal-flow source serves a challenge page to obvious bots
USER_AGENT_BROWSER = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


# =============================================================================
# HTTP Client Factory
# =============================================================================

def create_scraper_client(
    user_agent: str = USER_AGENT_BROWSER,
    timeout: Optional[float] = None,
    max_connections: int = 20,
    max_keepalive: int = 10,
    extra_headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create a standardized async HTTP client for scraping.

    Args:
        user_agent: User-Agent string
        timeout: Request timeout in seconds (default: settings.request_timeout)
        max_connections: Maximum concurrent connections
        max_keepalive: Maximum keepalive connections
        extra_headers: Additional headers to include
        transport: Custom transport (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    headers = {"User-Agent": user_agent, **BROWSER_HEADERS}
    if extra_headers:
        headers.update(extra_headers)

    return httpx.AsyncClient(
        timeout=timeout or settings.request_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
        follow_redirects=True,
        transport=transport,
    )
