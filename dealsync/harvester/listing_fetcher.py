"""
Listing Page Fetcher - Playwright-driven retrieval of deal-flow pages.

Uses headless Chromium because the investor column is collapsed behind
client-side "more" toggles that only expand in a real browser.

- One browser per fetcher, one isolated context per page fetch (cookies are
  never shared between concurrent fetches)
- A semaphore bounds how many contexts are open at once
- Page-level retry with linear backoff; failures surface as PageFetchError
"""

import asyncio
import logging
from typing import Dict, Iterable, Optional, Union

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from ..common.errors import PageFetchError
from ..common.http_client import USER_AGENT_BROWSER
from ..common.retry import with_retry
from ..config.settings import settings
from .session import SessionProvider, session_provider_from_settings

logger = logging.getLogger(__name__)

# Click every collapsed investor list; returns how many were expanded
EXPAND_SCRIPT = """
(selector) => {
    const spans = document.querySelectorAll(selector);
    spans.forEach((s) => s.click());
    return spans.length;
}
"""

STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
    Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
"""


class ListingPageFetcher:
    """
    Fetches rendered listing pages.

    Usage:
        async with ListingPageFetcher() as fetcher:
            html = await fetcher.fetch_page(1)
    """

    def __init__(
        self,
        session_provider: Optional[SessionProvider] = None,
        base_url: Optional[str] = None,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.session_provider = session_provider or session_provider_from_settings()
        self.base_url = (base_url or settings.listing_base_url).rstrip("/")
        self.concurrency = concurrency or settings.concurrent_pages
        self.max_attempts = max_attempts or settings.page_fetch_retries
        self.retry_delay = retry_delay
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self):
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                '--disable-blink-features=AutomationControlled',
                '--disable-dev-shm-usage',
                '--no-sandbox',
                '--disable-setuid-sandbox',
                '--disable-background-timer-throttling',
                '--disable-renderer-backgrounding',
            ]
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._browser:
            try:
                await self._browser.close()
            except Exception:
                pass  # Browser may already be gone
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception:
                pass
        self._browser = None
        self._playwright = None

    def page_url(self, page_number: int) -> str:
        return f"{self.base_url}/{page_number}/"

    async def fetch_page(self, page_number: int) -> str:
        """
        Fetch one listing page, retrying transient failures.

        Raises:
            PageFetchError: After the retry budget is exhausted
        """
        return await with_retry(
            lambda: self._fetch_once(page_number),
            f"Fetch listing page {page_number}",
            max_attempts=self.max_attempts,
            base_delay=self.retry_delay,
        )

    async def fetch_pages(self, page_numbers: Iterable[int]) -> Dict[int, Union[str, Exception]]:
        """
        Fetch several pages concurrently.

        Returns:
            page number -> HTML, or the exception that page failed with,
            ordered by page number
        """
        numbers = sorted(set(page_numbers))
        results = await asyncio.gather(
            *(self.fetch_page(n) for n in numbers),
            return_exceptions=True,
        )
        return dict(zip(numbers, results))

    async def _fetch_once(self, page_number: int) -> str:
        if self._browser is None:
            raise RuntimeError("ListingPageFetcher used outside its async context")

        url = self.page_url(page_number)
        async with self._semaphore:
            context = await self._browser.new_context(
                viewport={'width': 1920, 'height': 1080},
                user_agent=USER_AGENT_BROWSER,
                java_script_enabled=True,
            )
            try:
                cookies = await self.session_provider.get_cookies()
                if cookies:
                    try:
                        await context.add_cookies([c.to_playwright() for c in cookies])
                    except PlaywrightError as e:
                        logger.warning(f"Cookie set warning for page {page_number}: {e}")

                page = await context.new_page()
                await page.add_init_script(STEALTH_SCRIPT)
                page.set_default_timeout(settings.page_timeout_ms)
                page.set_default_navigation_timeout(settings.page_timeout_ms)

                logger.info(f"Loading page {page_number}: {url}")
                await page.goto(url, wait_until='domcontentloaded', timeout=settings.page_timeout_ms)
                await page.wait_for_selector(
                    settings.listing_table_selector,
                    timeout=settings.wait_for_selector_timeout_ms,
                )

                expanded = await page.evaluate(EXPAND_SCRIPT, settings.expand_investors_selector)
                if expanded:
                    logger.debug(f"Page {page_number}: expanded {expanded} investor lists")
                    await page.wait_for_timeout(settings.expand_wait_ms)

                return await page.content()

            except PlaywrightError as e:
                raise PageFetchError(page_number, str(e).splitlines()[0] if str(e) else type(e).__name__) from e
            finally:
                try:
                    await context.close()
                except Exception:
                    pass  # Context may already be closed
