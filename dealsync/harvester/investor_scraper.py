"""
Investor profile scraper with two cache layers.

Profile pages are plain server-rendered HTML, so httpx is enough (no browser).
Lookups go in-process dict -> investor_scrape_cache table -> network, and a
network hit is written back to both layers with a multi-day expiry.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx
from bs4 import BeautifulSoup
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..archivist import storage
from ..archivist.database import get_session, get_session_factory
from ..common.dates import utc_now_naive
from ..common.http_client import create_scraper_client
from ..common.retry import with_retry
from ..config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class InvestorProfile:
    """Display data scraped from an investor's profile page."""
    slug: str
    name: str = ""
    logo_url: Optional[str] = None
    profile_url: str = ""
    social_links: List[Dict[str, str]] = field(default_factory=list)  # [{"url", "title"}]
    invested_projects: str = ""
    scraped_at: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InvestorProfile":
        known = {k: payload[k] for k in cls.__dataclass_fields__ if k in payload}
        return cls(**known)

    @property
    def is_useful(self) -> bool:
        return bool(self.name or self.logo_url)


def parse_investor_profile(html: str, slug: str, profile_url: str = "") -> InvestorProfile:
    """
    Parse a fund profile page.

    Layout: the display name is the second <p> inside .fname, the logo is the
    <img> in .fundlogoblock, social links are .fweb a.fundlink and the
    invested-project count is the first .fprojc span.pcount.
    """
    soup = BeautifulSoup(html, "lxml")

    name = ""
    name_block = soup.select_one(".fname")
    if name_block is not None:
        paragraphs = name_block.find_all("p")
        if len(paragraphs) > 1:
            name = paragraphs[1].get_text(strip=True)

    logo_el = soup.select_one(".fundlogoblock img")
    logo_url = (logo_el.get("src") or None) if logo_el is not None else None

    social_links = []
    for link in soup.select(".fweb a.fundlink"):
        href = (link.get("href") or "").strip()
        if href:
            social_links.append({"url": href, "title": (link.get("title") or href).strip()})

    count_el = soup.select_one(".fprojc span.pcount")

    return InvestorProfile(
        slug=slug,
        name=name,
        logo_url=logo_url,
        profile_url=profile_url,
        social_links=social_links,
        invested_projects=count_el.get_text(strip=True) if count_el is not None else "",
        scraped_at=utc_now_naive().isoformat(),
    )


class InvestorProfileScraper:
    """
    Scrapes investor profile pages by URL slug.

    Usage:
        async with InvestorProfileScraper() as scraper:
            profiles = await scraper.scrape_many(["coinbase-ventures", "a16z-crypto"])
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        ttl_days: Optional[int] = None,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.base_url = (base_url or settings.investor_base_url).rstrip("/")
        self.ttl_days = ttl_days if ttl_days is not None else settings.investor_cache_ttl_days
        self.concurrency = concurrency or settings.investor_scrape_concurrency
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._client = client
        self._owns_client = client is None
        self._memory: Dict[str, InvestorProfile] = {}

    async def __aenter__(self):
        if self._client is None:
            self._client = create_scraper_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def profile_url(self, slug: str) -> str:
        return f"{self.base_url}/{slug}/"

    async def scrape(self, slug: str) -> Optional[InvestorProfile]:
        """Return the profile for a slug, or None if it could not be obtained."""
        if slug in self._memory:
            return self._memory[slug]

        cached = await self._load_cached(slug)
        if cached is not None:
            self._memory[slug] = cached
            return cached

        try:
            html = await with_retry(
                lambda: self._fetch(slug),
                f"Fetch investor profile {slug}",
                max_attempts=self.max_attempts,
                base_delay=self.retry_delay,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Could not scrape investor {slug}: {e}")
            return None

        profile = parse_investor_profile(html, slug, self.profile_url(slug))
        if not profile.is_useful:
            logger.warning(f"Investor page for {slug} had no name or logo")
            return None

        self._memory[slug] = profile
        await self._store_cached(profile)
        return profile

    async def scrape_many(self, slugs: Iterable[str]) -> Dict[str, InvestorProfile]:
        """Scrape several slugs with bounded concurrency. Missing profiles are omitted."""
        unique_slugs = list(dict.fromkeys(s for s in slugs if s))
        if not unique_slugs:
            return {}

        semaphore = asyncio.Semaphore(self.concurrency)

        async def scrape_one(slug: str):
            async with semaphore:
                return slug, await self.scrape(slug)

        results = await asyncio.gather(*(scrape_one(s) for s in unique_slugs), return_exceptions=True)

        profiles = {}
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Investor scrape failed: {result}", exc_info=result)
                continue
            slug, profile = result
            if profile is not None:
                profiles[slug] = profile

        logger.info(f"Pre-scraped {len(profiles)}/{len(unique_slugs)} missing investors")
        return profiles

    async def purge_expired(self) -> int:
        async with get_session(self.session_factory) as session:
            removed = await storage.purge_expired_profiles(session)
        if removed:
            logger.info(f"Purged {removed} expired investor cache entries")
        return removed

    async def _fetch(self, slug: str) -> str:
        if self._client is None:
            raise RuntimeError("InvestorProfileScraper used outside its async context")
        logger.info(f"Scraping investor: {slug}")
        response = await self._client.get(self.profile_url(slug))
        response.raise_for_status()
        return response.text

    async def _load_cached(self, slug: str) -> Optional[InvestorProfile]:
        try:
            async with get_session(self.session_factory) as session:
                payload = await storage.get_cached_investor_profile(session, slug)
        except Exception as e:
            logger.warning(f"Investor cache read failed for {slug}: {e}")
            return None
        return InvestorProfile.from_payload(payload) if payload else None

    async def _store_cached(self, profile: InvestorProfile) -> None:
        try:
            async with get_session(self.session_factory) as session:
                await storage.store_investor_profile(session, profile.slug, profile.to_payload(), self.ttl_days)
        except Exception as e:
            logger.warning(f"Investor cache write failed for {profile.slug}: {e}")
