"""
Investor Resolver - builds a complete reference -> investor id map before any
deal is written.

Steps (all outside the per-record transactions):
1. Group references by base slug, collecting every candidate slug variant
2. One batch query for all variants; a hit maps the whole group
3. Scrape profiles for groups still missing (cached), then create them under
   a unique slug and map every variant to the new id

After ``resolve()`` the replay upserter never has to look up, scrape or
create an investor inside a transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..archivist import storage
from ..archivist.database import get_session, get_session_factory
from ..archivist.models import InvestorStatus
from ..common.errors import SlugExhaustedError
from ..common.retry import with_retry
from ..common.slugs import suffixed_slug
from ..config.settings import settings
from .deal_parser import InvestorRef
from .investor_scraper import InvestorProfile

logger = logging.getLogger(__name__)

InvestorIdMap = Dict[str, int]


class ProfileSource(Protocol):
    async def scrape_many(self, slugs: Iterable[str]) -> Dict[str, InvestorProfile]:
        ...


def investor_type_for(name: str) -> str:
    """Categorize an investor from its name."""
    lowered = (name or "").lower()
    if "vc" in lowered or "venture" in lowered or "capital" in lowered:
        return "Venture Capitalist"
    if "angel" in lowered:
        return "Angel Investor"
    return "Other Investor"


def categorize_links(links: Iterable[Dict[str, str]]) -> List[Dict[str, str]]:
    """Type social links scraped from a profile page."""
    categorized = []
    for link in links:
        url = (link.get("url") or "").strip()
        if not url:
            continue
        lowered = url.lower()
        if "twitter" in lowered or "x.com/" in lowered:
            link_type = "twitter"
        elif "facebook" in lowered:
            link_type = "facebook"
        elif "telegram" in lowered or "t.me/" in lowered:
            link_type = "telegram"
        elif "linkedin" in lowered:
            link_type = "linkedin"
        else:
            link_type = "website"
        categorized.append({"type": link_type, "url": url})
    return categorized


def resolve_investor_id(investor_map: InvestorIdMap, ref: InvestorRef) -> Optional[int]:
    """Look a reference up in a resolved map, trying its slugs in precedence order."""
    for slug in ref.slugs.lookup_order:
        if slug in investor_map:
            return investor_map[slug]
    return None


@dataclass
class SlugGroup:
    """All references that share one base slug."""
    base: str
    variants: Set[str] = field(default_factory=set)
    refs: List[InvestorRef] = field(default_factory=list)

    @property
    def url_slugs(self) -> List[str]:
        return sorted({r.slugs.url_slug for r in self.refs if r.slugs.url_slug})

    @property
    def display_name(self) -> str:
        for ref in self.refs:
            if ref.name:
                return ref.name
        return self.url_slugs[0] if self.url_slugs else self.base


def build_slug_groups(refs: Iterable[InvestorRef]) -> Dict[str, SlugGroup]:
    """Group references by base slug, preserving first-seen order."""
    groups: Dict[str, SlugGroup] = {}
    for ref in refs:
        candidates = ref.slugs
        if not candidates:
            continue
        group = groups.setdefault(candidates.base, SlugGroup(base=candidates.base))
        group.variants.update(candidates.variants)
        group.refs.append(ref)
    return groups


@dataclass
class ResolutionStats:
    references: int = 0
    existing: int = 0
    scraped: int = 0
    created: int = 0
    failed: int = 0


class InvestorResolver:
    """Resolves investor references to ids, creating missing investors."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        profile_source: Optional[ProfileSource] = None,
        max_slug_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.profile_source = profile_source
        self.max_slug_attempts = max_slug_attempts if max_slug_attempts is not None else settings.max_slug_attempts
        self.stats = ResolutionStats()

    async def find_existing(self, refs: Iterable[InvestorRef]) -> Dict[str, Tuple[int, str]]:
        """Batch lookup of every candidate slug. Returns slug -> (id, name)."""
        all_slugs = {slug for ref in refs for slug in ref.slugs.variants}
        if not all_slugs:
            return {}

        async def lookup():
            async with get_session(self.session_factory) as session:
                return await storage.find_investors_by_slugs(session, all_slugs)

        return await with_retry(lookup, "Fetch existing investors")

    async def resolve(self, refs: Sequence[InvestorRef]) -> InvestorIdMap:
        """
        Map every slug variant of every reference to an investor id.

        Args:
            refs: Investor references gathered from all records in the batch

        Returns:
            slug variant -> investor id. References whose investor could not
            be created are absent.
        """
        self.stats = ResolutionStats()
        groups = build_slug_groups(refs)
        self.stats.references = sum(len(g.variants) for g in groups.values())
        logger.info(f"Total unique investor references: {len(groups)} ({self.stats.references} slug variants)")

        investor_map: InvestorIdMap = {}
        if not groups:
            return investor_map

        existing = await self.find_existing(refs)
        for slug, (investor_id, _name) in existing.items():
            investor_map[slug] = investor_id
        for group in groups.values():
            matched_id = self._matched_id(group, investor_map)
            if matched_id is not None:
                self._map_group(group, matched_id, investor_map)

        missing = [g for g in groups.values() if self._matched_id(g, investor_map) is None]
        self.stats.existing = len(groups) - len(missing)
        logger.info(f"Investors check: {self.stats.existing}/{len(groups)} already in DB")

        if not missing:
            logger.info("All investors already exist in DB, no scraping needed")
            return investor_map

        profiles = await self._scrape_profiles(missing)
        self.stats.scraped = len(profiles)

        logger.info(f"Creating {len(missing)} missing investors...")
        for group in missing:
            # An earlier creation in this batch may already cover a shared URL slug
            matched_id = self._matched_id(group, investor_map)
            if matched_id is not None:
                self._map_group(group, matched_id, investor_map)
                continue

            profile = next((profiles[s] for s in group.url_slugs if s in profiles), None)
            investor_id = await self._create_investor(group, profile, investor_map)
            if investor_id is None:
                self.stats.failed += 1
                continue
            self.stats.created += 1

        logger.info(
            f"Investor map ready: {len(investor_map)} slug->ID mappings "
            f"({self.stats.created} created, {self.stats.failed} failed)"
        )
        return investor_map

    @staticmethod
    def _matched_id(group: SlugGroup, investor_map: InvestorIdMap) -> Optional[int]:
        for variant in sorted(group.variants):
            if variant in investor_map:
                return investor_map[variant]
        return None

    @staticmethod
    def _map_group(group: SlugGroup, investor_id: int, investor_map: InvestorIdMap) -> None:
        for variant in group.variants:
            investor_map.setdefault(variant, investor_id)

    async def _scrape_profiles(self, groups: List[SlugGroup]) -> Dict[str, InvestorProfile]:
        if self.profile_source is None:
            return {}
        url_slugs = [slug for group in groups for slug in group.url_slugs]
        if not url_slugs:
            return {}
        logger.info(f"Pre-scraping {len(url_slugs)} missing investors...")
        return await self.profile_source.scrape_many(url_slugs)

    async def _create_investor(
        self,
        group: SlugGroup,
        profile: Optional[InvestorProfile],
        investor_map: InvestorIdMap,
    ) -> Optional[int]:
        safe_name = ((profile.name if profile else "") or group.display_name).strip()
        logo = profile.logo_url if profile else None
        links = categorize_links(profile.social_links) if profile else []

        async def create():
            async with get_session(self.session_factory) as session:
                slug = await self._unique_slug(session, group.base, investor_map)
                investor = await storage.create_investor(
                    session,
                    name=safe_name,
                    slug=slug,
                    status=InvestorStatus.APPROVED.value,
                    logo=logo,
                    logo_alt_text=safe_name,
                    links=links,
                    meta_title=safe_name,
                    meta_description=f"Information about {safe_name} crypto investor.",
                    meta_image=logo,
                    type=investor_type_for(safe_name),
                )
                return investor.id, investor.slug

        try:
            investor_id, slug = await with_retry(create, f"Create investor {safe_name}")
        except SlugExhaustedError as e:
            logger.warning(f"{e}; skipping investor {safe_name}")
            return None
        except Exception as e:
            logger.error(f"Failed to create investor {safe_name}: {type(e).__name__}: {e}")
            return None

        self._map_group(group, investor_id, investor_map)
        investor_map[slug] = investor_id
        logger.info(f"Created investor: {safe_name} ({slug})")
        return investor_id

    async def _unique_slug(self, session, base_slug: str, investor_map: InvestorIdMap) -> str:
        """Probe suffixes against both the in-flight map and storage."""
        for attempt in range(self.max_slug_attempts + 1):
            candidate = suffixed_slug(base_slug, attempt)
            if candidate in investor_map:
                continue
            if await storage.investor_slug_exists(session, candidate):
                continue
            return candidate
        raise SlugExhaustedError(base_slug, self.max_slug_attempts, entity="investor")
