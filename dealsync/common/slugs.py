"""
Slug generation and candidate-slug matching.

Projects and investors are identified by URL-safe slugs. An investor seen on the
listing can be reached through several independently computed slugs:

- the tail of its profile URL (``/funds/a16z-crypto/`` -> ``a16z-crypto``)
- a slug derived from its display name (``a16z`` -> ``a16z``)

``CandidateSlugSet`` is the single place where that matching policy lives.
All modules should build candidates through ``CandidateSlugSet.from_reference``
instead of calling ``slugify`` ad hoc.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

FALLBACK_SLUG = "item"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9\-\s]")
_SEPARATORS = re.compile(r"[\s_]+")
_REPEATED_DASHES = re.compile(r"-+")


def slugify(text: Optional[str]) -> str:
    """
    Convert text to a lowercase, dash-separated slug.

    Diacritics are stripped, unsafe characters become dashes and runs of
    dashes collapse. Empty input yields ``"item"``.

    Examples:
        >>> slugify("Project A")
        'project-a'
        >>> slugify("Crème Brûlée Labs")
        'creme-brulee-labs'
        >>> slugify("")
        'item'
    """
    if not text:
        return FALLBACK_SLUG

    normalized = unicodedata.normalize("NFKD", text.strip().lower())
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))

    slug = _UNSAFE_CHARS.sub("-", normalized)
    slug = _SEPARATORS.sub("-", slug)
    slug = _REPEATED_DASHES.sub("-", slug)
    slug = slug.strip("-")
    return slug or FALLBACK_SLUG


def url_tail_slug(url: Optional[str]) -> str:
    """Return the last non-empty path segment of a URL, lowercased ('' if none)."""
    if not url:
        return ""
    path = urlparse(url.strip()).path
    segments = [segment for segment in path.split("/") if segment]
    return segments[-1].lower() if segments else ""


def suffixed_slug(base_slug: str, attempt: int) -> str:
    """Slug for the n-th collision probe: ``base``, ``base-1``, ``base-2``..."""
    return base_slug if attempt == 0 else f"{base_slug}-{attempt}"


@dataclass(frozen=True)
class CandidateSlugSet:
    """
    All slugs that may identify one referenced entity.

    Precedence:
        base: the name-derived slug when a name is known, otherwise the
            slugified URL tail. Used as the slug for newly created records.
        lookup order: URL tail first (the source's own identifier), then
            base, then the name-derived slug.
    """

    url_slug: str = ""
    name_slug: str = ""

    @classmethod
    def from_reference(cls, name: Optional[str], url: Optional[str]) -> "CandidateSlugSet":
        clean_name = (name or "").strip()
        return cls(
            url_slug=url_tail_slug(url),
            name_slug=slugify(clean_name) if clean_name else "",
        )

    @property
    def base(self) -> str:
        if self.name_slug:
            return self.name_slug
        if self.url_slug:
            return slugify(self.url_slug)
        return ""

    @property
    def lookup_order(self) -> Tuple[str, ...]:
        return _unique(s for s in (self.url_slug, self.base, self.name_slug) if s)

    @property
    def variants(self) -> Tuple[str, ...]:
        """Every distinct non-empty slug, base first."""
        return _unique(s for s in (self.base, self.name_slug, self.url_slug) if s)

    def __bool__(self) -> bool:
        return bool(self.base)


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)
