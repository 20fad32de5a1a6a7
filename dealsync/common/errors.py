"""
Exception types shared across the sync pipeline.
"""

from typing import Optional


class DealSyncError(Exception):
    """Base class for pipeline errors."""


class PageFetchError(DealSyncError):
    """A listing page could not be loaded (navigation, selector or transport failure).

    Always treated as transient by the retry wrapper.
    """

    def __init__(self, page_number: int, message: str):
        self.page_number = page_number
        super().__init__(f"page {page_number}: {message}")


class UnparseableDateError(DealSyncError):
    """Raised in strict-date mode when a round date cannot be parsed."""

    def __init__(self, text: str):
        self.text = text
        super().__init__(f"Could not parse date: {text!r}")


class SlugExhaustedError(DealSyncError):
    """Numeric-suffix probing ran out of attempts for a slug."""

    def __init__(self, base_slug: str, attempts: int, entity: Optional[str] = None):
        self.base_slug = base_slug
        self.attempts = attempts
        self.entity = entity
        label = f"{entity} " if entity else ""
        super().__init__(f"Could not generate unique {label}slug for {base_slug!r} after {attempts} attempts")
