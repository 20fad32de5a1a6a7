"""
Session credential providers for the deal-flow source.

The listing only shows full investor lists to logged-in sessions. Cookies are
injected through a ``SessionProvider`` so they can be rotated without a
deploy: export them from a browser extension (JSON array) and point
SESSION_COOKIES_FILE at the file, or inline them in SESSION_COOKIES_JSON.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Browser-extension sameSite values -> Playwright values
_SAME_SITE = {
    "no_restriction": "None",
    "none": "None",
    "lax": "Lax",
    "strict": "Strict",
}


@dataclass(frozen=True)
class SessionCookie:
    """One cookie applied to every listing request."""
    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    expires: Optional[float] = None  # Unix seconds; None for session cookies
    same_site: Optional[str] = None  # "Strict" | "Lax" | "None"

    @classmethod
    def from_export(cls, raw: Dict[str, Any]) -> "SessionCookie":
        """Build from a browser-extension cookie export entry."""
        expires = None
        if not raw.get("session") and raw.get("expirationDate"):
            expires = float(raw["expirationDate"])

        same_site = raw.get("sameSite")
        if isinstance(same_site, str):
            same_site = _SAME_SITE.get(same_site.lower())
        else:
            same_site = None

        return cls(
            name=raw["name"],
            value=raw["value"],
            domain=raw["domain"],
            path=raw.get("path") or "/",
            secure=bool(raw.get("secure")),
            http_only=bool(raw.get("httpOnly")),
            expires=expires,
            same_site=same_site,
        )

    def to_playwright(self) -> Dict[str, Any]:
        cookie: Dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
        }
        if self.expires is not None:
            cookie["expires"] = self.expires
        if self.same_site:
            cookie["sameSite"] = self.same_site
        return cookie


def parse_cookie_export(data: Iterable[Dict[str, Any]]) -> List[SessionCookie]:
    """Parse an exported cookie list, skipping malformed entries."""
    cookies = []
    for raw in data:
        try:
            cookies.append(SessionCookie.from_export(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed cookie entry: {e}")
    return cookies


class SessionProvider(ABC):
    """Supplies the cookies for a browsing context."""

    @abstractmethod
    async def get_cookies(self) -> List[SessionCookie]:
        pass


class StaticSessionProvider(SessionProvider):
    def __init__(self, cookies: Optional[Iterable[SessionCookie]] = None):
        self._cookies = list(cookies or [])

    async def get_cookies(self) -> List[SessionCookie]:
        return list(self._cookies)


class FileSessionProvider(SessionProvider):
    """Reads the cookie file on every call, so a rotated file takes effect next fetch."""

    def __init__(self, path: str):
        self.path = Path(path)

    async def get_cookies(self) -> List[SessionCookie]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"Session cookie file not found: {self.path}")
            return []
        except json.JSONDecodeError as e:
            logger.warning(f"Session cookie file {self.path} is not valid JSON: {e}")
            return []
        return parse_cookie_export(data)


def session_provider_from_settings(config: Optional[Settings] = None) -> SessionProvider:
    """File beats inline JSON; neither configured means an anonymous session."""
    config = config or default_settings

    if config.session_cookies_file:
        return FileSessionProvider(config.session_cookies_file)

    if config.session_cookies_json:
        try:
            return StaticSessionProvider(parse_cookie_export(json.loads(config.session_cookies_json)))
        except json.JSONDecodeError as e:
            logger.warning(f"SESSION_COOKIES_JSON is not valid JSON, using anonymous session: {e}")

    return StaticSessionProvider()
