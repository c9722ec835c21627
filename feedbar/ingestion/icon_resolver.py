"""
Site Icon Resolution
====================

Finds a display icon for a feed's site: apple-touch-icon first, then the
regular ``icon`` link, then a ``/favicon.ico`` guess.
"""

import asyncio
from typing import Optional
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from ..utils.logging import get_logger_for_component

TOUCH_ICON_RELS = ("apple-touch-icon", "apple-touch-icon-precomposed")
ICON_RELS = ("icon", "shortcut icon")


def site_origin(site_url: str) -> Optional[str]:
    """``scheme://host[:port]`` of a URL, or None when it cannot be parsed."""
    try:
        parsed = urlparse(site_url.strip())
    except (AttributeError, ValueError):
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def resolve_icon_href(href: str, origin: str) -> str:
    """Resolve an icon href against the site origin."""
    href = href.strip()
    if href.startswith("//"):
        return f"https:{href}"
    if href.startswith(("http://", "https://")):
        return href
    if href.startswith("/"):
        return f"{origin}{href}"
    return f"{origin}/{href}"


def _link_rels(tag) -> str:
    rel = tag.get("rel")
    if isinstance(rel, (list, tuple)):
        rel = " ".join(rel)
    return (rel or "").strip().lower()


def find_icon_href(html: str) -> Optional[str]:
    """Best icon href declared in a page, touch icons first."""
    soup = BeautifulSoup(html, "html.parser")
    links = [tag for tag in soup.find_all("link") if tag.get("href")]

    for wanted in (TOUCH_ICON_RELS, ICON_RELS):
        for tag in links:
            if _link_rels(tag) in wanted:
                return tag["href"]
    return None


class IconResolver:
    """Resolves the best icon URL for a site."""

    def __init__(self, timeout: float = 5.0, user_agent: Optional[str] = None):
        self.timeout = timeout
        self.user_agent = user_agent
        self.logger = get_logger_for_component("icon_resolver")

    async def get_best_icon(self, session: aiohttp.ClientSession, site_url: str) -> Optional[str]:
        """Resolve the icon for a site.

        Args:
            session: aiohttp session for the page fetch
            site_url: Any URL on the site (typically the feed URL)

        Returns:
            Absolute icon URL, ``<origin>/favicon.ico`` when the page cannot be
            used, or None when ``site_url`` is not a valid URL
        """
        origin = site_origin(site_url or "")
        if origin is None:
            self.logger.warning(f"Cannot resolve icon for invalid URL: {site_url!r}")
            return None

        fallback = f"{origin}/favicon.ico"
        headers = {"Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        try:
            async with session.get(
                origin,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=headers,
                allow_redirects=True,
            ) as response:
                if response.status != 200:
                    self.logger.debug(f"Icon page fetch got HTTP {response.status} for {origin}")
                    return fallback
                html = await response.text(errors="replace")

        except asyncio.TimeoutError:
            self.logger.debug(f"Icon page fetch timed out for {origin}")
            return fallback
        except Exception as e:
            self.logger.debug(f"Icon page fetch failed for {origin}: {e}")
            return fallback

        href = find_icon_href(html)
        if href:
            return resolve_icon_href(href, origin)
        return fallback
