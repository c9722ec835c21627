"""
Image Resolution
================

Multi-tier lookup of a representative image for a feed entry.

The cheap tiers read fields already present on the parsed entry and are
tried in ``ENTRY_IMAGE_EXTRACTORS`` order; the first hit wins. The last
tier, ``scrape_page_image``, fetches the linked article page and reads its
Open Graph / Twitter card metadata. No tier ever raises: a miss is ``None``.
"""

import asyncio
from typing import Any, Callable, Iterable, Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup

from ..utils.logging import get_logger_for_component

logger = get_logger_for_component("image_resolver")

EntryImageExtractor = Callable[[Any], Optional[str]]

PAGE_IMAGE_META = (
    ("property", "og:image"),
    ("property", "og:image:url"),
    ("name", "twitter:image"),
    ("name", "twitter:image:src"),
    ("property", "twitter:image"),
)


def absolutize_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Turn a protocol-relative or relative URL into an absolute http(s) one."""
    if not url or not isinstance(url, str):
        return None

    url = url.strip()
    if not url or url.startswith(("data:", "javascript:")):
        return None

    if url.startswith("//"):
        return f"https:{url}"

    if urlparse(url).scheme in ("http", "https"):
        return url

    if base_url and urlparse(base_url).scheme in ("http", "https"):
        resolved = urljoin(base_url, url)
        if urlparse(resolved).scheme in ("http", "https"):
            return resolved

    return None


def _field(entry: Any, name: str) -> Any:
    if hasattr(entry, "get"):
        return entry.get(name)
    return getattr(entry, name, None)


def _first_url(candidates: Iterable[Any], key: str = "url") -> Optional[str]:
    for candidate in candidates or ():
        if isinstance(candidate, dict):
            url = candidate.get(key) or candidate.get("href")
        else:
            url = candidate if isinstance(candidate, str) else None
        if url and str(url).strip():
            return str(url).strip()
    return None


def _is_image_type(media_type: Optional[str]) -> bool:
    return not media_type or str(media_type).lower().startswith("image/")


def image_from_enclosure(entry: Any) -> Optional[str]:
    """Tier 1: an enclosure whose declared type is an image, or is absent."""
    for enclosure in _field(entry, "enclosures") or ():
        if not isinstance(enclosure, dict):
            continue
        href = enclosure.get("href") or enclosure.get("url")
        if href and _is_image_type(enclosure.get("type")):
            return href

    for link in _field(entry, "links") or ():
        if isinstance(link, dict) and link.get("rel") == "enclosure":
            if link.get("href") and _is_image_type(link.get("type")):
                return link["href"]

    return None


def image_from_media_content(entry: Any) -> Optional[str]:
    """Tier 2: ``media:content``."""
    return _first_url(_field(entry, "media_content"))


def image_from_media_thumbnail(entry: Any) -> Optional[str]:
    """Tier 3: ``media:thumbnail``."""
    return _first_url(_field(entry, "media_thumbnail"))


def image_from_image_tag(entry: Any) -> Optional[str]:
    """Tier 4: a vendor ``<image>`` element on the entry.

    feedparser keeps no ``image`` key for an item-level
    ``<image><url>...</url></image>``; the nested ``<url>`` lands on the
    entry as ``href``.
    """
    image = _field(entry, "image")
    if isinstance(image, dict):
        return image.get("href") or image.get("url")
    if isinstance(image, str):
        return image

    href = _field(entry, "href")
    if isinstance(href, str) and href.strip() and href != _field(entry, "link"):
        return href.strip()
    return None


def entry_html(entry: Any) -> Iterable[str]:
    """HTML bodies of an entry, richest first."""
    for content in _field(entry, "content") or ():
        value = content.get("value") if isinstance(content, dict) else None
        if value:
            yield value

    summary = _field(entry, "summary") or _field(entry, "description")
    if summary:
        yield summary


def image_from_html(entry: Any) -> Optional[str]:
    """Tier 5: first ``<img src>`` in the entry's HTML content or summary."""
    for html in entry_html(entry):
        if "<img" not in html.lower():
            continue
        soup = BeautifulSoup(html, "html.parser")
        for img in soup.find_all("img"):
            src = img.get("src") or img.get("data-src")
            if src and src.strip():
                return src.strip()
    return None


ENTRY_IMAGE_EXTRACTORS: Tuple[EntryImageExtractor, ...] = (
    image_from_enclosure,
    image_from_media_content,
    image_from_media_thumbnail,
    image_from_image_tag,
    image_from_html,
)


def resolve_entry_image(entry: Any, base_url: Optional[str] = None) -> Optional[str]:
    """Run the entry-level tiers in order and return the first usable URL.

    Args:
        entry: Parsed feed entry
        base_url: Entry link used to resolve relative image URLs

    Returns:
        Absolute image URL or None
    """
    for extractor in ENTRY_IMAGE_EXTRACTORS:
        try:
            url = absolutize_url(extractor(entry), base_url)
        except Exception as e:
            logger.debug(f"Image extractor {extractor.__name__} failed: {e}")
            continue
        if url:
            return url
    return None


def extract_page_image(html: str, page_url: str) -> Optional[str]:
    """Read ``og:image`` then ``twitter:image`` from an HTML page."""
    soup = BeautifulSoup(html, "html.parser")
    for attr, value in PAGE_IMAGE_META:
        tag = soup.find("meta", attrs={attr: value})
        if tag and tag.get("content"):
            url = absolutize_url(tag["content"], page_url)
            if url:
                return url
    return None


async def scrape_page_image(
    session: aiohttp.ClientSession,
    page_url: str,
    timeout: float = 3.0,
) -> Optional[str]:
    """Tier 6: fetch the article page and read its preview image metadata.

    Any failure (timeout, HTTP error, non-HTML body) yields None.
    """
    try:
        async with session.get(
            page_url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"},
            allow_redirects=True,
        ) as response:
            if response.status != 200:
                logger.debug(f"Page scrape got HTTP {response.status} for {page_url}")
                return None
            html = await response.text(errors="replace")

    except asyncio.TimeoutError:
        logger.debug(f"Page scrape timed out after {timeout}s for {page_url}")
        return None
    except Exception as e:
        logger.debug(f"Page scrape failed for {page_url}: {e}")
        return None

    try:
        return extract_page_image(html, page_url)
    except Exception as e:
        logger.debug(f"Page metadata parse failed for {page_url}: {e}")
        return None
