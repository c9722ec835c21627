"""
Item Normalization
==================

Maps heterogeneous parsed feed entries (RSS 0.9x/2.0, Atom, RDF) onto the
canonical ``Item`` record.
"""

import calendar
import re
from datetime import datetime, timezone
from typing import Any, Optional

from bs4 import BeautifulSoup
from pydantic import ValidationError

from ..database.models import Item, utc_now
from ..utils.logging import get_logger_for_component
from .image_resolver import entry_html, resolve_entry_image

logger = get_logger_for_component("normalizer")

DEFAULT_TITLE = "Untitled"

_WHITESPACE = re.compile(r"\s+")


def entry_url(entry: Any) -> Optional[str]:
    """Primary link of an entry, falling back to its first alternate link."""
    link = entry.get("link")
    if isinstance(link, str) and link.strip():
        return link.strip()

    for candidate in entry.get("links") or ():
        if isinstance(candidate, dict) and candidate.get("rel", "alternate") == "alternate":
            href = candidate.get("href")
            if href and href.strip():
                return href.strip()

    return None


def entry_published_at(entry: Any) -> Optional[datetime]:
    """Publication time from ``published_parsed`` then ``updated_parsed``.

    feedparser normalizes both to UTC ``struct_time``.
    """
    for field in ("published_parsed", "updated_parsed"):
        value = entry.get(field)
        if value:
            try:
                return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                continue
    return None


def strip_html(html: Optional[str]) -> str:
    """Plain text of an HTML fragment with whitespace collapsed."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(separator=" ")
    return _WHITESPACE.sub(" ", text).strip()


def entry_summary(entry: Any, max_length: int) -> Optional[str]:
    """Plain-text summary from the richest text field.

    The full content wins over ``summary``/``description`` when it carries
    more text.
    """
    candidates = [strip_html(html) for html in entry_html(entry)]
    text = max(candidates, key=len, default=None)
    if not text:
        return None
    return text[:max_length]


def normalize_entry(
    entry: Any,
    feed_id: int,
    now: Optional[datetime] = None,
    summary_max_length: int = 200,
) -> Optional[Item]:
    """Build an Item from a parsed entry.

    Args:
        entry: feedparser entry
        feed_id: Owning feed
        now: Processing time, used when the entry carries no date
        summary_max_length: Summary truncation length

    Returns:
        The Item with entry-level image tiers applied, or None when the
        entry has no usable URL
    """
    now = now or utc_now()

    url = entry_url(entry)
    if not url or not url.lower().startswith(("http://", "https://")):
        logger.debug(f"Skipping entry without absolute URL: {entry.get('title', '')!r}")
        return None

    title = strip_html(entry.get("title")) or DEFAULT_TITLE
    author = (entry.get("author") or "").strip() or None

    try:
        return Item(
            feed_id=feed_id,
            title=title,
            url=url,
            published_at=entry_published_at(entry) or now,
            author=author,
            summary=entry_summary(entry, summary_max_length),
            image_url=resolve_entry_image(entry, base_url=url),
            created_at=now,
        )
    except ValidationError as e:
        logger.warning(f"Dropping invalid entry {url}: {e}")
        return None
