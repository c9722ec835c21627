"""
Read-side manifest: the newest items with their source's display fields,
shaped for the ticker client.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..database.models import from_db_timestamp, utc_now
from ..storage.item_repository import ItemRepository

MANIFEST_LIMIT = 100
UNKNOWN_FEED_ID = 0
DEFAULT_SOURCE_NAME = "General News"
MISSING_DOMAIN = "news.source"
UNPARSEABLE_DOMAIN = "source.com"


def source_domain(feed_url: Optional[str]) -> str:
    """Display hostname of a feed URL with a leading ``www.`` removed."""
    if not feed_url:
        return MISSING_DOMAIN
    try:
        hostname = urlparse(feed_url).hostname
    except ValueError:
        return UNPARSEABLE_DOMAIN
    if not hostname:
        return UNPARSEABLE_DOMAIN
    return hostname[4:] if hostname.startswith("www.") else hostname


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    parsed = from_db_timestamp(value)
    return parsed.isoformat() if parsed else None


def manifest_item(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row.get("id"),
        "title": row.get("title") or "Untitled",
        "url": row.get("url") or "#",
        "feed_id": row.get("feed_id") or UNKNOWN_FEED_ID,
        "source_name": row.get("feed_name") or DEFAULT_SOURCE_NAME,
        "source_domain": source_domain(row.get("feed_url")),
        "category": row.get("feed_category") or None,
        "published_at": _iso(row.get("published_at")),
        "image_url": row.get("image_url") or None,
    }


def build_manifest(rows: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Shape joined item rows into the manifest document."""
    return {
        "generated_at": (now or utc_now()).isoformat(),
        "items": [manifest_item(row) for row in rows],
    }


def load_manifest(item_repo: ItemRepository, limit: int = MANIFEST_LIMIT) -> Dict[str, Any]:
    return build_manifest(item_repo.get_recent_items(limit))
