"""
FeedBar Data Models
===================

Pydantic models for the three persisted records (feeds, items, feed errors)
plus the timestamp helpers shared by the repositories.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
import uuid


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage.

    Fixed-width UTC ISO strings, so lexical order in SQL equals time order.
    """
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


class Feed(BaseModel):
    """A subscribed external source."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    url: str = Field(..., min_length=1, description="Canonical feed URL")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    category: Optional[str] = Field(default=None, max_length=100, description="Display category")
    icon_url: Optional[str] = Field(default=None, description="Site icon URL")
    is_active: bool = Field(default=True, description="False once the feed is quarantined")
    last_fetched_at: Optional[datetime] = Field(default=None, description="Last processing attempt")
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_db_row(cls, row) -> "Feed":
        data = dict(row)
        data["is_active"] = bool(data.get("is_active"))
        data["last_fetched_at"] = from_db_timestamp(data.get("last_fetched_at"))
        data["created_at"] = from_db_timestamp(data.get("created_at")) or utc_now()
        return cls(**data)

    def __str__(self) -> str:
        return f"Feed({self.name}:{self.url})"


class Item(BaseModel):
    """A normalized feed entry. The URL is the deduplication key."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique item ID")
    feed_id: int = Field(..., description="Owning feed")
    title: str = Field(..., min_length=1, description="Entry title")
    url: str = Field(..., description="Canonical entry URL")
    published_at: datetime = Field(..., description="Publication time (UTC)")
    author: Optional[str] = Field(default=None, description="Entry author")
    summary: Optional[str] = Field(default=None, description="Plain-text summary")
    image_url: Optional[str] = Field(default=None, description="Resolved image URL")
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Only absolute http(s) URLs can be stored."""
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"Item URL must be absolute http(s): {v!r}")
        return v

    @field_validator('published_at', 'created_at')
    @classmethod
    def normalize_timezone(cls, v):
        return ensure_utc(v)

    @classmethod
    def from_db_row(cls, row) -> "Item":
        data = dict(row)
        data["published_at"] = from_db_timestamp(data["published_at"])
        data["created_at"] = from_db_timestamp(data.get("created_at")) or utc_now()
        return cls(**data)

    def __str__(self) -> str:
        return f"Item({self.title[:50]})"


class FeedErrorRecord(BaseModel):
    """Append-only audit row written when a feed is disabled."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    feed_id: int = Field(..., description="Disabled feed")
    feed_name: Optional[str] = Field(default=None, description="Feed name at the time of the error")
    feed_url: Optional[str] = Field(default=None, description="Feed URL at the time of the error")
    error_code: str = Field(..., min_length=1, description="Error tag, e.g. not_found or no_items")
    message: Optional[str] = Field(default=None, description="Free-text detail")
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('message')
    @classmethod
    def cap_message(cls, v):
        if v and len(v) > 1000:
            return v[:1000] + "..."
        return v

    @classmethod
    def from_db_row(cls, row) -> "FeedErrorRecord":
        data = dict(row)
        data["created_at"] = from_db_timestamp(data.get("created_at")) or utc_now()
        return cls(**data)

    def __str__(self) -> str:
        return f"FeedErrorRecord({self.feed_id}:{self.error_code})"


# Type aliases for joined read-side rows
RecentItemRow = Dict[str, Any]
