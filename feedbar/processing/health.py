"""
Feed Health State Machine
=========================

Pure transition function deciding what a processing outcome does to a feed:
stay active, or be quarantined with an audit record. ``DISABLED`` has no
outgoing transition here; re-enabling a feed is an operator action.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..database.models import Feed, FeedErrorRecord

NO_ITEMS_CODE = "no_items"


class FeedHealth(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"

    @classmethod
    def of(cls, feed: Feed) -> "FeedHealth":
        return cls.ACTIVE if feed.is_active else cls.DISABLED


class HealthEvent(str, Enum):
    """Outcome of one processing attempt."""

    ITEMS = "items"
    EMPTY = "empty"
    FATAL_ERROR = "fatal_error"
    TRANSIENT_ERROR = "transient_error"


@dataclass
class HealthTransition:
    """Next state plus the side effects to apply to the store."""

    next_state: FeedHealth
    feed_updates: Dict[str, Any] = field(default_factory=dict)
    error_record: Optional[FeedErrorRecord] = None
    upsert_items: bool = False

    @property
    def disables_feed(self) -> bool:
        return self.next_state is FeedHealth.DISABLED and self.error_record is not None


def transition(
    feed: Feed,
    event: HealthEvent,
    now: datetime,
    error_code: Optional[str] = None,
    message: Optional[str] = None,
) -> HealthTransition:
    """Compute the transition for ``feed`` given a processing outcome.

    Every transition touches ``last_fetched_at``.

    Args:
        feed: Feed being processed
        event: Processing outcome
        now: Processing time
        error_code: Fetch error code for ``FATAL_ERROR``
        message: Detail stored on the audit record

    Returns:
        HealthTransition describing the store side effects
    """
    touch = {"last_fetched_at": now}
    state = FeedHealth.of(feed)

    if state is FeedHealth.DISABLED:
        return HealthTransition(next_state=FeedHealth.DISABLED, feed_updates=touch)

    if event is HealthEvent.ITEMS:
        return HealthTransition(
            next_state=FeedHealth.ACTIVE,
            feed_updates=touch,
            upsert_items=True,
        )

    if event is HealthEvent.TRANSIENT_ERROR:
        return HealthTransition(next_state=FeedHealth.ACTIVE, feed_updates=touch)

    if event is HealthEvent.EMPTY:
        code = NO_ITEMS_CODE
        message = message or "Feed returned no items"
    else:
        code = error_code or "unknown"

    record = FeedErrorRecord(
        feed_id=feed.id,
        feed_name=feed.name,
        feed_url=feed.url,
        error_code=code,
        message=message,
        created_at=now,
    )
    return HealthTransition(
        next_state=FeedHealth.DISABLED,
        feed_updates={**touch, "is_active": False},
        error_record=record,
    )
