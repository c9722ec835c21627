"""
Item Retention
==============

Deletes items whose publication time falls outside the retention window.
"""

from datetime import datetime, timedelta
from typing import Optional

from ..config.settings import FeedBarSettings, get_settings
from ..database.models import utc_now
from ..storage.item_repository import ItemRepository
from ..utils.logging import get_logger_for_component


class RetentionCleaner:
    """Removes items older than the configured number of days."""

    def __init__(self, item_repo: ItemRepository, settings: Optional[FeedBarSettings] = None):
        self.item_repo = item_repo
        self.settings = settings or get_settings()
        self.logger = get_logger_for_component("retention")

    @property
    def retention_days(self) -> int:
        return self.settings.retention.days

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) - timedelta(days=self.retention_days)

    def run(self, now: Optional[datetime] = None) -> int:
        """Delete expired items.

        Args:
            now: Reference time (default: current UTC time)

        Returns:
            Number of deleted items

        Raises:
            DatabaseError: If the delete fails
        """
        cutoff = self.cutoff(now)
        deleted = self.item_repo.delete_items_older_than(cutoff)

        if deleted:
            self.logger.info(
                f"Retention removed {deleted} items published before {cutoff.isoformat()}"
            )
        else:
            self.logger.debug(f"Retention found nothing older than {cutoff.isoformat()}")

        return deleted
