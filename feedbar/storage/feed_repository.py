"""
Feed Repository
===============

Feed selection for batch rotation and the bookkeeping updates the health
state machine and icon backfill apply to feed rows.
"""

from datetime import datetime
from typing import List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import Feed, to_db_timestamp
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode


class FeedRepository:
    """Repository for feed rows."""

    UPDATABLE_FIELDS = ("last_fetched_at", "is_active", "icon_url")

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize feed repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("feed_repository")

    def select_active_feeds(self, limit: int) -> List[Feed]:
        """Select the next rotation batch.

        Active feeds only, least recently fetched first, never-fetched feeds
        ahead of everything else.

        Args:
            limit: Maximum number of feeds to return

        Returns:
            List of Feed objects

        Raises:
            DatabaseError: If the query fails
        """
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM feeds
                    WHERE is_active = 1
                    ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC, id ASC
                    LIMIT ?
                """,
                    (limit,),
                ).fetchall()

            return [Feed.from_db_row(row) for row in rows]

        except Exception as e:
            raise DatabaseError(
                f"Failed to select active feeds: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def select_feeds_missing_icon(self, active_only: bool = True) -> List[Feed]:
        """Feeds that have no icon URL yet."""
        query = "SELECT * FROM feeds WHERE (icon_url IS NULL OR icon_url = '')"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY id"

        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(query).fetchall()
            return [Feed.from_db_row(row) for row in rows]

        except Exception as e:
            raise DatabaseError(
                f"Failed to select feeds missing icons: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

    def get_feed_by_id(self, feed_id: int) -> Optional[Feed]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM feeds WHERE id = ?", (feed_id,)
                ).fetchone()
            return Feed.from_db_row(row) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get feed {feed_id}: {e}")
            return None

    def update_feed(self, feed_id: int, **kwargs) -> bool:
        """Update bookkeeping fields of a feed.

        Args:
            feed_id: Feed ID
            **kwargs: Any of ``last_fetched_at``, ``is_active``, ``icon_url``

        Returns:
            True if a row was updated, False if the feed does not exist

        Raises:
            ValueError: If an unknown field is passed
            DatabaseError: If the update fails
        """
        if not kwargs:
            return True

        unknown = set(kwargs) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update feed fields: {sorted(unknown)}")

        fields = []
        values = []
        for field, value in kwargs.items():
            if isinstance(value, datetime):
                value = to_db_timestamp(value)
            elif isinstance(value, bool):
                value = int(value)
            fields.append(f"{field} = ?")
            values.append(value)

        values.append(feed_id)
        query = f"UPDATE feeds SET {', '.join(fields)} WHERE id = ?"

        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(query, values)
                conn.commit()

        except Exception as e:
            raise DatabaseError(
                f"Failed to update feed {feed_id}: {e}",
                query=query,
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

        if cursor.rowcount > 0:
            self.logger.debug(f"Updated feed {feed_id}: {sorted(kwargs)}")
            return True

        self.logger.warning(f"No feed found with ID {feed_id}")
        return False

    def set_icon(self, feed_id: int, icon_url: str) -> bool:
        return self.update_feed(feed_id, icon_url=icon_url)
