"""
Feed Error Repository
=====================

Append-only audit trail of feeds disabled by the ingestion pipeline.
"""

from typing import List

from ..database.connection import DatabaseConnection
from ..database.models import FeedErrorRecord, to_db_timestamp
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode


class FeedErrorRepository:
    """Repository for feed_errors rows. Rows are never updated or deleted."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("feed_error_repository")

    def insert_feed_error(self, record: FeedErrorRecord) -> int:
        """Append an audit record.

        Returns:
            ID of the new row

        Raises:
            DatabaseError: If the insert fails
        """
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO feed_errors (feed_id, feed_name, feed_url,
                                             error_code, message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.feed_id,
                        record.feed_name,
                        record.feed_url,
                        record.error_code,
                        record.message,
                        to_db_timestamp(record.created_at),
                    ),
                )
                conn.commit()

        except Exception as e:
            raise DatabaseError(
                f"Failed to record error for feed {record.feed_id}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

        self.logger.info(
            f"Recorded feed error {record.error_code} for feed {record.feed_id}"
        )
        return cursor.lastrowid

    def get_errors_for_feed(self, feed_id: int) -> List[FeedErrorRecord]:
        with self.db.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM feed_errors WHERE feed_id = ? ORDER BY id",
                (feed_id,),
            ).fetchall()
        return [FeedErrorRecord.from_db_row(row) for row in rows]

    def get_recent_errors(self, limit: int = 50) -> List[FeedErrorRecord]:
        with self.db.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM feed_errors ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [FeedErrorRecord.from_db_row(row) for row in rows]
