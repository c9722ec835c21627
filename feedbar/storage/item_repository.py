"""
Item Repository
===============

Deduplicated item writes, the existing-URL pre-check used to skip page
scrapes, retention deletes, and the recent-items read used by the manifest.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set

from ..database.connection import DatabaseConnection
from ..database.models import Item, RecentItemRow, to_db_timestamp
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode

# Stay well below SQLite's bound-parameter limit
_URL_CHUNK_SIZE = 500


class ItemRepository:
    """Repository for normalized items."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("item_repository")

    def upsert_items(self, items: List[Item]) -> int:
        """Insert items, ignoring any whose URL is already stored.

        First write wins: an existing row is never updated.

        Args:
            items: Normalized items, typically all from one feed

        Returns:
            Number of rows actually inserted

        Raises:
            DatabaseError: If the batch insert fails
        """
        if not items:
            return 0

        rows = [
            (
                item.id,
                item.feed_id,
                item.title,
                item.url,
                to_db_timestamp(item.published_at),
                item.author,
                item.summary,
                item.image_url,
                to_db_timestamp(item.created_at),
            )
            for item in items
        ]

        try:
            with self.db.transaction() as conn:
                before = conn.total_changes
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO items (id, feed_id, title, url, published_at,
                                       author, summary, image_url, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                inserted = conn.total_changes - before

        except Exception as e:
            raise DatabaseError(
                f"Failed to upsert {len(items)} items: {e}",
                error_code=ErrorCode.DATABASE_TRANSACTION,
            ) from e

        self.logger.debug(f"Upserted items: {inserted} new of {len(items)}")
        return inserted

    def select_existing_item_urls(self, urls: Iterable[str]) -> Set[str]:
        """Return the subset of ``urls`` already stored.

        Raises:
            DatabaseError: If the lookup fails
        """
        unique_urls = list(dict.fromkeys(urls))
        existing: Set[str] = set()
        if not unique_urls:
            return existing

        try:
            with self.db.get_connection() as conn:
                for start in range(0, len(unique_urls), _URL_CHUNK_SIZE):
                    chunk = unique_urls[start:start + _URL_CHUNK_SIZE]
                    placeholders = ",".join("?" for _ in chunk)
                    rows = conn.execute(
                        f"SELECT url FROM items WHERE url IN ({placeholders})",
                        chunk,
                    ).fetchall()
                    existing.update(row["url"] for row in rows)

        except Exception as e:
            raise DatabaseError(
                f"Failed to look up existing item URLs: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
            ) from e

        return existing

    def delete_items_older_than(self, cutoff: datetime) -> int:
        """Delete items published before ``cutoff``.

        Returns:
            Number of deleted rows

        Raises:
            DatabaseError: If the delete fails
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM items WHERE published_at < ?",
                    (to_db_timestamp(cutoff),),
                )
                return cursor.rowcount

        except Exception as e:
            raise DatabaseError(
                f"Failed to delete items older than {cutoff.isoformat()}: {e}",
                error_code=ErrorCode.DATABASE_TRANSACTION,
            ) from e

    def get_item_by_url(self, url: str) -> Optional[Item]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM items WHERE url = ?", (url,)
                ).fetchone()
            return Item.from_db_row(row) if row else None

        except Exception as e:
            self.logger.error(f"Failed to get item {url}: {e}")
            return None

    def count_items(self, feed_id: Optional[int] = None) -> int:
        query = "SELECT COUNT(*) AS cnt FROM items"
        params: tuple = ()
        if feed_id is not None:
            query += " WHERE feed_id = ?"
            params = (feed_id,)

        with self.db.get_connection() as conn:
            row = conn.execute(query, params).fetchone()
        return row["cnt"] if row else 0

    def get_recent_items(self, limit: int = 100) -> List[RecentItemRow]:
        """Newest items joined with their feed's display fields.

        Items whose feed row is gone are still returned, with feed fields None.
        """
        with self.db.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT items.id, items.title, items.url, items.published_at,
                       items.image_url,
                       feeds.id AS feed_id, feeds.name AS feed_name,
                       feeds.url AS feed_url, feeds.category AS feed_category
                FROM items
                LEFT JOIN feeds ON items.feed_id = feeds.id
                ORDER BY items.published_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()

        return [dict(row) for row in rows]
