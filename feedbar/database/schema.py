"""
FeedBar Database Schema
=======================

SQLite schema for the ingestion worker:
- feeds: subscribed sources with health and rotation bookkeeping
- items: normalized entries, unique by URL
- feed_errors: append-only audit trail of disabled feeds
"""

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

EXPECTED_TABLES = {"feeds", "items", "feed_errors"}


class DatabaseSchema:
    """Database schema manager for the FeedBar SQLite database."""

    def __init__(self, db_path: str = "data/feedbar.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all tables and indexes if they do not exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("PRAGMA foreign_keys = ON")

            self._create_feeds_table(conn)
            self._create_items_table(conn)
            self._create_feed_errors_table(conn)
            self._create_indexes(conn)

            conn.commit()
            logger.info("Database schema created successfully")

    def _create_feeds_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS feeds (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                category TEXT,
                icon_url TEXT,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                last_fetched_at TEXT,
                created_at TEXT NOT NULL
            )
        """
        )

    def _create_items_table(self, conn: sqlite3.Connection) -> None:
        # No FK on feed_id; retention is the only delete path for items.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                feed_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                url TEXT UNIQUE NOT NULL,
                published_at TEXT NOT NULL,
                author TEXT,
                summary TEXT,
                image_url TEXT,
                created_at TEXT NOT NULL
            )
        """
        )

    def _create_feed_errors_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS feed_errors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                feed_id INTEGER NOT NULL,
                feed_name TEXT,
                feed_url TEXT,
                error_code TEXT NOT NULL,
                message TEXT,
                created_at TEXT NOT NULL
            )
        """
        )

    def _create_indexes(self, conn: sqlite3.Connection) -> None:
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_feeds_rotation ON feeds(is_active, last_fetched_at)",
            "CREATE INDEX IF NOT EXISTS idx_items_published ON items(published_at)",
            "CREATE INDEX IF NOT EXISTS idx_items_feed ON items(feed_id)",
            "CREATE INDEX IF NOT EXISTS idx_feed_errors_feed ON feed_errors(feed_id)",
            "CREATE INDEX IF NOT EXISTS idx_feed_errors_created ON feed_errors(created_at)",
        ]

        for index_sql in indexes:
            conn.execute(index_sql)

    def drop_tables(self) -> None:
        """Drop all tables (for testing/reset purposes)."""
        with sqlite3.connect(self.db_path) as conn:
            for table in ("feed_errors", "items", "feeds"):
                conn.execute(f"DROP TABLE IF EXISTS {table}")
            conn.commit()
            logger.info("All database tables dropped")

    def verify_schema(self) -> bool:
        """Verify that every expected table exists."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute(
                    """
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                """
                )
                tables = {row[0] for row in cursor.fetchall()}

            missing = EXPECTED_TABLES - tables
            if missing:
                logger.error(f"Missing tables: {sorted(missing)}")
                return False

            logger.info("Database schema verification passed")
            return True

        except sqlite3.Error as e:
            logger.error(f"Schema verification failed: {e}")
            return False

