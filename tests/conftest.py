"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and configuration for FeedBar tests.

- Temporary file-backed SQLite database per test (the connection pool
  needs a shared file; ``:memory:`` would give each connection its own db)
- Settings pointed at the temporary database and lease directory
- A scripted stand-in for ``aiohttp.ClientSession``
"""

import os
import asyncio
from types import SimpleNamespace
from datetime import datetime
from typing import Dict, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

# Set test environment variables before any imports
os.environ["FEEDBAR_DEBUG"] = "true"
os.environ["FEEDBAR_LOGGING__CONSOLE_LOGGING"] = "false"

from feedbar.config.settings import (
    FeedBarSettings,
    DatabaseSettings,
    IngestionSettings,
    LeaseSettings,
    LoggingSettings,
)
from feedbar.database.connection import DatabaseConnection
from feedbar.database.models import to_db_timestamp, utc_now
from feedbar.database.schema import DatabaseSchema
from feedbar.storage.feed_error_repository import FeedErrorRepository
from feedbar.storage.feed_repository import FeedRepository
from feedbar.storage.item_repository import ItemRepository


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def temp_db(tmp_path):
    """Path to a fresh database with the schema applied."""
    db_path = tmp_path / "feedbar_test.db"
    DatabaseSchema(str(db_path)).create_tables()
    return str(db_path)


@pytest.fixture
def db_connection(temp_db):
    """Create a database connection manager for testing."""
    connection = DatabaseConnection(temp_db, pool_size=2)
    yield connection
    connection.close_all_connections()


@pytest.fixture
def feed_repo(db_connection):
    return FeedRepository(db_connection)


@pytest.fixture
def item_repo(db_connection):
    return ItemRepository(db_connection)


@pytest.fixture
def error_repo(db_connection):
    return FeedErrorRepository(db_connection)


@pytest.fixture
def test_settings(temp_db, tmp_path):
    """Settings bound to the temporary database, no file logging."""
    return FeedBarSettings(
        database=DatabaseSettings(path=temp_db, pool_size=2),
        ingestion=IngestionSettings(
            batch_size=10,
            fetch_timeout=1.0,
            feed_task_timeout=5.0,
            image_scrape_timeout=1.0,
        ),
        lease=LeaseSettings(enabled=True, lock_dir=str(tmp_path / "locks"), name="feedbar-test"),
        logging=LoggingSettings(file_path=None, console_logging=False),
    )


def insert_feed(
    db: DatabaseConnection,
    url: str,
    name: str = "Test Feed",
    category: Optional[str] = None,
    is_active: bool = True,
    last_fetched_at: Optional[datetime] = None,
    icon_url: Optional[str] = None,
) -> int:
    """Insert a feed row the way an external subscription manager would."""
    with db.get_connection() as conn:
        cursor = conn.execute(
            """
            INSERT INTO feeds (url, name, category, icon_url, is_active, last_fetched_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                url,
                name,
                category,
                icon_url,
                int(is_active),
                to_db_timestamp(last_fetched_at),
                to_db_timestamp(utc_now()),
            ),
        )
        conn.commit()
        return cursor.lastrowid


@pytest.fixture
def make_feed(db_connection):
    """Factory fixture inserting feeds into the test database."""

    def _make(url: str, **kwargs) -> int:
        return insert_feed(db_connection, url, **kwargs)

    return _make


# ============================================================================
# HTTP Fixtures
# ============================================================================


Route = Union[tuple, BaseException]


def mock_response(status: int = 200, body: Union[str, bytes] = b"", reason: str = "OK"):
    """A response usable as ``async with session.get(...) as response``."""
    raw = body.encode("utf-8") if isinstance(body, str) else body

    response = MagicMock()
    response.status = status
    response.reason = reason
    response.read = AsyncMock(return_value=raw)
    response.text = AsyncMock(return_value=raw.decode("utf-8", errors="replace"))
    return response


class MockSession:
    """Scripted replacement for ``aiohttp.ClientSession.get``.

    Routes map a URL to ``(status, body)``, ``(status, body, delay)`` or an
    exception instance raised when the request is entered.
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None, default_status: int = 404):
        self.routes = dict(routes or {})
        self.default_status = default_status
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        route = self.routes.get(url, (self.default_status, b"", ))

        context = MagicMock()

        async def enter(*_args):
            if isinstance(route, BaseException):
                raise route
            status, body, *rest = route
            if rest:
                await asyncio.sleep(rest[0])
            return mock_response(status, body, reason="OK" if status == 200 else "Error")

        context.__aenter__ = AsyncMock(side_effect=enter)
        context.__aexit__ = AsyncMock(return_value=False)
        return context

    def count(self, url: str) -> int:
        return self.requested.count(url)


def connector_error(host: str, port: int = 443, reason: str = "Connection refused") -> aiohttp.ClientConnectorError:
    """The error aiohttp raises when a TCP connection cannot be opened."""
    connection_key = SimpleNamespace(host=host, port=port, ssl=True, is_ssl=True)
    return aiohttp.ClientConnectorError(connection_key, ConnectionRefusedError(111, reason))


@pytest.fixture
def mock_session():
    """Factory building a ``MockSession`` from routes."""

    def _make(routes=None, default_status: int = 404) -> MockSession:
        return MockSession(routes, default_status=default_status)

    return _make


# ============================================================================
# Sample Documents
# ============================================================================


def rss_document(items_xml: str = "", title: str = "Test RSS Feed") -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:content="http://purl.org/rss/1.0/modules/content/">
    <channel>
        <title>{title}</title>
        <link>https://example.com</link>
        <description>Test feed</description>
        {items_xml}
    </channel>
</rss>"""


def rss_item(
    link: str,
    title: str = "Test Article",
    pub_date: Optional[str] = None,
    description: str = "A short summary",
    extra: str = "",
) -> str:
    pub = f"<pubDate>{pub_date}</pubDate>" if pub_date else ""
    return f"""
        <item>
            <title>{title}</title>
            <link>{link}</link>
            <description>{description}</description>
            {pub}
            {extra}
        </item>"""


EMPTY_RSS_FEED = rss_document("")

NOT_A_FEED = "<html><head><title>Oops</title></head><body><p>Not a feed at all</p></body></html>"
