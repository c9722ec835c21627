"""
Feed Fetcher
============

Timeout-bounded retrieval and parsing of one feed document. Never raises:
every outcome comes back as a ``FetchResult`` carrying either the parsed
entries (possibly none) or a coarse ``FetchErrorCode``.
"""

import asyncio
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

import aiohttp
import certifi
import feedparser

from ..config.settings import FeedBarSettings, get_settings
from ..database.models import utc_now
from ..utils.logging import get_logger_for_component
from .classifier import FetchErrorCode

FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/rdf+xml, "
    "application/xml;q=0.9, text/xml;q=0.9, */*;q=0.8"
)


@dataclass
class FetchResult:
    """Result of one feed fetch."""

    feed_url: str
    success: bool
    entries: List[Any] = field(default_factory=list)
    error_code: Optional[FetchErrorCode] = None
    error: Optional[str] = None
    fetch_time: Optional[datetime] = None

    def __post_init__(self):
        if not self.fetch_time:
            self.fetch_time = utc_now()

    @property
    def entry_count(self) -> int:
        return len(self.entries)


class FeedFetcher:
    """Fetches feed documents over a shared aiohttp session."""

    def __init__(self, settings: Optional[FeedBarSettings] = None, timeout: Optional[float] = None):
        """Initialize feed fetcher.

        Args:
            settings: Application settings (default: global settings)
            timeout: Per-document timeout in seconds (default from config)
        """
        self.settings = settings or get_settings()
        self.timeout = timeout or self.settings.ingestion.fetch_timeout
        self.user_agent = self.settings.ingestion.user_agent
        self.logger = get_logger_for_component("fetcher")

        self.ssl_context = ssl.create_default_context(cafile=certifi.where())

    def default_headers(self) -> dict:
        return {
            "User-Agent": self.user_agent,
            "Accept": FEED_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
        }

    @asynccontextmanager
    async def get_session(self, connection_limit: int = 20):
        """Get a configured aiohttp session shared by one batch run."""
        connector = aiohttp.TCPConnector(
            ssl=self.ssl_context,
            limit=connection_limit,
            limit_per_host=5,
            enable_cleanup_closed=True,
        )

        async with aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers=self.default_headers(),
        ) as session:
            yield session

    async def fetch(self, feed_url: str, session: aiohttp.ClientSession) -> FetchResult:
        """Fetch and parse a single feed.

        Args:
            feed_url: Canonical feed URL
            session: aiohttp session for the request

        Returns:
            FetchResult with entries, or with an error code on failure
        """
        start_time = utc_now()

        try:
            self.logger.debug(f"Fetching feed: {feed_url}")

            async with session.get(
                feed_url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                allow_redirects=True,
            ) as response:
                if response.status != 200:
                    code = FetchErrorCode.from_status(response.status)
                    error_msg = f"HTTP {response.status}: {response.reason}"
                    self.logger.warning(f"Feed fetch failed for {feed_url}: {error_msg}")
                    return FetchResult(
                        feed_url=feed_url,
                        success=False,
                        error_code=code,
                        error=error_msg,
                        fetch_time=start_time,
                    )

                content = await response.read()

        except asyncio.TimeoutError:
            error_msg = f"Request timeout after {self.timeout}s"
            self.logger.warning(f"Feed fetch timeout for {feed_url}: {error_msg}")
            return FetchResult(
                feed_url=feed_url,
                success=False,
                error_code=FetchErrorCode.TIMEOUT,
                error=error_msg,
                fetch_time=start_time,
            )

        except aiohttp.ClientResponseError as e:
            error_msg = f"HTTP {e.status}: {e.message}"
            self.logger.warning(f"Feed fetch failed for {feed_url}: {error_msg}")
            return FetchResult(
                feed_url=feed_url,
                success=False,
                error_code=FetchErrorCode.from_status(e.status),
                error=error_msg,
                fetch_time=start_time,
            )

        except (aiohttp.ClientConnectionError, OSError) as e:
            error_msg = f"Connection error: {e}"
            self.logger.warning(f"Feed fetch failed for {feed_url}: {error_msg}")
            return FetchResult(
                feed_url=feed_url,
                success=False,
                error_code=FetchErrorCode.UNKNOWN,
                error=error_msg,
                fetch_time=start_time,
            )

        except Exception as e:
            error_msg = f"Fetch error: {e}"
            self.logger.warning(f"Feed fetch failed for {feed_url}: {error_msg}")
            return FetchResult(
                feed_url=feed_url,
                success=False,
                error_code=FetchErrorCode.from_exception(e),
                error=error_msg,
                fetch_time=start_time,
            )

        return self._parse_document(feed_url, content, start_time)

    def _parse_document(self, feed_url: str, content: bytes, start_time: datetime) -> FetchResult:
        """Parse a fetched document with feedparser.

        A document that parses but has no entries is a successful empty
        result. A document with no entries that feedparser could not make
        sense of is malformed.
        """
        feed_data = feedparser.parse(content)
        entries = list(feed_data.get("entries", []))

        if not entries and self._is_unparseable(feed_data):
            bozo_exception = feed_data.get("bozo_exception")
            error_msg = f"Feed parse error: {bozo_exception or 'Invalid XML structure'}"
            self.logger.warning(f"Feed parse failed for {feed_url}: {error_msg}")
            return FetchResult(
                feed_url=feed_url,
                success=False,
                error_code=FetchErrorCode.MALFORMED_XML,
                error=error_msg,
                fetch_time=start_time,
            )

        if feed_data.get("bozo") and entries:
            self.logger.info(f"Feed has parse warnings but contains entries: {feed_url}")

        self.logger.info(
            f"Fetched {len(entries)} entries from {feed_url} "
            f"in {(utc_now() - start_time).total_seconds():.2f}s"
        )

        return FetchResult(
            feed_url=feed_url,
            success=True,
            entries=entries,
            fetch_time=start_time,
        )

    @staticmethod
    def _is_unparseable(feed_data: Any) -> bool:
        if not feed_data.get("version"):
            return True

        if feed_data.get("bozo"):
            bozo_exception = feed_data.get("bozo_exception")
            # Encoding overrides still yield a usable document
            if not isinstance(bozo_exception, feedparser.CharacterEncodingOverride):
                return True

        return False
