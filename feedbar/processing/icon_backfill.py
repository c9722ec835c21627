"""
Icon Backfill
=============

Periodic sub-pipeline that resolves a site icon for every feed that has none.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import aiohttp

from ..config.settings import FeedBarSettings, get_settings
from ..database.models import Feed
from ..ingestion.fetcher import FeedFetcher
from ..ingestion.icon_resolver import IconResolver
from ..storage.feed_repository import FeedRepository
from ..utils.exceptions import DatabaseError
from ..utils.logging import PerformanceLogger, get_logger_for_component


@dataclass
class IconBackfillResult:
    checked: int = 0
    updated: int = 0
    unresolved: int = 0
    store_errors: int = 0
    skipped: bool = False


class IconBackfill:
    """Writes resolved icon URLs back to feeds missing one."""

    def __init__(
        self,
        feed_repo: FeedRepository,
        settings: Optional[FeedBarSettings] = None,
        resolver: Optional[IconResolver] = None,
    ):
        self.feed_repo = feed_repo
        self.settings = settings or get_settings()
        self.resolver = resolver or IconResolver(
            timeout=self.settings.icons.timeout,
            user_agent=self.settings.ingestion.user_agent,
        )
        self.logger = get_logger_for_component("icon_backfill")

    @asynccontextmanager
    async def _session_scope(self, session: Optional[aiohttp.ClientSession]):
        if session is not None:
            yield session
            return
        fetcher = FeedFetcher(self.settings, timeout=self.settings.icons.timeout)
        async with fetcher.get_session(connection_limit=self.settings.icons.concurrency * 2) as owned:
            yield owned

    async def run(self, session: Optional[aiohttp.ClientSession] = None) -> IconBackfillResult:
        """Resolve and store icons for feeds without one.

        Raises:
            DatabaseError: If the feeds cannot be selected
        """
        result = IconBackfillResult()
        feeds = self.feed_repo.select_feeds_missing_icon()
        if not feeds:
            self.logger.info("All feeds already have icons")
            return result

        semaphore = asyncio.Semaphore(self.settings.icons.concurrency)

        with PerformanceLogger(self.logger, "icon backfill", feeds=len(feeds)):
            async with self._session_scope(session) as http:

                async def resolve(feed: Feed) -> None:
                    async with semaphore:
                        icon_url = await self.resolver.get_best_icon(http, feed.url)
                    result.checked += 1

                    if not icon_url:
                        result.unresolved += 1
                        return
                    try:
                        if self.feed_repo.set_icon(feed.id, icon_url):
                            result.updated += 1
                    except DatabaseError as e:
                        self.logger.error(f"Failed to store icon for feed {feed.id}: {e}")
                        result.store_errors += 1

                await asyncio.gather(*(resolve(feed) for feed in feeds))

        self.logger.info(
            f"Icon backfill: {result.updated} updated, {result.unresolved} unresolved "
            f"of {result.checked} checked"
        )
        return result
