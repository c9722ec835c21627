"""
Batch Ingestion Orchestrator
============================

One ingestion run: select the next rotation batch of active feeds, process
every feed concurrently (fetch, normalize, resolve images, upsert, apply the
health transition), then run retention once all feeds have settled.

Each feed task has its own timeout and captures its own errors, so a slow
or broken feed never cancels or fails its siblings.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Set

import aiohttp

from ..config.settings import FeedBarSettings, get_settings
from ..database.models import Feed, Item, utc_now
from ..ingestion.classifier import FailureClass, FetchErrorCode, classify
from ..ingestion.fetcher import FeedFetcher, FetchResult
from ..ingestion.image_resolver import scrape_page_image
from ..ingestion.normalizer import normalize_entry
from ..storage.feed_error_repository import FeedErrorRepository
from ..storage.feed_repository import FeedRepository
from ..storage.item_repository import ItemRepository
from ..utils.exceptions import DatabaseError
from ..utils.logging import PerformanceLogger, get_logger_for_component
from .health import HealthEvent, HealthTransition, transition
from .retention import RetentionCleaner


@dataclass
class FeedOutcome:
    """What happened to one feed during a batch."""

    feed_id: int
    event: HealthEvent
    items_found: int = 0
    items_inserted: int = 0
    disabled: bool = False
    store_errors: int = 0
    error_code: Optional[str] = None


@dataclass
class BatchResult:
    """Result of one batch run."""

    processed: int = 0
    disabled: int = 0
    items_inserted: int = 0
    transient_failures: int = 0
    store_errors: int = 0
    items_deleted: int = 0
    skipped: bool = False
    duration_seconds: float = 0.0
    outcomes: List[FeedOutcome] = field(default_factory=list)

    def add(self, outcome: FeedOutcome) -> None:
        self.outcomes.append(outcome)
        self.processed += 1
        self.items_inserted += outcome.items_inserted
        self.store_errors += outcome.store_errors
        if outcome.disabled:
            self.disabled += 1
        if outcome.event is HealthEvent.TRANSIENT_ERROR:
            self.transient_failures += 1

    def summary(self) -> str:
        if self.skipped:
            return "skipped (another run holds the lease)"
        return (
            f"{self.processed} feeds processed, {self.disabled} disabled, "
            f"{self.items_inserted} new items, {self.transient_failures} transient failures, "
            f"{self.store_errors} store errors, {self.items_deleted} items expired"
        )


class BatchOrchestrator:
    """Runs ingestion batches against the store."""

    def __init__(
        self,
        feed_repo: FeedRepository,
        item_repo: ItemRepository,
        error_repo: FeedErrorRepository,
        settings: Optional[FeedBarSettings] = None,
        fetcher: Optional[FeedFetcher] = None,
        retention: Optional[RetentionCleaner] = None,
    ):
        """Initialize batch orchestrator.

        Args:
            feed_repo: Feed repository
            item_repo: Item repository
            error_repo: Feed error repository
            settings: Application settings (default: global settings)
            fetcher: Feed fetcher (default: built from settings)
            retention: Retention cleaner (default: built from settings)
        """
        self.feed_repo = feed_repo
        self.item_repo = item_repo
        self.error_repo = error_repo
        self.settings = settings or get_settings()
        self.fetcher = fetcher or FeedFetcher(self.settings)
        self.retention = retention or RetentionCleaner(item_repo, self.settings)
        self.logger = get_logger_for_component("orchestrator")

    @property
    def ingestion(self):
        return self.settings.ingestion

    @asynccontextmanager
    async def _session_scope(self, session: Optional[aiohttp.ClientSession]):
        if session is not None:
            yield session
            return
        async with self.fetcher.get_session(connection_limit=self.ingestion.batch_size * 2) as owned:
            yield owned

    async def run_batch(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """Run one ingestion batch.

        Args:
            session: Shared HTTP session (default: a session owned by this run)
            now: Processing time applied to every feed (default: current time)

        Returns:
            BatchResult with per-run counters

        Raises:
            DatabaseError: If the batch cannot be selected
        """
        now = now or utc_now()
        result = BatchResult()

        with PerformanceLogger(self.logger, "ingestion batch") as perf:
            feeds = self.feed_repo.select_active_feeds(self.ingestion.batch_size)
            if not feeds:
                self.logger.info("No active feeds due for processing")
                return result

            self.logger.info(f"Processing batch of {len(feeds)} feeds")

            async with self._session_scope(session) as http:
                outcomes = await asyncio.gather(
                    *(self._run_feed_task(feed, http, now) for feed in feeds),
                    return_exceptions=True,
                )

            for feed, outcome in zip(feeds, outcomes):
                if isinstance(outcome, BaseException):
                    # Only reachable if bookkeeping itself raised
                    self.logger.error(f"Feed {feed.id} task crashed: {outcome!r}")
                    outcome = FeedOutcome(feed_id=feed.id, event=HealthEvent.TRANSIENT_ERROR)
                result.add(outcome)

            try:
                result.items_deleted = self.retention.run(now)
            except DatabaseError as e:
                self.logger.error(f"Retention cleanup failed: {e}")
                result.store_errors += 1

        result.duration_seconds = perf.duration
        self.logger.info(f"Batch complete: {result.summary()}")
        return result

    async def _run_feed_task(self, feed: Feed, session: aiohttp.ClientSession, now: datetime) -> FeedOutcome:
        """Process one feed within its time budget; never raises."""
        log = get_logger_for_component("orchestrator", feed_id=feed.id, feed_url=feed.url)

        try:
            return await self.process_feed(feed, session, now)
        except asyncio.TimeoutError:
            log.warning(f"Feed fetch exceeded the {self.ingestion.feed_task_timeout}s task budget")
            code = FetchErrorCode.TIMEOUT.value
        except Exception as e:
            log.error(f"Feed processing failed: {e}", exc_info=True)
            code = FetchErrorCode.UNKNOWN.value

        outcome = FeedOutcome(feed_id=feed.id, event=HealthEvent.TRANSIENT_ERROR, error_code=code)
        self._apply_transition(feed, transition(feed, HealthEvent.TRANSIENT_ERROR, now), [], outcome, log)
        return outcome

    async def process_feed(self, feed: Feed, session: aiohttp.ClientSession, now: datetime) -> FeedOutcome:
        """Fetch, normalize and store one feed, then apply its health transition.

        ``feed_task_timeout`` bounds the fetch and the page scrapes together.
        A fetch that runs past it raises ``asyncio.TimeoutError``; scrapes
        still pending at the deadline are abandoned and their items are
        stored without an image.
        """
        log = get_logger_for_component("orchestrator", feed_id=feed.id, feed_url=feed.url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ingestion.feed_task_timeout

        fetch_result = await asyncio.wait_for(
            self.fetcher.fetch(feed.url, session),
            timeout=self.ingestion.feed_task_timeout,
        )

        if not fetch_result.success:
            return self._handle_fetch_failure(feed, fetch_result, now, log)

        items = self._normalize(feed, fetch_result, now)
        if not items:
            log.warning("Feed returned no usable items")
            outcome = FeedOutcome(feed_id=feed.id, event=HealthEvent.EMPTY, error_code="no_items")
            self._apply_transition(feed, transition(feed, HealthEvent.EMPTY, now), [], outcome, log)
            return outcome

        await self._resolve_missing_images(items, session, log, budget=deadline - loop.time())

        outcome = FeedOutcome(feed_id=feed.id, event=HealthEvent.ITEMS, items_found=len(items))
        self._apply_transition(feed, transition(feed, HealthEvent.ITEMS, now), items, outcome, log)
        log.info(f"Stored {outcome.items_inserted} new of {len(items)} items")
        return outcome

    def _handle_fetch_failure(self, feed: Feed, fetch_result: FetchResult, now: datetime, log) -> FeedOutcome:
        code = fetch_result.error_code or FetchErrorCode.from_message(fetch_result.error)

        if classify(code) is FailureClass.FATAL:
            event = HealthEvent.FATAL_ERROR
            log.warning(f"Fatal fetch error {code.value}: {fetch_result.error}")
        else:
            event = HealthEvent.TRANSIENT_ERROR
            log.info(f"Transient fetch error {code.value}: {fetch_result.error}")

        outcome = FeedOutcome(feed_id=feed.id, event=event, error_code=code.value)
        health = transition(feed, event, now, error_code=code.value, message=fetch_result.error)
        self._apply_transition(feed, health, [], outcome, log)
        return outcome

    def _normalize(self, feed: Feed, fetch_result: FetchResult, now: datetime) -> List[Item]:
        items = []
        for entry in fetch_result.entries:
            item = normalize_entry(
                entry,
                feed_id=feed.id,
                now=now,
                summary_max_length=self.ingestion.summary_max_length,
            )
            if item is not None:
                items.append(item)
        return items

    async def _resolve_missing_images(
        self,
        items: List[Item],
        session: aiohttp.ClientSession,
        log,
        budget: Optional[float] = None,
    ) -> None:
        """Page-scrape images for new items that the entry tiers left empty.

        Scrapes still running after ``budget`` seconds are cancelled.
        """
        missing = [item for item in items if not item.image_url]
        if not missing:
            return

        try:
            known: Set[str] = self.item_repo.select_existing_item_urls(item.url for item in missing)
        except DatabaseError as e:
            log.warning(f"Existing URL lookup failed, scraping all candidates: {e}")
            known = set()

        candidates = [item for item in missing if item.url not in known]
        if not candidates:
            return
        if budget is not None and budget <= 0:
            log.warning(f"No time left to scrape images for {len(candidates)} items")
            return

        semaphore = asyncio.Semaphore(self.ingestion.image_scrape_concurrency)

        async def scrape(item: Item) -> None:
            async with semaphore:
                item.image_url = await scrape_page_image(
                    session, item.url, timeout=self.ingestion.image_scrape_timeout
                )

        tasks = [asyncio.create_task(scrape(item)) for item in candidates]
        _, pending = await asyncio.wait(tasks, timeout=budget)
        if pending:
            log.warning(f"Abandoning {len(pending)} image scrapes at the task deadline")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        found = sum(1 for item in candidates if item.image_url)
        log.debug(f"Page scrape found images for {found} of {len(candidates)} items")

    def _apply_transition(
        self,
        feed: Feed,
        health: HealthTransition,
        items: List[Item],
        outcome: FeedOutcome,
        log,
    ) -> None:
        """Write a transition's side effects. Store errors are counted, never raised."""
        if health.upsert_items and items:
            try:
                outcome.items_inserted = self.item_repo.upsert_items(items)
            except DatabaseError as e:
                log.error(f"Item upsert failed: {e}")
                outcome.store_errors += 1

        if health.error_record is not None:
            try:
                self.error_repo.insert_feed_error(health.error_record)
            except DatabaseError as e:
                log.error(f"Recording feed error failed: {e}")
                outcome.store_errors += 1

        try:
            self.feed_repo.update_feed(feed.id, **health.feed_updates)
            outcome.disabled = health.disables_feed
        except DatabaseError as e:
            log.error(f"Feed bookkeeping update failed: {e}")
            outcome.store_errors += 1

        if outcome.disabled:
            log.warning(f"Feed disabled ({health.error_record.error_code})")
