"""
FeedBar Interval Scheduler
==========================

Runs the ingestion batch every ``ingestion.interval_minutes`` and the icon
backfill every ``icons.interval_minutes``, inside one long-lived process.

Features:
- Each job runs under a file lease; a tick that cannot take it is skipped
- A failed tick is logged and the loop keeps going
- Graceful stop via ``stop()``
"""

import asyncio
import time
from contextlib import contextmanager
from typing import Optional

from ..config.settings import FeedBarSettings, get_settings
from ..database.connection import DatabaseConnection
from ..processing.icon_backfill import IconBackfill, IconBackfillResult
from ..processing.orchestrator import BatchOrchestrator, BatchResult
from ..processing.retention import RetentionCleaner
from ..storage.feed_error_repository import FeedErrorRepository
from ..storage.feed_repository import FeedRepository
from ..storage.item_repository import ItemRepository
from ..utils.logging import get_logger_for_component
from ..utils.process_lock import ProcessLock


class IngestionScheduler:
    """Coordinates the periodic ingestion jobs."""

    def __init__(
        self,
        settings: Optional[FeedBarSettings] = None,
        db_connection: Optional[DatabaseConnection] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = get_logger_for_component("scheduler")
        self.db = db_connection or DatabaseConnection(
            self.settings.database.path, pool_size=self.settings.database.pool_size
        )

        self.feed_repo = FeedRepository(self.db)
        self.item_repo = ItemRepository(self.db)
        self.error_repo = FeedErrorRepository(self.db)

        self.retention = RetentionCleaner(self.item_repo, self.settings)
        self.orchestrator = BatchOrchestrator(
            self.feed_repo,
            self.item_repo,
            self.error_repo,
            settings=self.settings,
            retention=self.retention,
        )
        self.icon_backfill = IconBackfill(self.feed_repo, settings=self.settings)

        self._stop_event: Optional[asyncio.Event] = None

    @contextmanager
    def lease(self, job: str = "ingest"):
        """Hold the run lease for ``job``; yields False when another run has it."""
        lease_settings = self.settings.lease
        if not lease_settings.enabled:
            yield True
            return

        name = lease_settings.name if job == "ingest" else f"{lease_settings.name}-{job}"
        lock = ProcessLock(name, lease_settings.lock_dir)
        acquired = lock.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    async def run_ingestion(self) -> BatchResult:
        """Run one ingestion batch under the lease."""
        with self.lease("ingest") as acquired:
            if not acquired:
                self.logger.warning("Skipping ingestion tick: previous run still in progress")
                return BatchResult(skipped=True)
            return await self.orchestrator.run_batch()

    async def run_icon_backfill(self) -> IconBackfillResult:
        """Run one icon backfill under its own lease."""
        with self.lease("icons") as acquired:
            if not acquired:
                self.logger.warning("Skipping icon backfill: previous run still in progress")
                return IconBackfillResult(skipped=True)
            return await self.icon_backfill.run()

    def run_cleanup(self) -> int:
        """Run retention on its own, outside a batch."""
        with self.lease("ingest") as acquired:
            if not acquired:
                self.logger.warning("Skipping cleanup: ingestion run in progress")
                return 0
            return self.retention.run()

    async def _tick(self, name: str, job) -> None:
        try:
            result = await job()
            self.logger.info(f"{name} tick finished: {result}")
        except Exception as e:
            self.logger.error(f"{name} tick failed: {e}", exc_info=True)

    async def run_forever(self, run_icons: bool = True) -> None:
        """Loop until ``stop()`` is called."""
        self._stop_event = asyncio.Event()

        ingest_interval = self.settings.ingestion.interval_minutes * 60
        icon_interval = self.settings.icons.interval_minutes * 60

        self.logger.info(
            f"Scheduler started: ingestion every {self.settings.ingestion.interval_minutes} min, "
            f"icons every {self.settings.icons.interval_minutes} min"
        )

        next_ingest = time.monotonic()
        next_icons = time.monotonic() if run_icons else None

        while not self._stop_event.is_set():
            now = time.monotonic()

            if now >= next_ingest:
                await self._tick("ingestion", self.run_ingestion)
                next_ingest = time.monotonic() + ingest_interval

            if next_icons is not None and now >= next_icons:
                await self._tick("icon backfill", self.run_icon_backfill)
                next_icons = time.monotonic() + icon_interval

            due = [next_ingest] + ([next_icons] if next_icons is not None else [])
            delay = max(0.0, min(due) - time.monotonic())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Scheduler stopped")

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    def close(self) -> None:
        self.db.close_all_connections()
