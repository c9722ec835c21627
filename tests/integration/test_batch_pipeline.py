"""
End-to-End Batch Pipeline Tests
===============================

Full ingestion batches against a temporary database and a scripted HTTP
session: feed health transitions, deduplication across runs, image
fallbacks, isolation between feeds and retention.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from feedbar.config.settings import IngestionSettings
from feedbar.database.models import Item
from feedbar.processing.orchestrator import BatchOrchestrator
from feedbar.scheduler.interval_scheduler import IngestionScheduler
from feedbar.utils.exceptions import DatabaseError
from feedbar.utils.process_lock import ProcessLock

from conftest import EMPTY_RSS_FEED, NOT_A_FEED, connector_error, rss_document, rss_item

pytestmark = pytest.mark.integration

NOW = datetime(2024, 9, 7, 12, 0, tzinfo=timezone.utc)
PUB_DATE = "Sat, 07 Sep 2024 08:00:00 GMT"

GOOD_FEED = "https://good.example.com/rss"
ARTICLE_A = "https://good.example.com/a"
ARTICLE_B = "https://good.example.com/b"


def good_document():
    return rss_document(
        rss_item(
            ARTICLE_A,
            title="Story A",
            pub_date=PUB_DATE,
            extra='<media:thumbnail url="https://cdn.example.com/a.jpg"/>',
        )
        + rss_item(ARTICLE_B, title="Story B", pub_date=PUB_DATE)
    )


@pytest.fixture
def orchestrator(feed_repo, item_repo, error_repo, test_settings):
    return BatchOrchestrator(feed_repo, item_repo, error_repo, settings=test_settings)


class TestFeedHealthScenarios:

    @pytest.mark.asyncio
    async def test_not_found_disables_feed(self, orchestrator, make_feed, feed_repo, error_repo, item_repo, mock_session):
        feed_id = make_feed("https://gone.example.com/rss", name="Gone Daily")
        session = mock_session({"https://gone.example.com/rss": (404, "")})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.processed == 1
        assert result.disabled == 1
        feed = feed_repo.get_feed_by_id(feed_id)
        assert feed.is_active is False
        assert feed.last_fetched_at == NOW
        errors = error_repo.get_errors_for_feed(feed_id)
        assert [e.error_code for e in errors] == ["not_found"]
        assert errors[0].feed_name == "Gone Daily"
        assert item_repo.count_items() == 0

    @pytest.mark.asyncio
    async def test_empty_document_disables_feed(self, orchestrator, make_feed, feed_repo, error_repo, mock_session):
        feed_id = make_feed("https://empty.example.com/rss")
        session = mock_session({"https://empty.example.com/rss": (200, EMPTY_RSS_FEED)})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.disabled == 1
        assert feed_repo.get_feed_by_id(feed_id).is_active is False
        assert [e.error_code for e in error_repo.get_errors_for_feed(feed_id)] == ["no_items"]

    @pytest.mark.asyncio
    async def test_malformed_document_disables_feed(self, orchestrator, make_feed, error_repo, mock_session):
        feed_id = make_feed("https://html.example.com/rss")
        session = mock_session({"https://html.example.com/rss": (200, NOT_A_FEED)})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.disabled == 1
        assert [e.error_code for e in error_repo.get_errors_for_feed(feed_id)] == ["malformed_xml"]

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, orchestrator, make_feed, feed_repo, error_repo, mock_session):
        earlier = NOW - timedelta(hours=1)
        feed_id = make_feed("https://slow.example.com/rss", last_fetched_at=earlier)
        session = mock_session({"https://slow.example.com/rss": asyncio.TimeoutError()})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.disabled == 0
        assert result.transient_failures == 1
        feed = feed_repo.get_feed_by_id(feed_id)
        assert feed.is_active is True
        assert feed.last_fetched_at == NOW
        assert error_repo.get_errors_for_feed(feed_id) == []

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, orchestrator, make_feed, feed_repo, mock_session):
        feed_id = make_feed("https://flaky.example.com/rss")
        session = mock_session({"https://flaky.example.com/rss": (503, "")})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.transient_failures == 1
        assert feed_repo.get_feed_by_id(feed_id).is_active is True

    @pytest.mark.asyncio
    async def test_per_feed_task_timeout(self, feed_repo, item_repo, error_repo, test_settings, make_feed, mock_session):
        test_settings.ingestion = IngestionSettings(fetch_timeout=0.1, feed_task_timeout=0.2)
        orchestrator = BatchOrchestrator(feed_repo, item_repo, error_repo, settings=test_settings)
        feed_id = make_feed("https://hang.example.com/rss")
        session = mock_session({"https://hang.example.com/rss": (200, good_document(), 2.0)})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.transient_failures == 1
        feed = feed_repo.get_feed_by_id(feed_id)
        assert feed.is_active is True
        assert feed.last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_connection_failure_never_disables(self, orchestrator, make_feed, feed_repo, error_repo, mock_session):
        feed_id = make_feed("https://www.404media.co/rss")
        session = mock_session({"https://www.404media.co/rss": connector_error("www.404media.co")})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.disabled == 0
        assert result.transient_failures == 1
        assert feed_repo.get_feed_by_id(feed_id).is_active is True
        assert error_repo.get_errors_for_feed(feed_id) == []

    @pytest.mark.asyncio
    async def test_inactive_feed_not_selected(self, orchestrator, make_feed, mock_session):
        make_feed("https://disabled.example.com/rss", is_active=False)
        session = mock_session()

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.processed == 0
        assert session.requested == []


class TestItemScenarios:

    @pytest.mark.asyncio
    async def test_items_stored_with_images(self, orchestrator, make_feed, item_repo, feed_repo, mock_session):
        feed_id = make_feed(GOOD_FEED)
        og_page = '<html><head><meta property="og:image" content="https://cdn.example.com/b-og.jpg"></head></html>'
        session = mock_session({GOOD_FEED: (200, good_document()), ARTICLE_B: (200, og_page)})

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.items_inserted == 2
        assert feed_repo.get_feed_by_id(feed_id).is_active is True
        assert item_repo.get_item_by_url(ARTICLE_A).image_url == "https://cdn.example.com/a.jpg"
        assert item_repo.get_item_by_url(ARTICLE_B).image_url == "https://cdn.example.com/b-og.jpg"
        # Entry-level image found, no page fetch needed
        assert session.count(ARTICLE_A) == 0

    @pytest.mark.asyncio
    async def test_missing_image_everywhere_stores_null(self, orchestrator, make_feed, item_repo, mock_session):
        make_feed(GOOD_FEED)
        session = mock_session({GOOD_FEED: (200, good_document())}, default_status=500)

        await orchestrator.run_batch(session=session, now=NOW)

        assert item_repo.get_item_by_url(ARTICLE_B).image_url is None

    @pytest.mark.asyncio
    async def test_enclosure_beats_thumbnail(self, orchestrator, make_feed, item_repo, mock_session):
        make_feed(GOOD_FEED)
        document = rss_document(
            rss_item(
                ARTICLE_A,
                pub_date=PUB_DATE,
                extra=(
                    '<enclosure url="https://cdn.example.com/A.jpg" type="image/jpeg" length="1"/>'
                    '<media:thumbnail url="https://cdn.example.com/B.jpg"/>'
                ),
            )
        )
        session = mock_session({GOOD_FEED: (200, document)})

        await orchestrator.run_batch(session=session, now=NOW)

        assert item_repo.get_item_by_url(ARTICLE_A).image_url == "https://cdn.example.com/A.jpg"

    @pytest.mark.asyncio
    async def test_slow_scrapes_do_not_lose_items(self, feed_repo, item_repo, error_repo, test_settings, make_feed, mock_session):
        test_settings.ingestion = IngestionSettings(
            fetch_timeout=0.5,
            feed_task_timeout=1.0,
            image_scrape_concurrency=1,
        )
        orchestrator = BatchOrchestrator(feed_repo, item_repo, error_repo, settings=test_settings)
        feed_id = make_feed(GOOD_FEED)
        articles = [f"https://good.example.com/slow-{i}" for i in range(4)]
        og_page = '<html><head><meta property="og:image" content="https://cdn.example.com/og.jpg"></head></html>'
        routes = {url: (200, og_page, 0.6) for url in articles}
        routes[GOOD_FEED] = (200, rss_document("".join(rss_item(url, pub_date=PUB_DATE) for url in articles)))
        session = mock_session(routes)

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.items_inserted == 4
        assert result.transient_failures == 0
        assert item_repo.count_items() == 4
        images = [item_repo.get_item_by_url(url).image_url for url in articles]
        assert None in images
        feed = feed_repo.get_feed_by_id(feed_id)
        assert feed.is_active is True
        assert feed.last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_duplicate_url_across_runs(self, orchestrator, make_feed, item_repo, mock_session):
        make_feed(GOOD_FEED)
        session = mock_session({GOOD_FEED: (200, good_document())}, default_status=500)

        first = await orchestrator.run_batch(session=session, now=NOW)
        original_id = item_repo.get_item_by_url(ARTICLE_A).id
        second = await orchestrator.run_batch(session=session, now=NOW + timedelta(minutes=10))

        assert first.items_inserted == 2
        assert second.items_inserted == 0
        assert item_repo.count_items() == 2
        assert item_repo.get_item_by_url(ARTICLE_A).id == original_id
        # Known URLs are not scraped again
        assert session.count(ARTICLE_B) == 1

    @pytest.mark.asyncio
    async def test_same_url_in_two_feeds_stored_once(self, orchestrator, make_feed, item_repo, mock_session):
        make_feed("https://one.example.com/rss")
        make_feed("https://two.example.com/rss")
        shared = rss_document(rss_item("https://wire.example.com/story", pub_date=PUB_DATE))
        session = mock_session(
            {"https://one.example.com/rss": (200, shared), "https://two.example.com/rss": (200, shared)},
            default_status=500,
        )

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.items_inserted == 1
        assert item_repo.count_items() == 1


class TestBatchBehaviour:

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, orchestrator, make_feed, feed_repo, item_repo, mock_session):
        dead = make_feed("https://dead.example.com/rss")
        slow = make_feed("https://slow.example.com/rss")
        good = make_feed(GOOD_FEED)
        session = mock_session(
            {
                "https://dead.example.com/rss": (404, ""),
                "https://slow.example.com/rss": asyncio.TimeoutError(),
                GOOD_FEED: (200, good_document()),
            },
            default_status=500,
        )

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.processed == 3
        assert result.disabled == 1
        assert result.transient_failures == 1
        assert result.items_inserted == 2
        assert feed_repo.get_feed_by_id(dead).is_active is False
        assert feed_repo.get_feed_by_id(slow).is_active is True
        assert feed_repo.get_feed_by_id(good).is_active is True
        for feed_id in (dead, slow, good):
            assert feed_repo.get_feed_by_id(feed_id).last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_batch_size_and_rotation(self, feed_repo, item_repo, error_repo, test_settings, make_feed, mock_session):
        test_settings.ingestion = IngestionSettings(batch_size=2)
        orchestrator = BatchOrchestrator(feed_repo, item_repo, error_repo, settings=test_settings)
        urls = [f"https://site{i}.example.com/rss" for i in range(3)]
        for url in urls:
            make_feed(url)
        session = mock_session({url: (503, "") for url in urls})

        first = await orchestrator.run_batch(session=session, now=NOW)
        second = await orchestrator.run_batch(session=session, now=NOW + timedelta(minutes=10))

        assert first.processed == 2
        assert second.processed == 2
        assert session.requested[:2] == urls[:2]
        assert session.requested[2] == urls[2]

    @pytest.mark.asyncio
    async def test_retention_runs_after_batch(self, orchestrator, make_feed, item_repo, mock_session):
        item_repo.upsert_items([
            Item(feed_id=1, title="Ancient", url="https://old.example.com/x", published_at=NOW - timedelta(days=10))
        ])
        make_feed(GOOD_FEED)
        session = mock_session({GOOD_FEED: (200, good_document())}, default_status=500)

        result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.items_deleted == 1
        assert item_repo.get_item_by_url("https://old.example.com/x") is None

    @pytest.mark.asyncio
    async def test_no_feeds_is_a_no_op(self, orchestrator, item_repo, mock_session):
        item_repo.upsert_items([
            Item(feed_id=1, title="Ancient", url="https://old.example.com/x", published_at=NOW - timedelta(days=10))
        ])

        result = await orchestrator.run_batch(session=mock_session(), now=NOW)

        assert result.processed == 0
        assert result.items_deleted == 0
        assert item_repo.count_items() == 1

    @pytest.mark.asyncio
    async def test_store_error_does_not_disable_feed(self, orchestrator, make_feed, feed_repo, item_repo, mock_session):
        feed_id = make_feed(GOOD_FEED)
        session = mock_session({GOOD_FEED: (200, good_document())}, default_status=500)

        with patch.object(item_repo, "upsert_items", side_effect=DatabaseError("database is locked")):
            result = await orchestrator.run_batch(session=session, now=NOW)

        assert result.store_errors == 1
        assert result.disabled == 0
        feed = feed_repo.get_feed_by_id(feed_id)
        assert feed.is_active is True
        assert feed.last_fetched_at == NOW


class TestSchedulerLease:

    @pytest.mark.asyncio
    async def test_tick_skipped_while_lease_held(self, test_settings, db_connection, make_feed):
        make_feed(GOOD_FEED)
        scheduler = IngestionScheduler(test_settings, db_connection)
        holder = ProcessLock(test_settings.lease.name, test_settings.lease.lock_dir)
        assert holder.acquire()

        try:
            result = await scheduler.run_ingestion()
        finally:
            holder.release()

        assert result.skipped is True
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_tick_runs_when_lease_free(self, test_settings, db_connection, make_feed, mock_session):
        make_feed("https://gone.example.com/rss")
        scheduler = IngestionScheduler(test_settings, db_connection)
        session = mock_session({"https://gone.example.com/rss": (404, "")})
        original = scheduler.orchestrator.run_batch

        async def run_with_session():
            return await original(session=session, now=NOW)

        with patch.object(scheduler.orchestrator, "run_batch", side_effect=run_with_session):
            result = await scheduler.run_ingestion()

        assert result.skipped is False
        assert result.disabled == 1
