"""
Tests for Repository Components
===============================

Test suite for FeedRepository, ItemRepository and FeedErrorRepository
against a temporary SQLite database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from feedbar.database.models import FeedErrorRecord, Item
from feedbar.utils.exceptions import DatabaseError

NOW = datetime(2024, 9, 7, 12, 0, tzinfo=timezone.utc)


def make_item(url: str, feed_id: int = 1, published_at: datetime = NOW, **kwargs) -> Item:
    return Item(feed_id=feed_id, title=kwargs.pop("title", "Title"), url=url, published_at=published_at, **kwargs)


class TestFeedRepository:
    """Test suite for FeedRepository."""

    def test_select_active_feeds_rotation_order(self, feed_repo, make_feed):
        older = make_feed("https://a.example.com/feed", last_fetched_at=NOW - timedelta(hours=2))
        newer = make_feed("https://b.example.com/feed", last_fetched_at=NOW - timedelta(hours=1))
        never = make_feed("https://c.example.com/feed")
        make_feed("https://d.example.com/feed", is_active=False)

        feeds = feed_repo.select_active_feeds(limit=10)

        assert [feed.id for feed in feeds] == [never, older, newer]
        assert all(feed.is_active for feed in feeds)

    def test_select_active_feeds_limit(self, feed_repo, make_feed):
        for i in range(5):
            make_feed(f"https://site{i}.example.com/feed")

        assert len(feed_repo.select_active_feeds(limit=3)) == 3

    def test_never_fetched_ties_broken_by_id(self, feed_repo, make_feed):
        first = make_feed("https://a.example.com/feed")
        second = make_feed("https://b.example.com/feed")

        feeds = feed_repo.select_active_feeds(limit=10)

        assert [feed.id for feed in feeds] == [first, second]

    def test_update_feed(self, feed_repo, make_feed):
        feed_id = make_feed("https://a.example.com/feed")

        assert feed_repo.update_feed(feed_id, is_active=False, last_fetched_at=NOW) is True

        feed = feed_repo.get_feed_by_id(feed_id)
        assert feed.is_active is False
        assert feed.last_fetched_at == NOW

    def test_update_missing_feed_returns_false(self, feed_repo):
        assert feed_repo.update_feed(999, last_fetched_at=NOW) is False

    def test_update_feed_rejects_unknown_fields(self, feed_repo, make_feed):
        feed_id = make_feed("https://a.example.com/feed")

        with pytest.raises(ValueError):
            feed_repo.update_feed(feed_id, name="Renamed")

    def test_feeds_missing_icon(self, feed_repo, make_feed):
        missing = make_feed("https://a.example.com/feed")
        make_feed("https://b.example.com/feed", icon_url="https://b.example.com/favicon.ico")
        make_feed("https://c.example.com/feed", is_active=False)

        feeds = feed_repo.select_feeds_missing_icon()

        assert [feed.id for feed in feeds] == [missing]

        feed_repo.set_icon(missing, "https://a.example.com/icon.png")
        assert feed_repo.select_feeds_missing_icon() == []


class TestItemRepository:
    """Test suite for ItemRepository."""

    def test_upsert_counts_only_new_rows(self, item_repo):
        items = [make_item("https://example.com/1"), make_item("https://example.com/2")]

        assert item_repo.upsert_items(items) == 2
        assert item_repo.upsert_items(items) == 0
        assert item_repo.count_items() == 2

    def test_first_write_wins(self, item_repo):
        item_repo.upsert_items([make_item("https://example.com/1", title="Original")])
        item_repo.upsert_items([make_item("https://example.com/1", feed_id=2, title="Changed")])

        stored = item_repo.get_item_by_url("https://example.com/1")
        assert stored.title == "Original"
        assert stored.feed_id == 1

    def test_same_url_from_two_feeds_stored_once(self, item_repo):
        inserted = item_repo.upsert_items([
            make_item("https://example.com/shared", feed_id=1),
            make_item("https://example.com/shared", feed_id=2),
        ])

        assert inserted == 1
        assert item_repo.count_items() == 1

    def test_upsert_empty(self, item_repo):
        assert item_repo.upsert_items([]) == 0

    def test_select_existing_item_urls(self, item_repo):
        item_repo.upsert_items([make_item("https://example.com/known")])

        existing = item_repo.select_existing_item_urls(
            ["https://example.com/known", "https://example.com/new"]
        )

        assert existing == {"https://example.com/known"}
        assert item_repo.select_existing_item_urls([]) == set()

    def test_delete_items_older_than(self, item_repo):
        item_repo.upsert_items([
            make_item("https://example.com/old", published_at=NOW - timedelta(days=4)),
            make_item("https://example.com/edge", published_at=NOW - timedelta(days=3)),
            make_item("https://example.com/fresh", published_at=NOW - timedelta(hours=1)),
        ])

        deleted = item_repo.delete_items_older_than(NOW - timedelta(days=3))

        assert deleted == 1
        assert item_repo.get_item_by_url("https://example.com/old") is None
        assert item_repo.get_item_by_url("https://example.com/edge") is not None

    def test_get_recent_items_joins_feed(self, item_repo, make_feed):
        feed_id = make_feed("https://www.example.com/feed", name="Example News", category="Tech")
        item_repo.upsert_items([
            make_item("https://example.com/older", feed_id=feed_id, published_at=NOW - timedelta(hours=2)),
            make_item("https://example.com/newer", feed_id=feed_id, published_at=NOW),
            make_item("https://example.com/orphan", feed_id=999, published_at=NOW - timedelta(hours=1)),
        ])

        rows = item_repo.get_recent_items(limit=10)

        assert [row["url"] for row in rows] == [
            "https://example.com/newer",
            "https://example.com/orphan",
            "https://example.com/older",
        ]
        assert rows[0]["feed_name"] == "Example News"
        assert rows[0]["feed_category"] == "Tech"
        assert rows[1]["feed_name"] is None

    def test_write_failure_raises_database_error(self, item_repo, db_connection):
        with db_connection.get_connection() as conn:
            conn.execute("DROP TABLE items")
            conn.commit()

        with pytest.raises(DatabaseError):
            item_repo.upsert_items([make_item("https://example.com/1")])


class TestFeedErrorRepository:
    """Test suite for FeedErrorRepository."""

    def test_insert_and_read_back(self, error_repo):
        record = FeedErrorRecord(
            feed_id=5,
            feed_name="Broken",
            feed_url="https://broken.example.com/feed",
            error_code="not_found",
            message="HTTP 404: Not Found",
            created_at=NOW,
        )

        row_id = error_repo.insert_feed_error(record)

        assert row_id > 0
        stored = error_repo.get_errors_for_feed(5)
        assert len(stored) == 1
        assert stored[0].error_code == "not_found"
        assert stored[0].created_at == NOW

    def test_recent_errors_newest_first(self, error_repo):
        for offset, code in enumerate(["not_found", "no_items", "gone"]):
            error_repo.insert_feed_error(
                FeedErrorRecord(feed_id=offset, error_code=code, created_at=NOW + timedelta(minutes=offset))
            )

        codes = [record.error_code for record in error_repo.get_recent_errors(limit=2)]

        assert codes == ["gone", "no_items"]
