"""
Tests for the database wrapper, timestamp encoding and the analytics schema.
"""

from datetime import datetime, timedelta, timezone

import pytest

from visitor_analytics.analytics.store import AnalyticsStore
from visitor_analytics.storage.database import Database, format_timestamp, parse_timestamp
from visitor_analytics.utils.errors import StorageError


class TestTimestamps:

    def test_aware_values_normalized_to_utc(self):
        local = datetime(2026, 3, 15, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(local) == "2026-03-15T12:30:00.000000"

    def test_lexical_order_is_chronological(self):
        earlier = format_timestamp(datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=timezone.utc))
        later = format_timestamp(datetime(2026, 1, 2, 3, 4, 5, 7, tzinfo=timezone.utc))
        assert earlier < later

    def test_parse_returns_aware_utc(self):
        parsed = parse_timestamp("2026-03-15T12:30:00.000250")
        assert parsed == datetime(2026, 3, 15, 12, 30, 0, 250, tzinfo=timezone.utc)
        assert parse_timestamp(None) is None


class TestDatabase:

    async def test_in_memory_database(self):
        async with Database(":memory:") as db:
            await db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
            await db.execute("INSERT INTO t (name) VALUES (?)", ("a",))

            assert await db.fetchval("SELECT COUNT(*) FROM t") == 1
            assert (await db.fetchone("SELECT name FROM t"))["name"] == "a"
            assert await db.fetchval("SELECT MAX(id) FROM t WHERE name = ?", ("zzz",), default=-1) == -1

    async def test_creates_parent_directory(self, temp_dir):
        db = Database(temp_dir / "nested" / "deeper" / "analytics.db")
        await db.connect()
        assert (temp_dir / "nested" / "deeper").is_dir()
        await db.close()

    async def test_unopenable_path(self, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")

        with pytest.raises(StorageError):
            await Database(blocker / "analytics.db").connect()


class TestAnalyticsStore:

    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        assert await store.ping() is True

    async def test_subject_queries_need_a_subject(self, store):
        assert await store.find_page_views() == []
        assert await store.find_sessions() == []
        assert await store.delete_subject() == {"page_views": 0, "sessions": 0}

    async def test_update_counts_changed_rows(self, store):
        started = format_timestamp(datetime(2026, 3, 15, tzinfo=timezone.utc))
        await store.start_session({
            "session_hash": "h1",
            "landing_page": "/",
            "current_page": "/",
            "device_type": "desktop",
            "is_bot": 0,
            "session_started_at": started,
            "page_view_count": 1,
        })

        assert await store.update_session("h1", "/next") == 1
        assert await store.close_session("h1", started) == 1
        assert await store.update_session("h1", "/late") == 0
        assert await store.close_session("h1", started) == 0
        assert await store.update_session("missing", "/") == 0

        session = await store.get_session("h1")
        assert session.page_view_count == 2
        assert session.exit_page == "/next"
