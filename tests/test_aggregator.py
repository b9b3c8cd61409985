"""
Tests for statistical aggregation.
"""

from datetime import date, timedelta

import pytest

from visitor_analytics.analytics.aggregator import DURATION_BUCKETS, StatsAggregator, percentage

from fixtures.analytics_fixtures import AnalyticsFixtures


@pytest.fixture
def aggregator(config, store, clock):
    return StatsAggregator(config, store, clock=clock)


class TestPercentage:

    def test_rounding(self):
        assert percentage(1, 3) == 33.33
        assert percentage(2, 3) == 66.67

    def test_empty_total(self):
        assert percentage(0, 0) == 0.0
        assert isinstance(percentage(0, 0), float)


class TestPageViewStats:

    async def test_totals_exclude_bots(self, aggregator, store, clock):
        now = clock()
        await AnalyticsFixtures.seed_page_view(store, now, "/", session_id="s1", user_id=1, response_time_ms=100)
        await AnalyticsFixtures.seed_page_view(store, now, "/a", session_id="s1", user_id=1, response_time_ms=300)
        await AnalyticsFixtures.seed_page_view(store, now, "/b", session_id="s2")
        await AnalyticsFixtures.seed_page_view(store, now, "/", session_id="s3", is_bot=True, response_time_ms=9000)

        stats = await aggregator.get_page_view_stats()
        assert stats["total_views"] == 3
        assert stats["unique_users"] == 1
        assert stats["unique_sessions"] == 2
        assert stats["avg_response_time_ms"] == 200.0
        assert stats["avg_page_load_time_ms"] is None

    async def test_date_bounds_include_whole_days(self, aggregator, store, clock):
        today = clock().date()
        late_yesterday = clock() - timedelta(days=1) + timedelta(hours=11, minutes=59)
        await AnalyticsFixtures.seed_page_view(store, late_yesterday, "/")
        await AnalyticsFixtures.seed_page_view(store, clock() - timedelta(days=3), "/")

        yesterday = today - timedelta(days=1)
        assert (await aggregator.get_page_view_stats(yesterday, yesterday))["total_views"] == 1
        assert (await aggregator.get_page_view_stats(today - timedelta(days=3), today))["total_views"] == 2
        assert (await aggregator.get_page_view_stats(today, today))["total_views"] == 0

    async def test_datetime_end_is_inclusive(self, aggregator, store, clock):
        await AnalyticsFixtures.seed_page_view(store, clock(), "/")
        assert (await aggregator.get_page_view_stats(end=clock()))["total_views"] == 1
        assert (await aggregator.get_page_view_stats(end=clock() - timedelta(microseconds=1)))["total_views"] == 0


class TestBreakdowns:

    async def test_popular_pages_break_ties_by_path(self, aggregator, store, clock):
        now = clock()
        for path, views in (("/c", 2), ("/a", 3), ("/b", 2), ("/d", 1)):
            for _ in range(views):
                await AnalyticsFixtures.seed_page_view(store, now, path)
        await AnalyticsFixtures.seed_page_view(store, now, "/d", is_bot=True)
        await AnalyticsFixtures.seed_page_view(store, now, "/d", is_bot=True)

        pages = await aggregator.get_popular_pages(limit=3)
        assert pages == [
            {"path": "/a", "views": 3},
            {"path": "/b", "views": 2},
            {"path": "/c", "views": 2},
        ]

    async def test_device_breakdown(self, aggregator, store, clock):
        now = clock()
        for device in ("desktop", "mobile", "mobile", "tablet"):
            await AnalyticsFixtures.seed_page_view(store, now, "/", device_type=device)

        assert await aggregator.get_device_breakdown() == [
            {"device_type": "mobile", "views": 2},
            {"device_type": "desktop", "views": 1},
            {"device_type": "tablet", "views": 1},
        ]

    async def test_browser_breakdown(self, aggregator, store, clock):
        await AnalyticsFixtures.seed_page_view(store, clock(), "/")
        assert await aggregator.get_browser_breakdown() == [{"browser_family": "Chrome", "views": 1}]

    async def test_hashed_referrers_are_external(self, aggregator, store, clock):
        await AnalyticsFixtures.seed_page_view(store, clock(), "/", referrer="5f2a...")
        await AnalyticsFixtures.seed_page_view(store, clock(), "/")

        assert await aggregator.get_referrer_stats() == [
            {"referrer": "5f2a...", "views": 1, "referrer_type": "External"}
        ]

    async def test_session_breakdowns(self, aggregator, store, clock):
        now = clock()
        await AnalyticsFixtures.seed_session(store, now, landing_page="/", exit_page="/pricing", device_type="mobile")
        await AnalyticsFixtures.seed_session(store, now, landing_page="/", exit_page="/docs")
        await AnalyticsFixtures.seed_session(store, now, landing_page="/blog", duration=timedelta(seconds=5))

        assert await aggregator.get_landing_pages() == [
            {"landing_page": "/", "sessions": 2},
            {"landing_page": "/blog", "sessions": 1},
        ]
        assert await aggregator.get_exit_pages() == [
            {"exit_page": "/docs", "sessions": 1},
            {"exit_page": "/pricing", "sessions": 1},
        ]
        assert await aggregator.get_session_device_breakdown() == [
            {"device_type": "desktop", "sessions": 2},
            {"device_type": "mobile", "sessions": 1},
        ]


class TestSessionStats:

    async def test_bounce_rate_and_durations(self, aggregator, store, clock):
        now = clock()
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=60), page_view_count=1)
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=180), page_view_count=3)
        await AnalyticsFixtures.seed_session(store, now, page_view_count=1)
        await AnalyticsFixtures.seed_session(store, now, page_view_count=5, user_id=9)
        await AnalyticsFixtures.seed_session(store, now, page_view_count=1, is_bot=True)

        stats = await aggregator.get_session_stats()
        assert stats["total_sessions"] == 4
        assert stats["closed_sessions"] == 2
        assert stats["bounce_sessions"] == 2
        assert stats["bounce_rate"] == 50.0
        assert stats["unique_users"] == 1
        assert stats["avg_duration_seconds"] == 120.0
        assert stats["avg_duration_minutes"] == 2.0
        assert stats["avg_page_views"] == 2.5

    async def test_bounces_can_be_left_uncounted(self, make_config, store, clock):
        aggregator = StatsAggregator(make_config({"sessions": {"count_bounces": False}}), store, clock=clock)
        await AnalyticsFixtures.seed_session(store, clock(), page_view_count=1)
        await AnalyticsFixtures.seed_session(store, clock(), page_view_count=4)

        stats = await aggregator.get_session_stats()
        assert stats["total_sessions"] == 2
        assert stats["bounce_sessions"] is None
        assert stats["bounce_rate"] is None
        assert (await aggregator.get_engagement_metrics())["multi_page_rate"] == 50.0

    async def test_durations_are_whole_seconds(self, aggregator, store, clock):
        """Test sub-second remainders are truncated, as on Session.duration_seconds."""
        now = clock()
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=59, milliseconds=900))
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=61, milliseconds=200))

        stats = await aggregator.get_session_stats()
        assert stats["avg_duration_seconds"] == 60.0

        distribution = {row["duration_range"]: row["sessions"] for row in await aggregator.get_duration_distribution()}
        assert distribution["30-60s"] == 1
        assert distribution["1-5m"] == 1

    async def test_range_limits_sessions(self, aggregator, store, clock):
        today = clock().date()
        await AnalyticsFixtures.seed_session(store, clock(), page_view_count=2)
        await AnalyticsFixtures.seed_session(store, clock() - timedelta(days=5), page_view_count=1)

        stats = await aggregator.get_session_stats(today, today)
        assert stats["total_sessions"] == 1
        assert stats["bounce_rate"] == 0.0

    async def test_empty_range(self, aggregator):
        stats = await aggregator.get_session_stats()
        assert stats["total_sessions"] == 0
        assert stats["bounce_rate"] == 0.0
        assert stats["avg_duration_seconds"] is None
        assert stats["avg_page_views"] is None

        engagement = await aggregator.get_engagement_metrics()
        assert engagement["engagement_rate"] == 0.0
        assert engagement["multi_page_rate"] == 0.0


class TestEngagement:

    async def test_threshold_is_strict(self, aggregator, store, clock):
        """Test exactly threshold seconds is not engaged."""
        now = clock()
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=301))
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=300), page_view_count=2)
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=10))
        await AnalyticsFixtures.seed_session(store, now, page_view_count=6)

        metrics = await aggregator.get_engagement_metrics()
        assert metrics["total_sessions"] == 4
        assert metrics["engaged_sessions"] == 1
        assert metrics["engagement_rate"] == 25.0
        assert metrics["multi_page_sessions"] == 2
        assert metrics["multi_page_rate"] == 50.0

    async def test_page_view_criterion(self, make_config, store, clock):
        aggregator = StatsAggregator(
            make_config({"sessions": {"engagement_min_page_views": 3}}), store, clock=clock
        )
        now = clock()
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=20), page_view_count=3)
        await AnalyticsFixtures.seed_session(store, now, page_view_count=2)

        metrics = await aggregator.get_engagement_metrics()
        assert metrics["engaged_sessions"] == 1
        assert metrics["engagement_rate"] == 50.0


class TestDurationDistribution:

    async def test_every_bucket_listed_in_order(self, aggregator, store, clock):
        now = clock()
        for seconds in (10, 30, 120, 400, 900, 3600):
            await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=seconds))
        await AnalyticsFixtures.seed_session(store, now)

        distribution = await aggregator.get_duration_distribution()
        assert [row["duration_range"] for row in distribution] == [label for label, _ in DURATION_BUCKETS]
        assert [row["sessions"] for row in distribution] == [1, 1, 1, 1, 1, 1]

    async def test_empty_distribution_zero_filled(self, aggregator):
        distribution = await aggregator.get_duration_distribution()
        assert len(distribution) == 6
        assert all(row["sessions"] == 0 for row in distribution)


class TestTrends:

    async def test_page_view_trends_zero_filled(self, aggregator, store, clock):
        """Test one entry per day, oldest first, empty days included."""
        now = clock()
        await AnalyticsFixtures.seed_page_view(store, now, "/")
        await AnalyticsFixtures.seed_page_view(store, now, "/")
        await AnalyticsFixtures.seed_page_view(store, now - timedelta(days=2), "/")
        await AnalyticsFixtures.seed_page_view(store, now - timedelta(days=10), "/")

        trends = await aggregator.get_page_view_trends(days=7)
        assert len(trends) == 7
        assert trends[0]["date"] == "2026-03-09"
        assert trends[-1] == {"date": "2026-03-15", "views": 2}
        assert trends[-3] == {"date": "2026-03-13", "views": 1}
        assert sum(day["views"] for day in trends) == 3

    async def test_empty_store_still_yields_every_day(self, aggregator):
        trends = await aggregator.get_page_view_trends(7, date(2026, 3, 15))
        assert len(trends) == 7
        assert all(day["views"] == 0 for day in trends)
        assert len({day["date"] for day in trends}) == 7

    async def test_explicit_end_date(self, aggregator, store, clock):
        await AnalyticsFixtures.seed_page_view(store, clock() - timedelta(days=10), "/")
        trends = await aggregator.get_page_view_trends(days=3, end_date=date(2026, 3, 5))
        assert [day["date"] for day in trends] == ["2026-03-03", "2026-03-04", "2026-03-05"]
        assert trends[-1]["views"] == 1

    async def test_session_trends(self, aggregator, store, clock):
        now = clock()
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=100), page_view_count=2)
        await AnalyticsFixtures.seed_session(store, now, duration=timedelta(seconds=200), page_view_count=4)
        await AnalyticsFixtures.seed_session(store, now - timedelta(days=1))

        trends = await aggregator.get_session_trends(days=3)
        assert trends[0] == {"date": "2026-03-13", "sessions": 0, "avg_duration": None, "avg_page_views": None}
        assert trends[1] == {"date": "2026-03-14", "sessions": 1, "avg_duration": None, "avg_page_views": 1.0}
        assert trends[2] == {"date": "2026-03-15", "sessions": 2, "avg_duration": 150.0, "avg_page_views": 3.0}
