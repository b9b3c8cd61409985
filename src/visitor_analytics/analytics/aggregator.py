"""
Statistical aggregation over stored page views and sessions.

All queries are read-only and leave bot traffic out. Date ranges accept a
date (whole day, inclusive), a datetime, or None for an open bound.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..storage.database import format_timestamp
from ..utils.config import AnalyticsConfig
from ..utils.logging import get_logger
from .store import AnalyticsStore


logger = get_logger(__name__)

DateLike = Union[date, datetime, None]

DURATION_BUCKETS: List[Tuple[str, Optional[int]]] = [
    ("0-30s", 30),
    ("30-60s", 60),
    ("1-5m", 300),
    ("5-10m", 600),
    ("10-30m", 1800),
    ("30m+", None),
]


def _start_bound(value: DateLike) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return format_timestamp(value)


def _end_bound(value: DateLike) -> Optional[str]:
    """Exclusive upper bound that still includes the given day or instant."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc) + timedelta(days=1)
    else:
        value = value + timedelta(microseconds=1)
    return format_timestamp(value)


def percentage(part: int, total: int) -> float:
    """part/total as a percentage with two decimals; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return round(part / total * 100, 2)


def _round(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


class StatsAggregator:
    """Dashboard statistics computed from the analytics store."""

    def __init__(
        self,
        config: AnalyticsConfig,
        store: AnalyticsStore,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _session_summary(self, start: DateLike, end: DateLike) -> Dict[str, Any]:
        sessions = self.config.sessions
        return await self.store.session_summary(
            _start_bound(start),
            _end_bound(end),
            engaged_after_seconds=sessions.engagement_threshold_seconds,
            engaged_min_page_views=sessions.engagement_min_page_views,
        )

    async def get_page_view_stats(self, start: DateLike = None, end: DateLike = None) -> Dict[str, Any]:
        summary = await self.store.page_view_summary(_start_bound(start), _end_bound(end))
        return {
            "total_views": summary["total_views"],
            "unique_users": summary["unique_users"],
            "unique_sessions": summary["unique_sessions"],
            "avg_response_time_ms": _round(summary["avg_response_time_ms"]),
            "avg_page_load_time_ms": _round(summary["avg_page_load_time_ms"]),
        }

    def _session_stats(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        total = summary["total_sessions"]
        avg_duration = _round(summary["avg_duration_seconds"])

        bounces: Optional[int] = None
        bounce_rate: Optional[float] = None
        if self.config.sessions.count_bounces:
            bounces = summary["bounce_sessions"]
            bounce_rate = percentage(bounces, total)

        return {
            "total_sessions": total,
            "closed_sessions": summary["closed_sessions"],
            "bounce_sessions": bounces,
            "bounce_rate": bounce_rate,
            "unique_users": summary["unique_users"],
            "avg_duration_seconds": avg_duration,
            "avg_duration_minutes": round(avg_duration / 60, 2) if avg_duration is not None else None,
            "avg_page_views": _round(summary["avg_page_views"]),
        }

    async def get_session_stats(self, start: DateLike = None, end: DateLike = None) -> Dict[str, Any]:
        """
        Session totals for the range.

        bounce_rate is the percentage of sessions with at most one page view
        (None when sessions.count_bounces is off); average duration only
        counts closed sessions.
        """
        return self._session_stats(await self._session_summary(start, end))
    async def get_popular_pages(
        self,
        limit: int = 10,
        start: DateLike = None,
        end: DateLike = None
    ) -> List[Dict[str, Any]]:
        rows = await self.store.group_page_views("path", _start_bound(start), _end_bound(end), limit=limit)
        return [{"path": path, "views": views} for path, views in rows]

    async def get_device_breakdown(self, start: DateLike = None, end: DateLike = None) -> List[Dict[str, Any]]:
        rows = await self.store.group_page_views("device_type", _start_bound(start), _end_bound(end))
        return [{"device_type": device, "views": views} for device, views in rows]

    async def get_browser_breakdown(self, start: DateLike = None, end: DateLike = None) -> List[Dict[str, Any]]:
        rows = await self.store.group_page_views("browser_family", _start_bound(start), _end_bound(end))
        return [{"browser_family": browser, "views": views} for browser, views in rows]

    async def get_referrer_stats(
        self,
        limit: int = 10,
        start: DateLike = None,
        end: DateLike = None
    ) -> List[Dict[str, Any]]:
        """Top referrers. Hashed referrers can only be reported as external."""
        rows = await self.store.group_page_views("referrer", _start_bound(start), _end_bound(end), limit=limit)
        hashed = self.config.privacy.hash_referrers
        return [
            {
                "referrer": referrer,
                "views": views,
                "referrer_type": "External" if hashed else None,
            }
            for referrer, views in rows
        ]

    async def get_session_device_breakdown(
        self,
        start: DateLike = None,
        end: DateLike = None
    ) -> List[Dict[str, Any]]:
        rows = await self.store.group_sessions("device_type", _start_bound(start), _end_bound(end))
        return [{"device_type": device, "sessions": count} for device, count in rows]

    async def get_landing_pages(
        self,
        limit: int = 10,
        start: DateLike = None,
        end: DateLike = None
    ) -> List[Dict[str, Any]]:
        rows = await self.store.group_sessions("landing_page", _start_bound(start), _end_bound(end), limit=limit)
        return [{"landing_page": page, "sessions": count} for page, count in rows]

    async def get_exit_pages(
        self,
        limit: int = 10,
        start: DateLike = None,
        end: DateLike = None
    ) -> List[Dict[str, Any]]:
        rows = await self.store.group_sessions("exit_page", _start_bound(start), _end_bound(end), limit=limit)
        return [{"exit_page": page, "sessions": count} for page, count in rows]

    async def get_duration_distribution(
        self,
        start: DateLike = None,
        end: DateLike = None
    ) -> List[Dict[str, Any]]:
        """Closed sessions per duration bucket, every bucket listed in order."""
        counts = await self.store.session_duration_histogram(
            DURATION_BUCKETS, _start_bound(start), _end_bound(end)
        )
        return [
            {"duration_range": label, "sessions": counts.get(label, 0)}
            for label, _ in DURATION_BUCKETS
        ]

    def _trend_days(self, days: int, end_date: DateLike) -> List[date]:
        """The `days` calendar days ending on end_date, oldest first."""
        if end_date is None:
            end_date = self._clock()
        if isinstance(end_date, datetime):
            end_date = end_date.astimezone(timezone.utc).date() if end_date.tzinfo else end_date.date()
        return [end_date - timedelta(days=offset) for offset in range(days - 1, -1, -1)]

    async def get_page_view_trends(self, days: int = 30, end_date: DateLike = None) -> List[Dict[str, Any]]:
        """
        Daily page views, one entry per day including empty days.

        Args:
            days: Number of calendar days in the series
            end_date: Last day of the series (defaults to today, UTC)

        Returns:
            [{"date": "YYYY-MM-DD", "views": n}, ...] ordered by date
        """
        calendar = self._trend_days(days, end_date)
        if not calendar:
            return []

        counts = await self.store.daily_page_views(_start_bound(calendar[0]), _end_bound(calendar[-1]))
        return [
            {"date": day.isoformat(), "views": counts.get(day.isoformat(), 0)}
            for day in calendar
        ]

    async def get_session_trends(self, days: int = 30, end_date: DateLike = None) -> List[Dict[str, Any]]:
        """Daily sessions with average duration and depth, zero-filled."""
        calendar = self._trend_days(days, end_date)
        if not calendar:
            return []

        by_day = await self.store.daily_sessions(_start_bound(calendar[0]), _end_bound(calendar[-1]))
        series = []
        for day in calendar:
            row = by_day.get(day.isoformat(), {})
            series.append({
                "date": day.isoformat(),
                "sessions": row.get("sessions", 0),
                "avg_duration": _round(row.get("avg_duration")),
                "avg_page_views": _round(row.get("avg_page_views")),
            })
        return series

    async def get_engagement_metrics(self, start: DateLike = None, end: DateLike = None) -> Dict[str, Any]:
        """Session stats plus engaged and multi-page counts and percentages."""
        summary = await self._session_summary(start, end)
        stats = self._session_stats(summary)
        total = stats["total_sessions"]

        engaged = summary["engaged_sessions"]
        multi_page = summary["multi_page_sessions"]

        stats.update({
            "engaged_sessions": engaged,
            "engagement_rate": percentage(engaged, total),
            "multi_page_sessions": multi_page,
            "multi_page_rate": percentage(multi_page, total),
        })
        return stats
