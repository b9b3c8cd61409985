"""
Cached read path for dashboards.

Aggregate queries are expensive on large tables, so every dashboard-facing
call goes through a short-lived cache (dashboard.cache_minutes; 0 disables).
"""

import copy
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..storage.cache import LRUCache
from ..utils.config import AnalyticsConfig
from ..utils.logging import get_logger
from .aggregator import DateLike, StatsAggregator


logger = get_logger(__name__)

RANGE_LABELS = {
    7: "Last 7 days",
    30: "Last 30 days",
    90: "Last 90 days",
    365: "Last year",
}


def _key_part(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return repr(value)


class DashboardService:
    """Dashboard facade over StatsAggregator with a TTL cache in front."""

    def __init__(
        self,
        config: AnalyticsConfig,
        aggregator: StatsAggregator,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config
        self.aggregator = aggregator
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        minutes = config.dashboard.cache_minutes
        self.cache: Optional[LRUCache] = None
        if minutes > 0:
            self.cache = LRUCache(default_ttl=timedelta(minutes=minutes), clock=self._clock)

    async def _cached(self, name: str, compute: Callable[[], Awaitable[Any]], *args: Any) -> Any:
        """Callers get their own copy; the cached value is never handed out."""
        if self.cache is None:
            return await compute()

        key = ":".join([name] + [_key_part(arg) for arg in args])
        return copy.deepcopy(await self.cache.get_or_compute(key, compute))

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    async def invalidate(self) -> None:
        """Drop every cached aggregate."""
        if self.cache is not None:
            await self.cache.clear()

    async def page_view_stats(self, start: DateLike = None, end: DateLike = None) -> Dict[str, Any]:
        return await self._cached(
            "page_view_stats",
            lambda: self.aggregator.get_page_view_stats(start, end),
            start, end
        )

    async def session_stats(self, start: DateLike = None, end: DateLike = None) -> Dict[str, Any]:
        return await self._cached(
            "session_stats",
            lambda: self.aggregator.get_session_stats(start, end),
            start, end
        )

    async def engagement_metrics(self, start: DateLike = None, end: DateLike = None) -> Dict[str, Any]:
        return await self._cached(
            "engagement_metrics",
            lambda: self.aggregator.get_engagement_metrics(start, end),
            start, end
        )

    async def popular_pages(self, limit: int = 10, start: DateLike = None, end: DateLike = None) -> List[Dict[str, Any]]:
        return await self._cached(
            "popular_pages",
            lambda: self.aggregator.get_popular_pages(limit, start, end),
            limit, start, end
        )

    async def device_breakdown(self, start: DateLike = None, end: DateLike = None) -> List[Dict[str, Any]]:
        return await self._cached(
            "device_breakdown",
            lambda: self.aggregator.get_device_breakdown(start, end),
            start, end
        )

    async def page_view_trends(self, days: int = 30, end_date: DateLike = None) -> List[Dict[str, Any]]:
        if end_date is None:
            end_date = self._today()
        return await self._cached(
            "page_view_trends",
            lambda: self.aggregator.get_page_view_trends(days, end_date),
            days, end_date
        )

    async def session_trends(self, days: int = 30, end_date: DateLike = None) -> List[Dict[str, Any]]:
        if end_date is None:
            end_date = self._today()
        return await self._cached(
            "session_trends",
            lambda: self.aggregator.get_session_trends(days, end_date),
            days, end_date
        )

    async def overview(self, days: Optional[int] = None) -> Dict[str, Any]:
        """
        Everything the overview widget shows for the last `days` days.

        Args:
            days: Range length (defaults to dashboard.default_date_range)

        Returns:
            Aggregates keyed by section, or {"enabled": False}
        """
        if not self.config.dashboard.enabled:
            return {"enabled": False}

        days = days or self.config.dashboard.default_date_range
        end = self._today()
        start = end - timedelta(days=days - 1)

        overview = {
            "enabled": True,
            "period": {
                "from": start.isoformat(),
                "to": end.isoformat(),
                "days": days,
                "label": RANGE_LABELS.get(days, f"Last {days} days"),
            },
            "page_views": await self.page_view_stats(start, end),
            "sessions": await self.session_stats(start, end),
            "engagement": await self.engagement_metrics(start, end),
            "popular_pages": await self.popular_pages(10, start, end),
            "device_breakdown": await self.device_breakdown(start, end),
            "page_view_trends": await self.page_view_trends(days, end),
            "session_trends": await self.session_trends(days, end),
        }
        logger.debug("dashboard_overview_built", days=days)
        return overview
