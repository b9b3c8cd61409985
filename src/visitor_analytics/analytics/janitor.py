"""
Retention janitor: age-based deletion of analytics rows.

Rows strictly older than now - retention_days are removed in bounded batches
so no single statement holds the write lock for long. Runs are single-flight
within the process; a second concurrent call reports an error and deletes
nothing.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from ..storage.database import format_timestamp, parse_timestamp
from ..utils.config import AnalyticsConfig
from ..utils.errors import AnalyticsError, RetentionError, error_context
from ..utils.logging import get_logger, log_function_call
from .store import AnalyticsStore


logger = get_logger(__name__)

CLEANUP_INTERVALS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
    "monthly": timedelta(days=30),
}

# Deletion order: children of a session first
TABLE_RESULT_KEYS = (
    ("page_views", "page_views_deleted"),
    ("sessions", "sessions_deleted"),
)


class RetentionJanitor:
    """Deletes expired page views and sessions, on demand or on a schedule."""

    def __init__(
        self,
        config: AnalyticsConfig,
        store: AnalyticsStore,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config
        self.retention = config.retention
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._run_lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.last_result: Optional[Dict[str, Any]] = None

    @property
    def is_running(self) -> bool:
        """True while a cleanup run is in progress."""
        return self._run_lock.locked()

    @property
    def interval(self) -> timedelta:
        return CLEANUP_INTERVALS[self.retention.cleanup_frequency]

    def cutoff_for(self, retention_days: int) -> datetime:
        return self._clock() - timedelta(days=retention_days)

    async def get_data_counts(self) -> Dict[str, Any]:
        """Current row counts and the oldest timestamp in each table."""
        oldest_page_view = parse_timestamp(await self.store.oldest_timestamp("page_views"))
        oldest_session = parse_timestamp(await self.store.oldest_timestamp("sessions"))
        return {
            "page_views": await self.store.count_rows("page_views"),
            "sessions": await self.store.count_rows("sessions"),
            "oldest_page_view": oldest_page_view.isoformat() if oldest_page_view else None,
            "oldest_session": oldest_session.isoformat() if oldest_session else None,
        }

    async def get_delete_counts(self, retention_days: Optional[int] = None) -> Dict[str, Any]:
        """Rows a cleanup with this retention would remove right now."""
        days = self.retention.retention_days if retention_days is None else retention_days
        if days <= 0:
            return {"page_views": 0, "sessions": 0, "cutoff": None}

        cutoff = self.cutoff_for(days)
        cutoff_text = format_timestamp(cutoff)
        return {
            "page_views": await self.store.count_rows("page_views", before=cutoff_text),
            "sessions": await self.store.count_rows("sessions", before=cutoff_text),
            "cutoff": cutoff.isoformat(),
        }

    def _payload(self, days: int, page_views: int = 0, sessions: int = 0) -> Dict[str, Any]:
        return {
            "page_views_deleted": page_views,
            "sessions_deleted": sessions,
            "retention_days": days,
            "cleanup_date": self._clock().isoformat(),
        }

    async def _delete_before(self, table: str, cutoff: str, batch_size: int) -> int:
        """Delete batch after batch until a short batch signals the end."""
        total = 0
        while True:
            deleted = await self.store.delete_batch_before(table, cutoff, batch_size)
            total += deleted
            if deleted < batch_size:
                return total

            logger.debug("cleanup_batch_deleted", table=table, rows=deleted, total=total)
            if self.retention.batch_pause_seconds > 0:
                await asyncio.sleep(self.retention.batch_pause_seconds)

    @log_function_call(logger)
    async def cleanup_old_data(
        self,
        retention_days: Optional[int] = None,
        batch_size: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Delete rows older than the retention window.

        Args:
            retention_days: Override of retention.retention_days; 0 disables
            batch_size: Override of retention.cleanup_batch_size

        Returns:
            Deleted counts, retention_days and cleanup_date, or a payload
            with an "error" key. Never raises.
        """
        days = self.retention.retention_days if retention_days is None else retention_days
        size = batch_size or self.retention.cleanup_batch_size

        if days < 0:
            logger.error("cleanup_rejected", reason="negative_retention", retention_days=days)
            return {"error": f"Invalid retention period: {days} days", **self._payload(days)}

        if days == 0:
            logger.info("cleanup_skipped", reason="retention_disabled")
            return self._payload(0)

        if size <= 0:
            logger.error("cleanup_rejected", reason="invalid_batch_size", batch_size=size)
            return {"error": f"Invalid batch size: {size}", **self._payload(days)}

        if self._run_lock.locked():
            logger.warning("cleanup_already_running")
            return {"error": "Cleanup already running", **self._payload(days)}

        counts = {"page_views": 0, "sessions": 0}
        async with self._run_lock:
            cutoff = format_timestamp(self.cutoff_for(days))
            try:
                with error_context("janitor", "cleanup_old_data", error_class=RetentionError, cutoff=cutoff):
                    for table, _ in TABLE_RESULT_KEYS:
                        counts[table] = await self._delete_before(table, cutoff, size)
            except AnalyticsError as e:
                logger.error("cleanup_failed", error=e.message, error_type=e.code, **counts)
                result = {"error": e.message, **self._payload(days, counts["page_views"], counts["sessions"])}
                self.last_result = result
                return result

        result = self._payload(days, counts["page_views"], counts["sessions"])
        logger.info(
            "cleanup_completed",
            retention_days=days,
            page_views_deleted=counts["page_views"],
            sessions_deleted=counts["sessions"],
        )
        self.last_result = result
        return result

    async def start(self) -> None:
        """Start the scheduled cleanup loop if auto cleanup is on."""
        if not self.retention.auto_cleanup:
            logger.info("auto_cleanup_disabled")
            return

        if self._cleanup_task and not self._cleanup_task.done():
            logger.warning("cleanup_task_already_running")
            return

        self._stop_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("cleanup_task_started", frequency=self.retention.cleanup_frequency)

    async def stop(self) -> None:
        """Stop the scheduled cleanup loop."""
        if not self._cleanup_task:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._cleanup_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("cleanup_task_stop_timeout")
            self._cleanup_task.cancel()

        self._cleanup_task = None
        logger.info("cleanup_task_stopped")

    async def _cleanup_loop(self) -> None:
        """Run a cleanup, then wait one interval or until stopped."""
        interval = self.interval.total_seconds()

        while not self._stop_event.is_set():
            result = await self.cleanup_old_data()
            if "error" in result:
                logger.error("scheduled_cleanup_failed", error=result["error"])

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
