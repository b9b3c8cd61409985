"""
Analytics manager: builds every component from one AnalyticsConfig.

The host application creates one manager at startup, awaits initialize(),
and calls close() on shutdown.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..utils.config import AnalyticsConfig
from ..utils.logging import get_logger
from .aggregator import StatsAggregator
from .classifier import TrafficClassifier
from .consent import ConsentGate
from .dashboard import DashboardService
from .janitor import RetentionJanitor
from .privacy import PrivacyService
from .recorder import EventRecorder
from .store import AnalyticsStore


logger = get_logger(__name__)


class AnalyticsManager:
    """Owns the store and wires the tracking, reporting and retention services."""

    def __init__(
        self,
        config: AnalyticsConfig,
        db_path: Optional[Union[Path, str]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize analytics manager.

        Args:
            config: Validated configuration
            db_path: Database override (defaults to database.path)
            clock: Source of the current time for every component
        """
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.store = AnalyticsStore(
            db_path if db_path is not None else config.database.path,
            timeout=config.database.timeout
        )
        self.classifier = TrafficClassifier(config)
        self.consent = ConsentGate(config, clock=self.clock)
        self.recorder = EventRecorder(
            config,
            self.store,
            classifier=self.classifier,
            consent=self.consent,
            clock=self.clock
        )
        self.aggregator = StatsAggregator(config, self.store, clock=self.clock)
        self.dashboard = DashboardService(config, self.aggregator, clock=self.clock)
        self.privacy = PrivacyService(config, self.store, clock=self.clock)
        self.janitor = RetentionJanitor(config, self.store, clock=self.clock)

    async def initialize(self, start_scheduler: bool = False) -> None:
        """Create the schema and optionally start scheduled cleanup."""
        await self.store.initialize()
        if start_scheduler:
            await self.janitor.start()
        logger.info("analytics_manager_initialized", enabled=self.config.enabled)

    async def close(self) -> None:
        await self.janitor.stop()
        await self.store.close()
        logger.info("analytics_manager_closed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def check_database(self) -> bool:
        """True if both analytics tables can be read."""
        try:
            return await self.store.ping()
        except Exception as e:
            logger.warning("database_check_failed", error=str(e))
            return False

    def settings_summary(self) -> Dict[str, Any]:
        """The configuration values operators care about."""
        return {
            "enabled": self.config.enabled,
            "consent_required": self.config.privacy.require_consent,
            "bot_detection_enabled": self.config.bot_detection.enabled,
            "track_sessions": self.config.track_sessions,
            "retention_days": self.config.retention.retention_days,
            "auto_cleanup": self.config.retention.auto_cleanup,
            "cleanup_frequency": self.config.retention.cleanup_frequency,
            "cleanup_batch_size": self.config.retention.cleanup_batch_size,
        }
