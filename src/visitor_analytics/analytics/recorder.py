"""
Event recorder: the tracking write path.

Public methods return plain booleans and never raise. Internally each write
produces a Result so the failure reaching the log keeps its type and context.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..storage.database import format_timestamp
from ..utils.config import AnalyticsConfig
from ..utils.errors import AnalyticsError, Result, TrackingError, error_context
from ..utils.logging import get_logger
from .anonymize import Anonymizer
from .classifier import TrafficClassifier
from .consent import ConsentGate
from .models import DeviceInfo, TrackingOptions, TrackingRequest
from .store import AnalyticsStore


logger = get_logger(__name__)


class EventRecorder:
    """Writes page views and drives the session lifecycle."""

    def __init__(
        self,
        config: AnalyticsConfig,
        store: AnalyticsStore,
        classifier: Optional[TrafficClassifier] = None,
        consent: Optional[ConsentGate] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config
        self.store = store
        self.classifier = classifier or TrafficClassifier(config)
        self.consent = consent or ConsentGate(config, clock=clock)
        self.anonymizer = Anonymizer(config.privacy)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> str:
        return format_timestamp(self._clock())

    def _admits(self, request: TrackingRequest) -> bool:
        """Consent, subject and exclusion gating shared by both write paths."""
        if not self.consent.is_tracking_enabled(request):
            return False

        if not request.is_authenticated and not self.config.track_anonymous_users:
            return False

        if self.classifier.should_exclude(request):
            return False

        return True

    def _admitted(self, request: TrackingRequest) -> bool:
        """_admits, with any gating failure logged and treated as a refusal."""
        try:
            with error_context("recorder", "admit", error_class=TrackingError, path=request.path):
                return self._admits(request)
        except AnalyticsError as e:
            logger.warning(
                "tracking_gate_failed",
                path=request.path,
                error=e.message,
                error_type=e.code,
            )
            return False

    def _user_id(self, request: TrackingRequest) -> Optional[str]:
        if request.user_id is None or not self.config.track_authenticated_users:
            return None
        return str(request.user_id)

    def _measurement(self, value: Optional[int], enabled: bool, limit: Optional[int] = None) -> Optional[int]:
        """Drop disabled, negative or outlier timings."""
        if value is None or not enabled or value < 0:
            return None
        if limit is not None and value > limit:
            logger.debug("timing_outlier_discarded", value_ms=value, limit_ms=limit)
            return None
        return int(value)

    def _session_hash(self, request: TrackingRequest) -> str:
        session_hash = self.anonymizer.session_hash(request.session_id)
        if session_hash is None:
            raise TrackingError("Request carries no session identifier")
        return session_hash

    async def _record_page_view(
        self,
        request: TrackingRequest,
        options: TrackingOptions
    ) -> Result[int]:
        performance = self.config.performance
        try:
            with error_context("recorder", "track_page_view", error_class=TrackingError, path=request.path):
                device = self.classifier.classify_device(request)
                page_view_id = await self.store.insert_page_view({
                    "url": request.url,
                    "path": request.path,
                    "referrer": self.anonymizer.referrer(request.referrer),
                    "session_hash": self._session_hash(request),
                    "user_id": self._user_id(request),
                    "ip_hash": self.anonymizer.ip(request.ip),
                    "user_agent_hash": self.anonymizer.user_agent(request.user_agent),
                    "device_type": device.device_type.value,
                    "browser_family": device.browser_family,
                    "os_family": device.os_family,
                    "is_bot": int(device.is_bot),
                    "country_code": device.country_code,
                    "response_time_ms": self._measurement(
                        options.response_time_ms,
                        performance.track_response_times,
                        performance.max_response_time_ms
                    ),
                    "page_load_time_ms": self._measurement(
                        options.page_load_time_ms,
                        performance.track_page_load_times
                    ),
                    "viewed_at": self._now(),
                })
        except AnalyticsError as e:
            return Result.fail(e)
        return Result.ok(page_view_id)

    async def track_page_view(
        self,
        request: TrackingRequest,
        options: Optional[TrackingOptions] = None
    ) -> bool:
        """
        Record one page view for the request.

        Args:
            request: Inbound request
            options: Timing measurements

        Returns:
            True if a row was written
        """
        if not self._admitted(request):
            return False

        result = await self._record_page_view(request, options or TrackingOptions())
        if not result:
            logger.warning(
                "page_view_tracking_failed",
                path=request.path,
                error=result.error.message,
                error_type=result.error.code,
            )
            return False
        return True

    def _session_values(self, request: TrackingRequest, device: DeviceInfo) -> Dict[str, Any]:
        return {
            "session_hash": self._session_hash(request),
            "landing_page": request.path,
            "current_page": request.path,
            "exit_page": None,
            "user_id": self._user_id(request),
            "ip_hash": self.anonymizer.ip(request.ip),
            "device_type": device.device_type.value,
            "browser_family": device.browser_family,
            "os_family": device.os_family,
            "is_bot": int(device.is_bot),
            "session_started_at": self._now(),
            "session_ended_at": None,
            "page_view_count": 1,
        }

    async def _record_session(
        self,
        request: TrackingRequest,
        options: TrackingOptions
    ) -> Result[int]:
        try:
            with error_context("recorder", "track_session", error_class=TrackingError, path=request.path):
                if options.new_session:
                    device = self.classifier.classify_device(request)
                    await self.store.start_session(self._session_values(request, device))
                    return Result.ok(1)

                changed = await self.store.update_session(
                    self._session_hash(request),
                    request.path,
                    ended_at=self._now() if options.end_session else None
                )
        except AnalyticsError as e:
            return Result.fail(e)

        if changed == 0:
            logger.debug("session_update_skipped", reason="no_open_session", path=request.path)
        return Result.ok(changed)

    async def track_session(
        self,
        request: TrackingRequest,
        options: Optional[TrackingOptions] = None
    ) -> bool:
        """
        Open, advance or close the request's session.

        An update for a session that is missing or already closed is a no-op
        and still counts as success.
        """
        if not self.config.track_sessions:
            return False

        if not self._admitted(request):
            return False

        result = await self._record_session(request, options or TrackingOptions())
        if not result:
            logger.warning(
                "session_tracking_failed",
                path=request.path,
                error=result.error.message,
                error_type=result.error.code,
            )
            return False
        return True

    async def end_session(self, session_id: str, exit_page: Optional[str] = None) -> bool:
        """
        Close a session. Ending an already closed session changes nothing.

        Args:
            session_id: Raw session identifier
            exit_page: Final page, kept only if the session is still open

        Returns:
            False only if the store failed
        """
        session_hash = self.anonymizer.session_hash(session_id)
        if session_hash is None:
            return False

        try:
            with error_context("recorder", "end_session", error_class=TrackingError):
                changed = await self.store.close_session(session_hash, self._now(), exit_page)
        except AnalyticsError as e:
            logger.warning("session_end_failed", error=e.message, error_type=e.code)
            return False

        if changed == 0:
            logger.debug("session_end_skipped", reason="not_open")
        return True
