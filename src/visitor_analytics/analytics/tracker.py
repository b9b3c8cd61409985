"""
Request/response cycle tracking for any async web framework.

The host adapts its request into a TrackingRequest (whose `session` mapping
is the framework's server-side session) and routes the handler through
RequestTracker.handle. Only successful GET requests are tracked, and nothing
in here ever raises into the request path.
"""

import time
from typing import Any, Awaitable, Callable, Dict, Optional

from ..utils.logging import get_logger
from .manager import AnalyticsManager
from .models import TrackingOptions, TrackingRequest


logger = get_logger(__name__)

SESSION_STARTED_KEY = "analytics_session_started"
LAST_ACTIVITY_KEY = "analytics_last_activity"


def response_status(response: Any) -> int:
    """Status code of an int, or of an object exposing status_code or status."""
    if isinstance(response, int):
        return response
    for attribute in ("status_code", "status"):
        value = getattr(response, attribute, None)
        if isinstance(value, int):
            return value
    return 200


class RequestTracker:
    """Tracks page views and session lifecycle around a request handler."""

    def __init__(self, manager: AnalyticsManager):
        self.manager = manager
        self.config = manager.config

    def should_track(self, request: TrackingRequest) -> bool:
        if not (self.config.enabled and self.config.auto_track_page_views):
            return False

        if request.method.upper() != "GET":
            return False

        if not self.manager.consent.is_tracking_enabled(request):
            return False

        return not self.manager.classifier.should_exclude(request)

    def is_new_session(self, request: TrackingRequest) -> bool:
        """First tracked request of a framework session; marks the session."""
        if not self.config.track_sessions:
            return False

        if SESSION_STARTED_KEY in request.session:
            return False

        request.session[SESSION_STARTED_KEY] = True
        return True

    async def handle(
        self,
        request: TrackingRequest,
        call_next: Callable[[TrackingRequest], Awaitable[Any]],
        status_of: Callable[[Any], int] = response_status
    ) -> Any:
        """
        Run the handler and track the request after it responds.

        Args:
            request: Adapted inbound request
            call_next: The application handler
            status_of: Extracts the HTTP status from the handler's response

        Returns:
            The handler's response, unchanged
        """
        started = time.perf_counter()

        try:
            tracked = self.should_track(request)
        except Exception as e:
            logger.warning(
                "request_tracking_failed",
                url=request.url,
                method=request.method,
                error=str(e),
            )
            tracked = False

        if not tracked:
            return await call_next(request)

        await self.check_session_timeout(request)
        is_new = self.is_new_session(request)

        response = await call_next(request)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await self.track_after_response(request, status_of(response), elapsed_ms, is_new)
        return response

    async def track_after_response(
        self,
        request: TrackingRequest,
        status: int,
        elapsed_ms: Optional[int],
        is_new_session: bool
    ) -> None:
        if status >= 400:
            return

        recorder = self.manager.recorder
        try:
            await recorder.track_page_view(request, TrackingOptions(response_time_ms=elapsed_ms))

            if self.config.track_sessions:
                await recorder.track_session(request, TrackingOptions(new_session=is_new_session))

            request.session[LAST_ACTIVITY_KEY] = self.manager.clock().timestamp()
        except Exception as e:
            logger.warning(
                "request_tracking_failed",
                url=request.url,
                method=request.method,
                status=status,
                error=str(e),
            )

    async def terminate_session(self, request: TrackingRequest, exit_page: Optional[str] = None) -> None:
        """Close the request's analytics session, defaulting exit_page to its path."""
        if not self.config.track_sessions or not request.session_id:
            return

        await self.manager.recorder.end_session(request.session_id, exit_page or request.path)

    async def check_session_timeout(self, request: TrackingRequest) -> bool:
        """
        Close the session after sessions.timeout_minutes of inactivity.

        Returns:
            True if the session had timed out and was closed
        """
        if not self.config.track_sessions:
            return False

        last_activity = request.session.get(LAST_ACTIVITY_KEY)
        if last_activity is None:
            return False

        timeout = self.config.sessions.timeout_minutes * 60
        if self.manager.clock().timestamp() - last_activity <= timeout:
            return False

        await self.terminate_session(request)
        request.session.pop(SESSION_STARTED_KEY, None)
        request.session.pop(LAST_ACTIVITY_KEY, None)
        logger.debug("session_timed_out", path=request.path)
        return True

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "auto_track_page_views": self.config.auto_track_page_views,
            "track_sessions": self.config.track_sessions,
            "track_performance": self.config.performance.track_response_times,
            "session_timeout_minutes": self.config.sessions.timeout_minutes,
            "bot_tracking": self.config.bot_detection.track_bots,
            "consent_required": self.config.privacy.require_consent,
        }
