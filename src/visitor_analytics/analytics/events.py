"""
Event facade for application code.

Callers describe what happened with one of the event types below and hand it
to AnalyticsLogger.log_event, which routes it by type. Each event carries
exactly the fields its route needs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from ..utils.logging import get_logger
from .manager import AnalyticsManager
from .models import TrackingOptions, TrackingRequest


logger = get_logger(__name__)


@dataclass(frozen=True)
class PageViewEvent:
    request: TrackingRequest
    options: TrackingOptions = field(default_factory=TrackingOptions)


@dataclass(frozen=True)
class SessionStartEvent:
    request: TrackingRequest


@dataclass(frozen=True)
class SessionUpdateEvent:
    request: TrackingRequest
    end_session: bool = False


@dataclass(frozen=True)
class SessionEndEvent:
    session_id: str
    exit_page: Optional[str] = None


@dataclass(frozen=True)
class ConsentEvent:
    granted: bool
    request: TrackingRequest


AnalyticsEvent = Union[PageViewEvent, SessionStartEvent, SessionUpdateEvent, SessionEndEvent, ConsentEvent]


class AnalyticsLogger:
    """Convenience entry points over an AnalyticsManager."""

    def __init__(self, manager: AnalyticsManager):
        self.manager = manager

    async def log_event(self, event: AnalyticsEvent) -> bool:
        """Route an event to the matching tracking operation."""
        recorder = self.manager.recorder

        if isinstance(event, PageViewEvent):
            return await recorder.track_page_view(event.request, event.options)

        if isinstance(event, SessionStartEvent):
            return await recorder.track_session(event.request, TrackingOptions(new_session=True))

        if isinstance(event, SessionUpdateEvent):
            return await recorder.track_session(
                event.request,
                TrackingOptions(end_session=event.end_session)
            )

        if isinstance(event, SessionEndEvent):
            return await recorder.end_session(event.session_id, event.exit_page)

        if isinstance(event, ConsentEvent):
            self.manager.consent.set_consent(event.granted, event.request)
            return True

        logger.warning("unknown_event_type", event_type=type(event).__name__)
        return False

    async def log_page_view(
        self,
        request: TrackingRequest,
        options: Optional[TrackingOptions] = None
    ) -> bool:
        return await self.log_event(PageViewEvent(request, options or TrackingOptions()))

    async def log_session_start(self, request: TrackingRequest) -> bool:
        return await self.log_event(SessionStartEvent(request))

    async def log_session_update(self, request: TrackingRequest, end_session: bool = False) -> bool:
        return await self.log_event(SessionUpdateEvent(request, end_session=end_session))

    async def log_session_end(self, session_id: str, exit_page: Optional[str] = None) -> bool:
        return await self.log_event(SessionEndEvent(session_id, exit_page))

    async def log_consent(self, granted: bool, request: TrackingRequest) -> bool:
        return await self.log_event(ConsentEvent(granted, request))

    def is_tracking_enabled(self, request: TrackingRequest) -> bool:
        return self.manager.consent.is_tracking_enabled(request)

    def should_exclude_request(self, request: TrackingRequest) -> bool:
        return self.manager.classifier.should_exclude(request)

    def is_bot_request(self, request: TrackingRequest) -> bool:
        return self.manager.classifier.is_bot(request)

    async def export_user_data(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.manager.privacy.export_user_data(user_id=user_id, session_id=session_id)

    async def delete_user_data(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_id: Optional[str] = None
    ) -> bool:
        return await self.manager.privacy.delete_user_data(user_id=user_id, session_id=session_id)

    async def health_check(self, request: Optional[TrackingRequest] = None) -> Dict[str, Any]:
        """
        Quick status of the subsystem.

        Args:
            request: Optional request used to evaluate tracking_enabled

        Returns:
            Configuration flags plus database accessibility
        """
        config = self.manager.config
        return {
            "enabled": config.enabled,
            "tracking_enabled": self.is_tracking_enabled(request) if request else False,
            "consent_required": config.privacy.require_consent,
            "bot_detection_enabled": config.bot_detection.enabled,
            "retention_days": config.retention.retention_days,
            "auto_cleanup": config.retention.auto_cleanup,
            "database_accessible": await self.manager.check_database(),
            "timestamp": self.manager.clock().isoformat(),
        }
