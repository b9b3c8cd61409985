"""
GDPR export and erasure for a single data subject.

A subject is an authenticated user id or, for anonymous visitors, a raw
session identifier (hashed here before lookup). Failures are logged at error
level for audit and reported to the caller, never raised.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from ..utils.config import AnalyticsConfig
from ..utils.errors import AnalyticsError, PrivacyError, Result, error_context
from ..utils.logging import get_logger
from .anonymize import hash_session_id
from .store import AnalyticsStore


logger = get_logger(__name__)


class PrivacyService:
    """Subject access and erasure over the analytics store."""

    def __init__(
        self,
        config: AnalyticsConfig,
        store: AnalyticsStore,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _subject(
        user_id: Optional[Union[int, str]],
        session_id: Optional[str]
    ) -> Dict[str, Any]:
        """user_id wins; the session identifier is only used without one."""
        if user_id is not None:
            return {"user_id": user_id}
        if session_id:
            return {"session_hash": hash_session_id(session_id)}
        return {}

    def _empty_export(self) -> Dict[str, Any]:
        return {
            "page_views": [],
            "sessions": [],
            "export_date": self._clock().isoformat(),
        }

    async def _collect(self, subject: Dict[str, Any]) -> Result[Dict[str, Any]]:
        try:
            with error_context("privacy", "export_user_data", error_class=PrivacyError):
                page_views = await self.store.find_page_views(**subject)
                sessions = await self.store.find_sessions(**subject)
        except AnalyticsError as e:
            return Result.fail(e)

        export = self._empty_export()
        export["page_views"] = [pv.to_dict() for pv in page_views]
        export["sessions"] = [s.to_dict() for s in sessions]
        return Result.ok(export)

    async def export_user_data(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Every row tied to the subject.

        Args:
            user_id: Authenticated user id
            session_id: Raw session identifier for anonymous visitors

        Returns:
            {"page_views": [...], "sessions": [...], "export_date": ISO-8601}
        """
        if not self.config.privacy.enable_data_export:
            logger.info("data_export_disabled")
            return self._empty_export()

        subject = self._subject(user_id, session_id)
        if not subject:
            return self._empty_export()

        result = await self._collect(subject)
        if not result:
            logger.error(
                "data_export_failed",
                by=next(iter(subject)),
                error=result.error.message,
                error_type=result.error.code,
            )
            return self._empty_export()

        logger.info(
            "data_exported",
            by=next(iter(subject)),
            page_views=len(result.value["page_views"]),
            sessions=len(result.value["sessions"]),
        )
        return result.value

    async def delete_user_data(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_id: Optional[str] = None
    ) -> bool:
        """
        Hard-delete every page view and session tied to the subject.

        Returns:
            False if deletion is disabled or the store failed
        """
        if not self.config.privacy.enable_data_deletion:
            logger.warning("data_deletion_disabled")
            return False

        subject = self._subject(user_id, session_id)
        if not subject:
            return True

        try:
            with error_context("privacy", "delete_user_data", error_class=PrivacyError):
                deleted = await self.store.delete_subject(**subject)
        except AnalyticsError as e:
            logger.error(
                "data_deletion_failed",
                by=next(iter(subject)),
                error=e.message,
                error_type=e.code,
            )
            return False

        logger.info(
            "data_deleted",
            by=next(iter(subject)),
            page_views=deleted["page_views"],
            sessions=deleted["sessions"],
        )
        return True
