"""
Analytics test fixtures.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from visitor_analytics.analytics.anonymize import hash_session_id
from visitor_analytics.analytics.models import TrackingRequest
from visitor_analytics.analytics.store import AnalyticsStore
from visitor_analytics.storage.database import format_timestamp


class UserAgents:
    """Representative user agent strings."""
    WINDOWS_CHROME = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    WINDOWS_EDGE = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
    )
    MAC_FIREFOX = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.1; rv:121.0) Gecko/20100101 Firefox/121.0"
    IPHONE_SAFARI = (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
    )
    IPAD_SAFARI = (
        "Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
    )
    ANDROID_CHROME = (
        "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
    )
    GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


class AnalyticsFixtures:
    """Fixtures for analytics testing."""

    @staticmethod
    def request(
        path: str = "/blog/hello-world",
        method: str = "GET",
        session_id: Optional[str] = "session-abc",
        user_id: Optional[Union[int, str]] = None,
        ip: Optional[str] = "203.0.113.7",
        user_agent: Optional[str] = UserAgents.WINDOWS_CHROME,
        referrer: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
        session: Optional[Dict[str, Any]] = None,
    ) -> TrackingRequest:
        """Create a tracking request."""
        return TrackingRequest(
            url=f"https://example.com{path}",
            path=path,
            method=method,
            referrer=referrer,
            ip=ip,
            user_agent=user_agent,
            session_id=session_id,
            user_id=user_id,
            cookies=cookies if cookies is not None else {},
            session=session if session is not None else {},
        )

    @staticmethod
    async def seed_page_view(
        store: AnalyticsStore,
        viewed_at: datetime,
        path: str = "/",
        session_id: Optional[str] = None,
        user_id: Optional[Union[int, str]] = None,
        device_type: str = "desktop",
        is_bot: bool = False,
        referrer: Optional[str] = None,
        response_time_ms: Optional[int] = None,
    ) -> int:
        """Insert a page view row directly."""
        session_id = session_id or f"session_{uuid.uuid4().hex[:12]}"
        return await store.insert_page_view({
            "url": f"https://example.com{path}",
            "path": path,
            "referrer": referrer,
            "session_hash": hash_session_id(session_id),
            "user_id": str(user_id) if user_id is not None else None,
            "device_type": device_type,
            "browser_family": "Chrome",
            "os_family": "Windows",
            "is_bot": int(is_bot),
            "response_time_ms": response_time_ms,
            "viewed_at": format_timestamp(viewed_at),
        })

    @staticmethod
    async def seed_session(
        store: AnalyticsStore,
        started_at: datetime,
        duration: Optional[timedelta] = None,
        page_view_count: int = 1,
        session_id: Optional[str] = None,
        user_id: Optional[Union[int, str]] = None,
        landing_page: str = "/",
        exit_page: Optional[str] = None,
        device_type: str = "desktop",
        is_bot: bool = False,
    ) -> str:
        """Insert a session row directly; returns the raw session id."""
        session_id = session_id or f"session_{uuid.uuid4().hex[:12]}"
        await store.start_session({
            "session_hash": hash_session_id(session_id),
            "landing_page": landing_page,
            "current_page": exit_page or landing_page,
            "exit_page": exit_page,
            "user_id": str(user_id) if user_id is not None else None,
            "device_type": device_type,
            "is_bot": int(is_bot),
            "session_started_at": format_timestamp(started_at),
            "session_ended_at": format_timestamp(started_at + duration) if duration is not None else None,
            "page_view_count": page_view_count,
        })
        return session_id
