"""
Data model for Visitor Analytics.

Requests arrive from the host web framework as a TrackingRequest; rows read
back from the store are materialised as PageView and Session records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..storage.database import parse_timestamp


class DeviceType(str, Enum):
    """Device classes reported by the classifier."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


@dataclass
class TrackingRequest:
    """The slice of an inbound HTTP request the tracking subsystem needs."""
    url: str
    path: str
    method: str = "GET"
    referrer: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[Union[int, str]] = None
    cookies: Dict[str, str] = field(default_factory=dict)
    # Server-side session storage owned by the host framework
    session: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


@dataclass
class TrackingOptions:
    """Per-call tracking switches and measurements."""
    new_session: bool = False
    end_session: bool = False
    response_time_ms: Optional[int] = None
    page_load_time_ms: Optional[int] = None


@dataclass(frozen=True)
class DeviceInfo:
    """Classification of a request's client."""
    device_type: DeviceType = DeviceType.DESKTOP
    browser_family: Optional[str] = None
    os_family: Optional[str] = None
    is_bot: bool = False
    country_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_type": self.device_type.value,
            "browser_family": self.browser_family,
            "os_family": self.os_family,
            "is_bot": self.is_bot,
            "country_code": self.country_code,
        }


@dataclass
class PageView:
    """A single tracked request. Never updated after insert."""
    id: Optional[int]
    url: str
    path: str
    session_hash: str
    viewed_at: datetime
    referrer: Optional[str] = None
    user_id: Optional[str] = None
    ip_hash: Optional[str] = None
    user_agent_hash: Optional[str] = None
    device_type: DeviceType = DeviceType.DESKTOP
    browser_family: Optional[str] = None
    os_family: Optional[str] = None
    is_bot: bool = False
    country_code: Optional[str] = None
    response_time_ms: Optional[int] = None
    page_load_time_ms: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "PageView":
        """Create from a database row."""
        return cls(
            id=row["id"],
            url=row["url"],
            path=row["path"],
            referrer=row["referrer"],
            session_hash=row["session_hash"],
            user_id=row["user_id"],
            ip_hash=row["ip_hash"],
            user_agent_hash=row["user_agent_hash"],
            device_type=DeviceType(row["device_type"]),
            browser_family=row["browser_family"],
            os_family=row["os_family"],
            is_bot=bool(row["is_bot"]),
            country_code=row["country_code"],
            response_time_ms=row["response_time_ms"],
            page_load_time_ms=row["page_load_time_ms"],
            viewed_at=parse_timestamp(row["viewed_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "url": self.url,
            "path": self.path,
            "referrer": self.referrer,
            "session_hash": self.session_hash,
            "user_id": self.user_id,
            "ip_hash": self.ip_hash,
            "user_agent_hash": self.user_agent_hash,
            "device_type": self.device_type.value,
            "browser_family": self.browser_family,
            "os_family": self.os_family,
            "is_bot": self.is_bot,
            "country_code": self.country_code,
            "response_time_ms": self.response_time_ms,
            "page_load_time_ms": self.page_load_time_ms,
            "viewed_at": self.viewed_at.isoformat(),
        }


@dataclass
class Session:
    """A browsing session keyed by its hashed identifier."""
    id: Optional[int]
    session_hash: str
    landing_page: str
    session_started_at: datetime
    current_page: Optional[str] = None
    exit_page: Optional[str] = None
    user_id: Optional[str] = None
    ip_hash: Optional[str] = None
    device_type: DeviceType = DeviceType.DESKTOP
    browser_family: Optional[str] = None
    os_family: Optional[str] = None
    is_bot: bool = False
    session_ended_at: Optional[datetime] = None
    page_view_count: int = 1

    @property
    def is_open(self) -> bool:
        return self.session_ended_at is None

    @property
    def is_bounce(self) -> bool:
        return self.page_view_count <= 1

    @property
    def duration_seconds(self) -> Optional[int]:
        """Whole seconds between start and end; None while the session is open."""
        if self.session_ended_at is None:
            return None
        return int((self.session_ended_at - self.session_started_at).total_seconds())

    @classmethod
    def from_row(cls, row) -> "Session":
        """Create from a database row."""
        return cls(
            id=row["id"],
            session_hash=row["session_hash"],
            landing_page=row["landing_page"],
            current_page=row["current_page"],
            exit_page=row["exit_page"],
            user_id=row["user_id"],
            ip_hash=row["ip_hash"],
            device_type=DeviceType(row["device_type"]),
            browser_family=row["browser_family"],
            os_family=row["os_family"],
            is_bot=bool(row["is_bot"]),
            session_started_at=parse_timestamp(row["session_started_at"]),
            session_ended_at=parse_timestamp(row["session_ended_at"]),
            page_view_count=row["page_view_count"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "session_hash": self.session_hash,
            "landing_page": self.landing_page,
            "current_page": self.current_page,
            "exit_page": self.exit_page,
            "user_id": self.user_id,
            "ip_hash": self.ip_hash,
            "device_type": self.device_type.value,
            "browser_family": self.browser_family,
            "os_family": self.os_family,
            "is_bot": self.is_bot,
            "session_started_at": self.session_started_at.isoformat(),
            "session_ended_at": self.session_ended_at.isoformat() if self.session_ended_at else None,
            "page_view_count": self.page_view_count,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class ConsentCookie:
    """A consent decision ready to be sent back to the client."""
    name: str
    value: str
    max_age: int
    expires_at: datetime
    granted: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "max_age": self.max_age,
            "expires_at": self.expires_at.isoformat(),
            "granted": self.granted,
        }
