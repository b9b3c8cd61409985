"""
Tracking, reporting and retention for Visitor Analytics.

This package provides:
- Consent gating and traffic classification
- Page view and session recording
- Aggregate statistics and a cached dashboard read path
- GDPR export/erasure and retention cleanup
"""

from .models import (
    DeviceType,
    DeviceInfo,
    TrackingRequest,
    TrackingOptions,
    PageView,
    Session,
    ConsentCookie,
)
from .classifier import TrafficClassifier, first_match, contains_any, ip_matches
from .consent import ConsentGate
from .store import AnalyticsStore
from .recorder import EventRecorder
from .aggregator import StatsAggregator
from .dashboard import DashboardService
from .privacy import PrivacyService
from .janitor import RetentionJanitor
from .manager import AnalyticsManager
from .events import (
    AnalyticsLogger,
    PageViewEvent,
    SessionStartEvent,
    SessionUpdateEvent,
    SessionEndEvent,
    ConsentEvent,
)
from .tracker import RequestTracker

__all__ = [
    # Models
    'DeviceType',
    'DeviceInfo',
    'TrackingRequest',
    'TrackingOptions',
    'PageView',
    'Session',
    'ConsentCookie',

    # Write path
    'TrafficClassifier',
    'first_match',
    'contains_any',
    'ip_matches',
    'ConsentGate',
    'AnalyticsStore',
    'EventRecorder',

    # Read path
    'StatsAggregator',
    'DashboardService',

    # Data lifecycle
    'PrivacyService',
    'RetentionJanitor',

    # Facades
    'AnalyticsManager',
    'AnalyticsLogger',
    'PageViewEvent',
    'SessionStartEvent',
    'SessionUpdateEvent',
    'SessionEndEvent',
    'ConsentEvent',
    'RequestTracker',
]
