"""
Test fixtures for Visitor Analytics.

Provides reusable requests, user agents and row seeding helpers.
"""

from .analytics_fixtures import AnalyticsFixtures, UserAgents

__all__ = [
    "AnalyticsFixtures",
    "UserAgents",
]
