"""
Pytest configuration and shared fixtures for Visitor Analytics tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Dict, Generator

# Add src to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from visitor_analytics.utils.config import AnalyticsConfig, build_config
from visitor_analytics.analytics.store import AnalyticsStore
from visitor_analytics.analytics.manager import AnalyticsManager
from visitor_analytics.analytics.models import TrackingRequest

from fixtures.analytics_fixtures import AnalyticsFixtures


# Test configuration
TEST_CONFIG: Dict[str, Any] = {
    "privacy": {
        "hash_key": "test-hash-key",
        "consent_secret": "test-consent-secret-0123456789abcdef",
    },
    "exclusions": {
        "excluded_ips": ["10.0.0.5", "192.168.1.0/24"],
        "excluded_user_agents": ["HealthChecker"],
    },
    "logging": {
        "level": "DEBUG",
        "format": "text",
    },
}

NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def clock() -> FrozenClock:
    """A clock frozen at NOW."""
    return FrozenClock()


@pytest.fixture
def make_config(temp_dir: Path) -> Callable[..., AnalyticsConfig]:
    """Factory for configs layered over TEST_CONFIG."""
    def factory(overrides: Dict[str, Any] = None) -> AnalyticsConfig:
        data = _deep_merge(TEST_CONFIG, {"database": {"path": str(temp_dir / "analytics.db")}})
        return build_config(_deep_merge(data, overrides or {}))
    return factory


@pytest.fixture
def config(make_config) -> AnalyticsConfig:
    """Default test configuration."""
    return make_config()


@pytest.fixture
async def store(temp_dir: Path) -> AsyncGenerator[AnalyticsStore, None]:
    """An initialized store in a temp directory."""
    analytics_store = AnalyticsStore(temp_dir / "store.db")
    await analytics_store.initialize()
    yield analytics_store
    await analytics_store.close()


@pytest.fixture
async def make_manager(temp_dir: Path, clock: FrozenClock):
    """Factory for initialized managers over custom configs; closed at teardown."""
    managers = []

    async def factory(config: AnalyticsConfig) -> AnalyticsManager:
        analytics = AnalyticsManager(config, db_path=temp_dir / f"manager_{len(managers)}.db", clock=clock)
        await analytics.initialize()
        managers.append(analytics)
        return analytics

    yield factory

    for analytics in managers:
        await analytics.close()


@pytest.fixture
async def manager(config: AnalyticsConfig, temp_dir: Path, clock: FrozenClock) -> AsyncGenerator[AnalyticsManager, None]:
    """An initialized manager over the default config."""
    analytics = AnalyticsManager(config, db_path=temp_dir / "manager.db", clock=clock)
    await analytics.initialize()
    yield analytics
    await analytics.close()


@pytest.fixture
def make_request() -> Callable[..., TrackingRequest]:
    """Factory for tracking requests with sensible defaults."""
    return AnalyticsFixtures.request
