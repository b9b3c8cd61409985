"""
Configuration loader for Visitor Analytics.

This module provides configuration management with:
- Multiple configuration sources (files, env vars, dicts)
- Schema validation through pydantic
- Type coercion of environment values
- Configuration merging by priority

The resulting AnalyticsConfig is a plain value object: it is built once and
handed to every component at construction time.
"""

import os
import json
import yaml
import toml
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple, Union
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("visitor-analytics.config")

ENV_PREFIX = "ANALYTICS__"
ENV_SEPARATOR = "__"

# Shipped value of every secret; installs are expected to replace it
PLACEHOLDER_SECRET = "change-me"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class PrivacyConfig(BaseModel):
    """Anonymization and consent settings."""
    hash_ip_addresses: bool = True
    hash_user_agents: bool = True
    hash_referrers: bool = True
    # Keyed hashing secret for IP addresses
    hash_key: str = PLACEHOLDER_SECRET
    collect_country_data: bool = True
    require_consent: bool = False
    default_consent: bool = False
    consent_cookie_name: str = "analytics_consent"
    consent_cookie_lifetime_days: int = 365
    sign_consent_token: bool = True
    consent_secret: str = PLACEHOLDER_SECRET
    enable_data_export: bool = True
    enable_data_deletion: bool = True

    @field_validator('consent_cookie_lifetime_days')
    @classmethod
    def validate_lifetime(cls, v):
        if v <= 0:
            raise ValueError("consent cookie lifetime must be positive")
        return v


class BotDetectionConfig(BaseModel):
    """Bot detection settings."""
    enabled: bool = True
    # When False, bot requests are excluded entirely
    track_bots: bool = True
    bot_patterns: List[str] = Field(default_factory=lambda: [
        'bot', 'crawler', 'spider', 'scraper', 'indexer',
        'googlebot', 'bingbot', 'slurp', 'duckduckbot',
        'baiduspider', 'yandexbot', 'facebookexternalhit',
        'twitterbot', 'linkedinbot', 'whatsapp', 'telegram',
    ])


class RetentionConfig(BaseModel):
    """Data retention settings."""
    retention_days: int = 365  # 0 = keep forever
    cleanup_frequency: str = "daily"
    auto_cleanup: bool = True
    cleanup_batch_size: int = 1000
    batch_pause_seconds: float = 0.0

    @field_validator('retention_days')
    @classmethod
    def validate_retention_days(cls, v):
        if v < 0:
            raise ValueError("retention_days must be 0 (disabled) or a positive number of days")
        return v

    @field_validator('cleanup_batch_size')
    @classmethod
    def validate_batch_size(cls, v):
        if v <= 0:
            raise ValueError("cleanup_batch_size must be positive")
        return v

    @field_validator('cleanup_frequency')
    @classmethod
    def validate_frequency(cls, v):
        if v not in ("daily", "weekly", "monthly"):
            raise ValueError(f"Invalid cleanup frequency: {v}")
        return v


class PerformanceConfig(BaseModel):
    """Response-time capture settings."""
    track_response_times: bool = True
    track_page_load_times: bool = False
    # Measurements above this are treated as outliers and dropped
    max_response_time_ms: int = 30000


class DashboardConfig(BaseModel):
    """Dashboard read-path settings."""
    enabled: bool = True
    default_date_range: int = 30
    cache_minutes: int = 60  # 0 = no cache


class ExclusionConfig(BaseModel):
    """Requests that are never tracked."""
    excluded_paths: List[str] = Field(default_factory=lambda: [
        '/admin/analytics*',
        '/api/analytics*',
        '/_debugbar*',
        '/telescope*',
        '/horizon*',
    ])
    # Exact addresses or CIDR ranges
    excluded_ips: List[str] = Field(default_factory=list)
    excluded_user_agents: List[str] = Field(default_factory=list)


class SessionConfig(BaseModel):
    """Session lifecycle and engagement settings."""
    timeout_minutes: int = 30
    count_bounces: bool = True
    engagement_threshold_seconds: int = 300
    # None disables the page-count criterion
    engagement_min_page_views: Optional[int] = None


class DeviceDetectionConfig(BaseModel):
    """Device, browser and OS heuristics, expressed as ordered data."""
    enabled: bool = True
    detect_browser: bool = True
    detect_os: bool = True
    mobile_patterns: List[str] = Field(default_factory=lambda: [
        'Mobile', 'Android', 'iPhone', 'iPad', 'iPod', 'BlackBerry', 'Windows Phone'
    ])
    tablet_patterns: List[str] = Field(default_factory=lambda: [
        'iPad', 'Tablet', 'Kindle', 'Silk', 'PlayBook'
    ])
    browser_patterns: List[Tuple[str, str]] = Field(default_factory=lambda: [
        ('Edg', 'Edge'),
        ('OPR', 'Opera'),
        ('Opera', 'Opera'),
        ('Chrome', 'Chrome'),
        ('CriOS', 'Chrome'),
        ('Firefox', 'Firefox'),
        ('FxiOS', 'Firefox'),
        ('Safari', 'Safari'),
    ])
    os_patterns: List[Tuple[str, str]] = Field(default_factory=lambda: [
        ('Windows', 'Windows'),
        ('Android', 'Android'),
        ('iPhone', 'iOS'),
        ('iPad', 'iOS'),
        ('iPod', 'iOS'),
        ('Macintosh', 'macOS'),
        ('CrOS', 'ChromeOS'),
        ('Linux', 'Linux'),
    ])


class DatabaseConfig(BaseModel):
    """Database configuration."""
    path: Path = Field(default_factory=lambda: Path.home() / ".visitor-analytics" / "analytics.db")
    timeout: float = 30.0

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        """Ensure path is absolute."""
        return Path(v).expanduser().absolute()


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".visitor-analytics" / "logs")
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class AnalyticsConfig(BaseModel):
    """Main Visitor Analytics configuration."""
    enabled: bool = True
    auto_track_page_views: bool = True
    track_sessions: bool = True
    track_authenticated_users: bool = True
    track_anonymous_users: bool = True

    privacy: PrivacyConfig = Field(default_factory=PrivacyConfig)
    bot_detection: BotDetectionConfig = Field(default_factory=BotDetectionConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    exclusions: ExclusionConfig = Field(default_factory=ExclusionConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    device_detection: DeviceDetectionConfig = Field(default_factory=DeviceDetectionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(frozen=True)


def placeholder_secrets(config: AnalyticsConfig) -> List[str]:
    """Secrets in active use that still hold the shipped placeholder."""
    privacy = config.privacy
    fields = []
    if privacy.hash_key == PLACEHOLDER_SECRET and (privacy.hash_ip_addresses or privacy.hash_referrers):
        fields.append("privacy.hash_key")
    if privacy.consent_secret == PLACEHOLDER_SECRET and privacy.sign_consent_token:
        fields.append("privacy.consent_secret")
    return fields


def build_config(data: Optional[Dict[str, Any]] = None) -> AnalyticsConfig:
    """Validate a raw mapping into an AnalyticsConfig."""
    try:
        config = AnalyticsConfig(**(data or {}))
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field = ".".join(str(x) for x in error["loc"])
            errors.append(f"{field}: {error['msg']}")
        raise ConfigurationError(
            f"Configuration validation failed: {'; '.join(errors)}"
        ) from e

    insecure = placeholder_secrets(config)
    if insecure:
        logger.warning(
            "placeholder_secrets_in_use",
            fields=insecure,
            hint="set per-install values; hashes and consent tokens are forgeable otherwise",
        )
    return config


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, env: Optional[Dict[str, str]] = None):
        """
        Initialize configuration loader.

        Args:
            env: Environment mapping (defaults to os.environ)
        """
        self._sources: List[ConfigSource] = []
        self._env = env if env is not None else os.environ

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        elif suffix == ".env":
            return "env"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    def load(self) -> AnalyticsConfig:
        """
        Load configuration from all sources.

        Sources are merged lowest priority first, environment variables last.

        Returns:
            Merged configuration
        """
        merged_data: Dict[str, Any] = {}

        for source in self._sources:
            data = self._load_source(source)
            merged_data = self._deep_merge(merged_data, data)

        env_data = self._load_env_vars(self._env.items())
        merged_data = self._deep_merge(merged_data, env_data)

        config = build_config(merged_data)
        logger.info("configuration_loaded", sources=len(self._sources))
        return config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        try:
            if source.source_type == "json":
                return json.loads(content)
            elif source.source_type == "yaml":
                return yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                return toml.loads(content)
            elif source.source_type == "env":
                return self._load_env_vars(self._parse_env_file(content))
        except (ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ConfigurationError(f"Failed to parse {source.path}: {e}") from e

        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _parse_env_file(self, content: str) -> List[Tuple[str, str]]:
        """Parse .env file format into key/value pairs."""
        pairs = []

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            pairs.append((key.strip(), value.strip().strip('"').strip("'")))

        return pairs

    def _load_env_vars(self, items) -> Dict[str, Any]:
        """Build nested configuration from ANALYTICS__SECTION__KEY variables."""
        result: Dict[str, Any] = {}

        for key, value in items:
            if not key.startswith(ENV_PREFIX):
                continue

            parts = key[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR)
            current = result

            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # List (comma-separated)
        if "," in value:
            return [v.strip() for v in value.split(",") if v.strip()]

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    env: Optional[Dict[str, str]] = None
) -> AnalyticsConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        env: Environment mapping (defaults to os.environ)

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader(env=env)

    default_paths = [
        Path.home() / ".visitor-analytics" / "config.yaml",
        Path("/etc/visitor-analytics/config.yaml"),
        Path("./visitor-analytics.yaml"),
        Path("./visitor-analytics.toml"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader.load()


__all__ = [
    'AnalyticsConfig',
    'PrivacyConfig',
    'BotDetectionConfig',
    'RetentionConfig',
    'PerformanceConfig',
    'DashboardConfig',
    'ExclusionConfig',
    'SessionConfig',
    'DeviceDetectionConfig',
    'DatabaseConfig',
    'LoggingConfig',
    'ConfigLoader',
    'build_config',
    'load_config',
]
