"""
Tests for configuration loading and validation.
"""

import json
from pathlib import Path

import pydantic
import pytest
import toml
import yaml

from visitor_analytics.utils.config import (
    AnalyticsConfig,
    ConfigLoader,
    build_config,
    load_config,
    placeholder_secrets,
)
from visitor_analytics.utils.errors import ConfigurationError


class TestDefaults:

    def test_defaults(self):
        config = AnalyticsConfig()

        assert config.enabled is True
        assert config.privacy.require_consent is False
        assert config.privacy.hash_ip_addresses is True
        assert config.privacy.consent_cookie_lifetime_days == 365
        assert config.bot_detection.track_bots is True
        assert len(config.bot_detection.bot_patterns) == 16
        assert config.retention.retention_days == 365
        assert config.retention.cleanup_batch_size == 1000
        assert config.sessions.timeout_minutes == 30
        assert config.sessions.engagement_threshold_seconds == 300
        assert config.performance.max_response_time_ms == 30000
        assert config.dashboard.cache_minutes == 60
        assert "/admin/analytics*" in config.exclusions.excluded_paths

    def test_browser_rules_ordered_most_specific_first(self):
        labels = [label for _, label in AnalyticsConfig().device_detection.browser_patterns]
        assert labels.index("Edge") < labels.index("Chrome") < labels.index("Safari")

    def test_config_is_immutable(self):
        config = AnalyticsConfig()
        with pytest.raises(pydantic.ValidationError):
            config.enabled = False


class TestValidation:

    @pytest.mark.parametrize("data", [
        {"retention": {"retention_days": -1}},
        {"retention": {"cleanup_frequency": "hourly"}},
        {"retention": {"cleanup_batch_size": 0}},
        {"privacy": {"consent_cookie_lifetime_days": 0}},
        {"logging": {"level": "CHATTY"}},
    ])
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ConfigurationError) as exc_info:
            build_config(data)
        assert "Configuration validation failed" in exc_info.value.message

    def test_zero_retention_allowed(self):
        assert build_config({"retention": {"retention_days": 0}}).retention.retention_days == 0

    def test_log_level_normalized(self):
        assert build_config({"logging": {"level": "debug"}}).logging.level == "DEBUG"

    def test_database_path_expanded(self):
        path = build_config({"database": {"path": "~/analytics.db"}}).database.path
        assert path.is_absolute()
        assert path == Path.home() / "analytics.db"


class TestPlaceholderSecrets:

    def test_defaults_are_flagged(self):
        assert placeholder_secrets(build_config()) == ["privacy.hash_key", "privacy.consent_secret"]

    def test_real_secrets_pass(self):
        config = build_config({"privacy": {
            "hash_key": "install-hash-key-7f3a",
            "consent_secret": "install-consent-secret-0123456789abcdef",
        }})
        assert placeholder_secrets(config) == []

    def test_unused_secrets_ignored(self):
        config = build_config({"privacy": {
            "hash_ip_addresses": False,
            "hash_referrers": False,
            "sign_consent_token": False,
        }})
        assert placeholder_secrets(config) == []


class TestConfigLoader:

    def test_yaml_source(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(yaml.safe_dump({
            "retention": {"retention_days": 90},
            "device_detection": {"browser_patterns": [["Vivaldi", "Vivaldi"]]},
        }))

        loader = ConfigLoader(env={})
        loader.add_source(path)
        config = loader.load()

        assert config.retention.retention_days == 90
        assert config.device_detection.browser_patterns == [("Vivaldi", "Vivaldi")]

    def test_toml_and_json_sources(self, temp_dir):
        toml_path = temp_dir / "config.toml"
        toml_path.write_text(toml.dumps({"sessions": {"timeout_minutes": 45}}))
        json_path = temp_dir / "config.json"
        json_path.write_text(json.dumps({"dashboard": {"cache_minutes": 5}}))

        loader = ConfigLoader(env={})
        loader.add_source(toml_path)
        loader.add_source(json_path)
        config = loader.load()

        assert config.sessions.timeout_minutes == 45
        assert config.dashboard.cache_minutes == 5

    def test_higher_priority_wins(self):
        loader = ConfigLoader(env={})
        loader.add_source({"retention": {"retention_days": 10, "auto_cleanup": False}}, priority=50)
        loader.add_source({"retention": {"retention_days": 20}}, priority=5)
        config = loader.load()

        assert config.retention.retention_days == 10
        assert config.retention.auto_cleanup is False

    def test_environment_overrides_files(self):
        loader = ConfigLoader(env={
            "ANALYTICS__RETENTION__RETENTION_DAYS": "30",
            "ANALYTICS__PRIVACY__REQUIRE_CONSENT": "yes",
            "ANALYTICS__EXCLUSIONS__EXCLUDED_IPS": "10.1.1.1,10.2.0.0/16",
            "ANALYTICS__RETENTION__BATCH_PAUSE_SECONDS": "0.5",
            "UNRELATED": "1",
        })
        loader.add_source({"retention": {"retention_days": 365}}, priority=100)
        config = loader.load()

        assert config.retention.retention_days == 30
        assert config.privacy.require_consent is True
        assert config.exclusions.excluded_ips == ["10.1.1.1", "10.2.0.0/16"]
        assert config.retention.batch_pause_seconds == 0.5

    def test_env_file(self, temp_dir):
        path = temp_dir / "analytics.env"
        path.write_text(
            "# analytics settings\n"
            "ANALYTICS__ENABLED=false\n"
            "ANALYTICS__DASHBOARD__DEFAULT_DATE_RANGE='7'\n"
        )

        loader = ConfigLoader(env={})
        loader.add_source(path)
        config = loader.load()

        assert config.enabled is False
        assert config.dashboard.default_date_range == 7

    def test_missing_file_skipped(self, temp_dir):
        loader = ConfigLoader(env={})
        loader.add_source(temp_dir / "absent.yaml")
        assert loader.load().retention.retention_days == 365

    def test_unknown_file_type(self, temp_dir):
        with pytest.raises(ConfigurationError):
            ConfigLoader(env={}).add_source(temp_dir / "config.ini")

    def test_malformed_file(self, temp_dir):
        path = temp_dir / "broken.yaml"
        path.write_text("retention: [unclosed")

        loader = ConfigLoader(env={})
        loader.add_source(path)
        with pytest.raises(ConfigurationError):
            loader.load()


class TestLoadConfig:

    def test_paths_then_extra_then_env(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        path = temp_dir / "custom.yaml"
        path.write_text(yaml.safe_dump({"retention": {"retention_days": 120, "cleanup_frequency": "weekly"}}))

        config = load_config(
            config_paths=[path],
            extra_config={"retention": {"retention_days": 60}},
            env={"ANALYTICS__SESSIONS__TIMEOUT_MINUTES": "15"},
        )

        assert config.retention.retention_days == 60
        assert config.retention.cleanup_frequency == "weekly"
        assert config.sessions.timeout_minutes == 15

    def test_working_directory_file_picked_up(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        (temp_dir / "visitor-analytics.toml").write_text(toml.dumps({"dashboard": {"enabled": False}}))

        assert load_config(env={}).dashboard.enabled is False
