"""
Unit tests for AccessWatch configuration loading.
"""

from datetime import timezone

import pytest

from accesswatch.config import AccessWatchConfig
from accesswatch.errors import ConfigurationError

SAMPLE_CONFIG = """
access_log_table: prod-access-logs
region: ap-northeast-1
timezone: Asia/Tokyo
io_timeout_seconds: 5
batch_page_size: 200
webhook_url: https://hooks.example.org/security
thresholds:
  late_night_access_score: 45
  standard_deviation_threshold: 2.5
alert:
  alert_threshold: 60
  notify_user: true
"""


class TestAccessWatchConfig:
    """Tests for AccessWatchConfig."""

    def test_defaults(self):
        config = AccessWatchConfig()

        assert config.timezone == "UTC"
        assert config.get_tzinfo() is timezone.utc
        assert config.io_timeout_seconds == 10.0
        assert config.batch_page_size == 500
        assert config.progress_interval == 1000
        assert config.webhook_url is None
        assert config.thresholds.bulk_access_score == 40
        assert config.alert.alert_threshold == 50

    def test_from_yaml(self, temp_config_directory):
        path = temp_config_directory / "accesswatch.yaml"
        path.write_text(SAMPLE_CONFIG)

        config = AccessWatchConfig.from_yaml(str(path))

        assert config.access_log_table == "prod-access-logs"
        assert config.users_table == "accesswatch-users"
        assert config.region == "ap-northeast-1"
        assert str(config.get_tzinfo()) == "Asia/Tokyo"
        assert config.io_timeout_seconds == 5.0
        assert config.batch_page_size == 200
        assert config.webhook_url == "https://hooks.example.org/security"
        assert config.thresholds.late_night_access_score == 45.0
        assert config.thresholds.standard_deviation_threshold == 2.5
        assert config.thresholds.unusual_device_score == 25
        assert config.alert.alert_threshold == 60
        assert config.alert.notify_user is True

    def test_from_yaml_empty_file(self, temp_config_directory):
        path = temp_config_directory / "empty.yaml"
        path.write_text("")

        assert AccessWatchConfig.from_yaml(str(path)) == AccessWatchConfig()

    def test_from_yaml_missing_file(self, temp_config_directory):
        with pytest.raises(ConfigurationError):
            AccessWatchConfig.from_yaml(str(temp_config_directory / "missing.yaml"))

    def test_from_yaml_invalid(self, temp_config_directory):
        path = temp_config_directory / "broken.yaml"
        path.write_text("thresholds: [unclosed")

        with pytest.raises(ConfigurationError):
            AccessWatchConfig.from_yaml(str(path))

    def test_from_yaml_not_a_mapping(self, temp_config_directory):
        path = temp_config_directory / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            AccessWatchConfig.from_yaml(str(path))

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("ACCESS_LOG_TABLE", "env-logs")
        monkeypatch.setenv("NOTIFICATIONS_TABLE", "env-notifications")
        monkeypatch.setenv("ACCESSWATCH_TIMEZONE", "Europe/Berlin")
        monkeypatch.setenv("IO_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("ESCALATION_WINDOW_SECONDS", "3600")
        monkeypatch.setenv("ANOMALY_UNAUTHORIZED_SCORE", "70")
        monkeypatch.setenv("ALERT_THRESHOLD", "65")

        config = AccessWatchConfig.from_environment()

        assert config.access_log_table == "env-logs"
        assert config.notifications_table == "env-notifications"
        assert str(config.get_tzinfo()) == "Europe/Berlin"
        assert config.io_timeout_seconds == 2.5
        assert config.escalation_window_seconds == 3600
        assert config.thresholds.unauthorized_access_score == 70.0
        assert config.alert.alert_threshold == 65

    def test_unknown_timezone(self):
        with pytest.raises(ConfigurationError):
            AccessWatchConfig(timezone="Mars/Olympus_Mons")

    @pytest.mark.parametrize("field_name", ["io_timeout_seconds", "batch_page_size", "progress_interval"])
    def test_non_positive_values_rejected(self, field_name):
        with pytest.raises(ConfigurationError):
            AccessWatchConfig(**{field_name: 0})
