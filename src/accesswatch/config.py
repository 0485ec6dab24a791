"""Deployment configuration for AccessWatch components."""

import logging
import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Any, Dict, Optional

import yaml

from .alerting.dispatcher import AlertConfig
from .errors import ConfigurationError
from .scoring.models import AnomalyThresholds

logger = logging.getLogger(__name__)


@dataclass
class AccessWatchConfig:
    """Top-level configuration.

    Attributes:
        access_log_table: DynamoDB table holding access events
        users_table: DynamoDB table holding user accounts
        assignments_table: DynamoDB table holding patient assignments
        notifications_table: DynamoDB table receiving notifications
        region: AWS region
        timezone: IANA timezone used for hour-of-day decisions
        io_timeout_seconds: Upper bound on each external call
        batch_page_size: Events per page in batch analysis
        progress_interval: Events between batch progress log lines
        webhook_url: Notification webhook (None stores notifications in DynamoDB)
        escalation_window_seconds: Minimum spacing of escalations per user
        thresholds: Detector base scores
        alert: Real-time alerting behaviour
    """

    access_log_table: str = "accesswatch-access-logs"
    users_table: str = "accesswatch-users"
    assignments_table: str = "accesswatch-patient-assignments"
    notifications_table: str = "accesswatch-notifications"
    region: str = "us-east-1"
    timezone: str = "UTC"
    io_timeout_seconds: float = 10.0
    batch_page_size: int = 500
    progress_interval: int = 1000
    webhook_url: Optional[str] = None
    escalation_window_seconds: int = 24 * 60 * 60
    thresholds: AnomalyThresholds = field(default_factory=AnomalyThresholds)
    alert: AlertConfig = field(default_factory=AlertConfig)

    def __post_init__(self):
        if self.io_timeout_seconds <= 0:
            raise ConfigurationError("io_timeout_seconds must be positive")
        if self.batch_page_size <= 0:
            raise ConfigurationError("batch_page_size must be positive")
        if self.progress_interval <= 0:
            raise ConfigurationError("progress_interval must be positive")
        self.get_tzinfo()

    def get_tzinfo(self) -> tzinfo:
        """Resolve the configured timezone."""
        if self.timezone.upper() == "UTC":
            return timezone.utc
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {self.timezone}") from e

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "AccessWatchConfig":
        """Create config from a mapping such as a parsed YAML document."""
        config = config or {}
        webhook_url = config.get("webhook_url")
        return cls(
            access_log_table=config.get("access_log_table", "accesswatch-access-logs"),
            users_table=config.get("users_table", "accesswatch-users"),
            assignments_table=config.get("assignments_table", "accesswatch-patient-assignments"),
            notifications_table=config.get("notifications_table", "accesswatch-notifications"),
            region=config.get("region", "us-east-1"),
            timezone=config.get("timezone", "UTC"),
            io_timeout_seconds=float(config.get("io_timeout_seconds", 10.0)),
            batch_page_size=int(config.get("batch_page_size", 500)),
            progress_interval=int(config.get("progress_interval", 1000)),
            webhook_url=webhook_url or None,
            escalation_window_seconds=int(config.get("escalation_window_seconds", 24 * 60 * 60)),
            thresholds=AnomalyThresholds.from_dict(config.get("thresholds")),
            alert=AlertConfig.from_dict(config.get("alert")),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "AccessWatchConfig":
        """Load config from a YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    @classmethod
    def from_environment(cls) -> "AccessWatchConfig":
        """Create config from environment variables."""
        return cls(
            access_log_table=os.environ.get("ACCESS_LOG_TABLE", "accesswatch-access-logs"),
            users_table=os.environ.get("USERS_TABLE", "accesswatch-users"),
            assignments_table=os.environ.get("ASSIGNMENTS_TABLE", "accesswatch-patient-assignments"),
            notifications_table=os.environ.get("NOTIFICATIONS_TABLE", "accesswatch-notifications"),
            region=os.environ.get("AWS_REGION", "us-east-1"),
            timezone=os.environ.get("ACCESSWATCH_TIMEZONE", "UTC"),
            io_timeout_seconds=float(os.environ.get("IO_TIMEOUT_SECONDS", "10")),
            batch_page_size=int(os.environ.get("BATCH_PAGE_SIZE", "500")),
            progress_interval=int(os.environ.get("BATCH_PROGRESS_INTERVAL", "1000")),
            webhook_url=os.environ.get("NOTIFICATION_WEBHOOK_URL") or None,
            escalation_window_seconds=int(os.environ.get("ESCALATION_WINDOW_SECONDS", str(24 * 60 * 60))),
            thresholds=AnomalyThresholds.from_environment(),
            alert=AlertConfig.from_environment(),
        )
