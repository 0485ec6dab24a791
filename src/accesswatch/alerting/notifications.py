"""Security notifications and the sinks that record them."""

import asyncio
import hashlib
import hmac
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import NotificationError
from ..models.access_event import utc_now

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    """Display type of a notification."""
    INFO = "INFO"
    WARNING = "WARNING"
    URGENT = "URGENT"


class NotificationPriority(Enum):
    """Delivery priority of a notification."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RelatedType(Enum):
    """Kind of record a notification points at."""
    ACCESS_LOG = "ACCESS_LOG"
    USER = "USER"


SECURITY_ALERT = "SECURITY_ALERT"


@dataclass
class Notification:
    """A notification addressed to one user.

    Attributes:
        user_id: Recipient
        organization_id: Recipient's organization
        type: Display type
        title: Short headline
        message: Body text
        priority: Delivery priority
        related_id: Id of the access event or user this is about
        related_type: Kind of related_id
        action_url: Where the recipient can review the activity
        category: Always SECURITY_ALERT for this subsystem
        notification_id: Assigned on creation
        created_at: Creation time
    """
    user_id: str
    organization_id: str
    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority
    related_id: Optional[str] = None
    related_type: Optional[RelatedType] = None
    action_url: Optional[str] = None
    category: str = SECURITY_ALERT
    notification_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "type": self.type.value,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "related_id": self.related_id,
            "related_type": self.related_type.value if self.related_type else None,
            "action_url": self.action_url,
            "created_at": self.created_at.isoformat(),
        }


class NotificationSink(ABC):
    """Abstract destination for notifications."""

    @abstractmethod
    async def create(self, notification: Notification) -> str:
        """Record a notification.

        Args:
            notification: Notification to record

        Returns:
            The notification id

        Raises:
            NotificationError: If the notification could not be recorded
        """
        pass


class InMemoryNotificationSink(NotificationSink):
    """In-memory notification sink for development/testing."""

    def __init__(self):
        self.notifications: List[Notification] = []

    async def create(self, notification: Notification) -> str:
        self.notifications.append(notification)
        return notification.notification_id

    def for_user(self, user_id: str) -> List[Notification]:
        return [n for n in self.notifications if n.user_id == user_id]

    def clear(self) -> None:
        self.notifications.clear()


class DynamoDBNotificationSink(NotificationSink):
    """Stores notifications in a DynamoDB table read by the dashboard.

    Table schema:
    - PK: notification_id
    - GSI user-index: (user_id, created_at)

    New notifications are stored unread.
    """

    def __init__(
        self,
        table_name: str = "accesswatch-notifications",
        region: str = "us-east-1",
    ):
        self.table_name = table_name
        self.region = region
        self._table = None

    def _get_table(self):
        """Lazy initialization of DynamoDB table."""
        if self._table is None:
            import boto3
            dynamodb = boto3.resource("dynamodb", region_name=self.region)
            self._table = dynamodb.Table(self.table_name)
        return self._table

    async def create(self, notification: Notification) -> str:
        item = notification.to_dict()
        item["is_read"] = False
        await asyncio.to_thread(self._put_item, item)
        return notification.notification_id

    def _put_item(self, item: Dict[str, Any]) -> None:
        from botocore.exceptions import ClientError

        try:
            self._get_table().put_item(Item={k: v for k, v in item.items() if v is not None})
        except ClientError as e:
            logger.error(f"Error storing notification {item['notification_id']}: {e}")
            raise NotificationError(f"Failed to store notification {item['notification_id']}") from e


@dataclass
class WebhookRetryConfig:
    """Retry behaviour of the webhook session."""
    max_retries: int = 3
    backoff_factor: float = 1.0
    retry_on_status_codes: List[int] = field(default_factory=lambda: [429, 500, 502, 503, 504])


class WebhookNotificationSink(NotificationSink):
    """Posts notifications as JSON to an HTTP endpoint.

    The request runs in a worker thread because requests is blocking.
    Optionally signs the body with an HMAC-SHA256 header.
    """

    SUCCESS_STATUS_CODES = (200, 201, 202, 204)

    def __init__(
        self,
        webhook_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 10,
        retry_config: Optional[WebhookRetryConfig] = None,
        signing_secret: Optional[str] = None,
        signing_header: str = "X-AccessWatch-Signature",
    ):
        self.webhook_url = webhook_url
        self.headers = headers or {"Content-Type": "application/json"}
        self.timeout = timeout
        self.retry_config = retry_config or WebhookRetryConfig()
        self.signing_secret = signing_secret
        self.signing_header = signing_header
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=self.retry_config.max_retries,
            backoff_factor=self.retry_config.backoff_factor,
            status_forcelist=self.retry_config.retry_on_status_codes,
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _prepare_headers(self, body: bytes) -> Dict[str, str]:
        headers = self.headers.copy()
        if self.signing_secret:
            digest = hmac.new(self.signing_secret.encode(), body, hashlib.sha256).hexdigest()
            headers[self.signing_header] = f"sha256={digest}"
        return headers

    async def create(self, notification: Notification) -> str:
        await asyncio.to_thread(self._post, notification)
        return notification.notification_id

    def _post(self, notification: Notification) -> None:
        body = json.dumps(notification.to_dict(), separators=(",", ":")).encode()
        try:
            response = self._session.post(
                self.webhook_url,
                data=body,
                headers=self._prepare_headers(body),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Webhook request error for notification {notification.notification_id}: {e}")
            raise NotificationError(f"Failed to deliver notification {notification.notification_id}") from e

        if response.status_code not in self.SUCCESS_STATUS_CODES:
            logger.error(
                f"Webhook rejected notification {notification.notification_id}: "
                f"status={response.status_code}"
            )
            raise NotificationError(
                f"Webhook returned {response.status_code} for notification "
                f"{notification.notification_id}"
            )
