"""Real-time security alerting for scored access events."""

from .dispatcher import (
    AlertConfig,
    AlertDispatcher,
    DispatchOutcome,
    notification_type_from_score,
    priority_from_score,
)
from .notifications import (
    DynamoDBNotificationSink,
    InMemoryNotificationSink,
    Notification,
    NotificationPriority,
    NotificationSink,
    NotificationType,
    RelatedType,
    WebhookNotificationSink,
    WebhookRetryConfig,
)
from .throttle import EscalationThrottle, ThrottleConfig

__all__ = [
    "AlertConfig",
    "AlertDispatcher",
    "DispatchOutcome",
    "DynamoDBNotificationSink",
    "EscalationThrottle",
    "InMemoryNotificationSink",
    "Notification",
    "NotificationPriority",
    "NotificationSink",
    "NotificationType",
    "RelatedType",
    "ThrottleConfig",
    "WebhookNotificationSink",
    "WebhookRetryConfig",
    "notification_type_from_score",
    "priority_from_score",
]
