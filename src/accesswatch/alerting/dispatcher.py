"""Real-time anomaly alerting.

Records access events, scores them and fans out security notifications to
organization administrators (and optionally the acting user). Also raises
immediate interrupts for inherently high-risk actions and escalates users
who accumulate repeated anomalies.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional

from ..device import extract_device_info
from ..directory import UserDirectory
from ..models.access_event import (
    AccessAction,
    AccessEvent,
    AccessLogData,
    ResourceType,
    utc_now,
)
from ..scoring.engine import AnomalyScoringEngine
from ..scoring.models import AnomalyDetectionResult, AnomalyThresholds
from ..store.base import AccessLogQuery, AccessLogStore
from . import templates
from .notifications import (
    Notification,
    NotificationPriority,
    NotificationSink,
    NotificationType,
    RelatedType,
)
from .throttle import EscalationThrottle

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).lower() in ("true", "1", "yes")


@dataclass
class AlertConfig:
    """Alerting behaviour for the real-time path.

    Attributes:
        enable_real_time_alerts: Score and alert on every recorded access
        alert_threshold: Minimum anomaly score that generates alerts
        notify_admins_only: Always notify admins (otherwise only at score >= 70)
        notify_user: Also notify the acting user for medium scores
        enable_high_risk_interrupts: Run the high-risk action check
        enable_escalation: Run the repeated-anomaly check on anomalies
    """

    enable_real_time_alerts: bool = True
    alert_threshold: int = 50
    notify_admins_only: bool = True
    notify_user: bool = False
    enable_high_risk_interrupts: bool = True
    enable_escalation: bool = True

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "AlertConfig":
        config = config or {}
        return cls(
            enable_real_time_alerts=bool(config.get("enable_real_time_alerts", True)),
            alert_threshold=int(config.get("alert_threshold", 50)),
            notify_admins_only=bool(config.get("notify_admins_only", True)),
            notify_user=bool(config.get("notify_user", False)),
            enable_high_risk_interrupts=bool(config.get("enable_high_risk_interrupts", True)),
            enable_escalation=bool(config.get("enable_escalation", True)),
        )

    @classmethod
    def from_environment(cls) -> "AlertConfig":
        """Create config from environment variables."""
        return cls(
            enable_real_time_alerts=_env_bool("ALERT_ENABLE_REAL_TIME", True),
            alert_threshold=int(os.environ.get("ALERT_THRESHOLD", "50")),
            notify_admins_only=_env_bool("ALERT_NOTIFY_ADMINS_ONLY", True),
            notify_user=_env_bool("ALERT_NOTIFY_USER", False),
            enable_high_risk_interrupts=_env_bool("ALERT_ENABLE_HIGH_RISK", True),
            enable_escalation=_env_bool("ALERT_ENABLE_ESCALATION", True),
        )


@dataclass
class DispatchOutcome:
    """Result of recording one access through the real-time path.

    Attributes:
        event_id: Id of the persisted event
        result: Scoring result, None when scoring was skipped or failed
        alerts_created: Anomaly notifications written
        high_risk: Whether the high-risk interrupt fired
        escalations_created: Escalation notifications written
        error: Description of a failure after the event was persisted
    """

    event_id: str
    result: Optional[AnomalyDetectionResult] = None
    alerts_created: int = 0
    high_risk: bool = False
    escalations_created: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "result": self.result.to_dict() if self.result else None,
            "alerts_created": self.alerts_created,
            "high_risk": self.high_risk,
            "escalations_created": self.escalations_created,
            "error": self.error,
        }


def priority_from_score(score: int) -> NotificationPriority:
    if score >= 80:
        return NotificationPriority.URGENT
    if score >= 70:
        return NotificationPriority.HIGH
    if score >= 50:
        return NotificationPriority.MEDIUM
    return NotificationPriority.LOW


def notification_type_from_score(score: int) -> NotificationType:
    if score >= 80:
        return NotificationType.URGENT
    if score >= 60:
        return NotificationType.WARNING
    return NotificationType.INFO


class AlertDispatcher:
    """Turns scored access events into security notifications.

    Attributes:
        store: Access log store
        engine: Scoring engine
        users: User directory for actors and admin recipients
        sink: Destination for notifications
        throttle: Per-user escalation rate limit
        tz: Timezone for the late-night high-risk rule
        io_timeout_seconds: Upper bound on each store/sink call
    """

    ADMIN_ALERT_SCORE = 70
    SELF_NOTIFY_MIN_SCORE = 50
    SELF_NOTIFY_MAX_SCORE = 80

    HIGH_RISK_EXPORT_BYTES = 50 * 1024 * 1024
    LATE_NIGHT_START_HOUR = 22
    LATE_NIGHT_END_HOUR = 6

    REPEATED_ANOMALY_THRESHOLD = 5
    REPEATED_ANOMALY_WINDOW = timedelta(hours=24)

    def __init__(
        self,
        store: AccessLogStore,
        engine: AnomalyScoringEngine,
        users: UserDirectory,
        sink: NotificationSink,
        throttle: Optional[EscalationThrottle] = None,
        tz: Optional[tzinfo] = None,
        io_timeout_seconds: float = 10.0,
    ):
        self.store = store
        self.engine = engine
        self.users = users
        self.sink = sink
        self.throttle = throttle if throttle is not None else EscalationThrottle()
        self.tz = tz or timezone.utc
        self.io_timeout_seconds = io_timeout_seconds

    async def _io(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.io_timeout_seconds)

    async def record_access_and_detect_anomaly(
        self,
        data: AccessLogData,
        alert_config: Optional[AlertConfig] = None,
        thresholds: Optional[AnomalyThresholds] = None,
    ) -> DispatchOutcome:
        """Persist an access, score it and dispatch alerts.

        A failure to persist the access propagates. Any later failure is
        logged and reported in DispatchOutcome.error.

        Args:
            data: Caller-supplied access facts
            alert_config: Alerting behaviour (defaults when omitted)
            thresholds: Detector base scores (defaults when omitted)

        Returns:
            DispatchOutcome describing what happened
        """
        config = alert_config or AlertConfig()

        device_info = extract_device_info(data.user_agent) if data.user_agent else None
        event = AccessEvent.from_access_data(data, device_info=device_info)
        event_id = await self._io(self.store.append(event))
        outcome = DispatchOutcome(event_id=event_id)

        try:
            if config.enable_high_risk_interrupts:
                outcome.high_risk = await self.detect_high_risk_access(event)

            if not config.enable_real_time_alerts:
                return outcome

            result = await self.engine.detect_anomaly(event_id, thresholds)
            outcome.result = result
            await self._io(
                self.store.annotate(
                    event_id,
                    result.anomaly_score,
                    result.is_anomaly,
                    result.reasons,
                    only_if_not_anomalous=True,
                )
            )

            if result.anomaly_score >= config.alert_threshold:
                outcome.alerts_created = await self.generate_anomaly_alerts(event, result, config)

            if result.is_anomaly and config.enable_escalation:
                outcome.escalations_created = await self._escalate_if_allowed(
                    event.user_id, event.organization_id, event.created_at
                )
        except asyncio.TimeoutError:
            outcome.error = f"Timed out after {self.io_timeout_seconds}s"
            logger.error(f"Alert dispatch timed out for access event {event_id}")
        except Exception as e:
            outcome.error = str(e)
            logger.error(f"Alert dispatch failed for access event {event_id}: {e}")

        return outcome

    async def generate_anomaly_alerts(
        self,
        event: AccessEvent,
        result: AnomalyDetectionResult,
        config: Optional[AlertConfig] = None,
    ) -> int:
        """Notify admins (and optionally the actor) about a scored event.

        Returns:
            Number of notifications successfully written
        """
        config = config or AlertConfig()

        user = await self._io(self.users.get_user(event.user_id))
        if user is None:
            logger.warning(f"Cannot alert on {event.event_id}: user not found: {event.user_id}")
            return 0

        score = result.anomaly_score
        priority = priority_from_score(score)
        notification_type = notification_type_from_score(score)
        title = templates.ALERT_TITLE_PREFIX + templates.alert_title(result)
        message = templates.alert_message(user, event, result)
        created = 0

        if config.notify_admins_only or score >= self.ADMIN_ALERT_SCORE:
            admins = await self._io(self.users.list_active_admins(event.organization_id))
            for admin in admins:
                notification = Notification(
                    user_id=admin.user_id,
                    organization_id=event.organization_id,
                    type=notification_type,
                    title=title,
                    message=message,
                    priority=priority,
                    related_id=event.event_id,
                    related_type=RelatedType.ACCESS_LOG,
                    action_url=f"/dashboard/security/logs/{event.event_id}",
                )
                if await self._send(notification):
                    created += 1

        if config.notify_user and self.SELF_NOTIFY_MIN_SCORE <= score < self.SELF_NOTIFY_MAX_SCORE:
            notification = Notification(
                user_id=event.user_id,
                organization_id=event.organization_id,
                type=NotificationType.INFO,
                title=templates.SELF_CHECK_TITLE,
                message=templates.self_check_message(event),
                priority=NotificationPriority.MEDIUM,
                related_id=event.event_id,
                related_type=RelatedType.ACCESS_LOG,
                action_url="/dashboard/security/my-activity",
            )
            if await self._send(notification):
                created += 1

        logger.info(f"Created {created} anomaly alerts for {event.event_id} (score: {score})")
        return created

    def is_high_risk(self, event: AccessEvent) -> bool:
        """Check the event against the fixed high-risk rules."""
        if event.action == AccessAction.DELETE:
            return True
        if (
            event.action == AccessAction.EXPORT
            and event.data_size
            and event.data_size > self.HIGH_RISK_EXPORT_BYTES
        ):
            return True
        hour = event.created_at.astimezone(self.tz).hour
        late_night = hour >= self.LATE_NIGHT_START_HOUR or hour < self.LATE_NIGHT_END_HOUR
        return late_night and event.resource_type == ResourceType.PATIENT

    async def detect_high_risk_access(self, event: AccessEvent) -> bool:
        """Send an immediate interrupt to every admin for a high-risk action.

        Fires regardless of anomaly score. No notification is sent when the
        acting user cannot be resolved.

        Returns:
            Whether the event was high risk
        """
        if not self.is_high_risk(event):
            return False

        logger.warning(
            f"High-risk access detected: {event.action.value} {event.resource_type.value} "
            f"by {event.user_id}"
        )

        user = await self._io(self.users.get_user(event.user_id))
        if user is None:
            logger.warning(f"High-risk access by unknown user {event.user_id}")
            return True

        admins = await self._io(self.users.list_active_admins(event.organization_id))
        for admin in admins:
            await self._send(
                Notification(
                    user_id=admin.user_id,
                    organization_id=event.organization_id,
                    type=NotificationType.URGENT,
                    title=templates.HIGH_RISK_TITLE,
                    message=templates.high_risk_message(user, event),
                    priority=NotificationPriority.URGENT,
                    related_id=event.event_id,
                    related_type=RelatedType.ACCESS_LOG,
                    action_url="/dashboard/security",
                )
            )
        return True

    async def count_recent_anomalies(
        self, user_id: str, organization_id: str, now: Optional[datetime] = None
    ) -> int:
        """Count a user's anomalous events within the escalation window ending at now."""
        now = now or utc_now()
        events = await self._io(
            self.store.query_by_user(
                user_id,
                AccessLogQuery(
                    start=now - self.REPEATED_ANOMALY_WINDOW,
                    end=now,
                    is_anomaly=True,
                    limit=None,
                ),
            )
        )
        return sum(1 for e in events if e.organization_id == organization_id)

    async def check_repeated_anomalies(
        self, user_id: str, organization_id: str, now: Optional[datetime] = None
    ) -> int:
        """Escalate to every admin when a user has too many recent anomalies.

        Does not deduplicate: each call at or above the threshold notifies
        again. Callers rate-limit invocations.

        Returns:
            Number of escalation notifications written
        """
        count = await self.count_recent_anomalies(user_id, organization_id, now)
        if count < self.REPEATED_ANOMALY_THRESHOLD:
            return 0
        return await self._send_escalation(user_id, organization_id, count)

    async def _escalate_if_allowed(
        self, user_id: str, organization_id: str, now: datetime
    ) -> int:
        count = await self.count_recent_anomalies(user_id, organization_id, now)
        if count < self.REPEATED_ANOMALY_THRESHOLD:
            return 0

        allowed, _ = self.throttle.check_and_increment(user_id, now)
        if not allowed:
            logger.warning(f"Escalation for {user_id} suppressed by throttle ({count} anomalies)")
            return 0
        return await self._send_escalation(user_id, organization_id, count)

    async def _send_escalation(self, user_id: str, organization_id: str, count: int) -> int:
        logger.warning(f"Repeated anomalies for user {user_id}: {count} in 24h")

        user = await self._io(self.users.get_user(user_id))
        if user is None:
            logger.warning(f"Cannot escalate unknown user {user_id}")
            return 0

        window_hours = int(self.REPEATED_ANOMALY_WINDOW.total_seconds() // 3600)
        admins = await self._io(self.users.list_active_admins(organization_id))
        sent = 0
        for admin in admins:
            delivered = await self._send(
                Notification(
                    user_id=admin.user_id,
                    organization_id=organization_id,
                    type=NotificationType.URGENT,
                    title=templates.REPEATED_ANOMALY_TITLE,
                    message=templates.repeated_anomaly_message(user, count, window_hours),
                    priority=NotificationPriority.URGENT,
                    related_id=user_id,
                    related_type=RelatedType.USER,
                    action_url=f"/dashboard/users/{user_id}",
                )
            )
            if delivered:
                sent += 1
        return sent

    async def _send(self, notification: Notification) -> bool:
        """Write one notification; failures are logged and reported as False."""
        try:
            await self._io(self.sink.create(notification))
            return True
        except asyncio.TimeoutError:
            logger.error(f"Timed out writing notification for {notification.user_id}")
        except Exception as e:
            logger.error(f"Failed to write notification for {notification.user_id}: {e}")
        return False
