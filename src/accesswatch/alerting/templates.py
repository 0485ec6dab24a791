"""Text templates for security notifications."""

from datetime import datetime
from typing import Dict, Optional

from ..models.access_event import AccessEvent
from ..models.directory import User
from ..scoring.models import AnomalyDetectionResult, AnomalyFactor

ALERT_TITLE_PREFIX = "[Security Alert] "
GENERIC_ALERT_TITLE = "Anomalous access pattern"

ALERT_TITLES: Dict[AnomalyFactor, str] = {
    AnomalyFactor.TIME: "Late-night or off-hours access",
    AnomalyFactor.VOLUME: "High volume of access in a short period",
    AnomalyFactor.PATTERN: "Access pattern differs from normal behavior",
    AnomalyFactor.DEVICE: "Access from an unusual device",
    AnomalyFactor.AUTHORIZATION: "Access to a resource outside the user's authorization",
}


SELF_CHECK_TITLE = "Unusual access pattern detected on your account"
HIGH_RISK_TITLE = "[URGENT] High-risk access detected"
REPEATED_ANOMALY_TITLE = "[URGENT] Repeated anomalous access detected"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M %Z"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT).strip()


def alert_title(result: AnomalyDetectionResult) -> str:
    """Headline naming the highest-scoring factor."""
    factor = result.factors.top_factor()
    if factor is None:
        return GENERIC_ALERT_TITLE
    return ALERT_TITLES[factor]


def alert_message(user: User, event: AccessEvent, result: AnomalyDetectionResult) -> str:
    """Body of an anomaly alert sent to administrators."""
    lines = [
        f"User: {user.name} ({user.email})",
        f"Action: {event.action.value} {event.resource_type.value}",
        f"Time: {format_timestamp(event.created_at)}",
        f"Anomaly score: {result.anomaly_score}/100",
    ]
    if event.ip_address:
        lines.append(f"IP address: {event.ip_address}")

    if result.reasons:
        lines.append("")
        lines.append("Detected anomalies:")
        for index, reason in enumerate(result.reasons, start=1):
            lines.append(f"{index}. {reason}")

    lines.append("")
    lines.append("Review the security log for details.")
    return "\n".join(lines)


def self_check_message(event: AccessEvent) -> str:
    return (
        "Please confirm this access to your account was expected. "
        f"Detected at: {format_timestamp(event.created_at)}"
    )


def high_risk_message(user: User, event: AccessEvent) -> str:
    return (
        f'User "{user.name}" performed a high-risk action '
        f"({event.action.value} {event.resource_type.value}).\n"
        f"Time: {format_timestamp(event.created_at)}\n"
        f"IP address: {event.ip_address or 'unknown'}"
    )


def repeated_anomaly_message(user: User, count: int, window_hours: Optional[int] = 24) -> str:
    return (
        f'User "{user.name} ({user.email})" made {count} anomalous accesses '
        f"within {window_hours} hours.\n"
        "Consider suspending the account pending review."
    )
