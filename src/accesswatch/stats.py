"""Access statistics aggregation.

Builds per-user historical access distributions (the baseline used by the
statistical pattern detector) and organization-wide roll-ups for reports.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional

from .store.base import AccessLogQuery, AccessLogStore

logger = logging.getLogger(__name__)


@dataclass
class AccessStats:
    """Historical access distribution for one user over a window.

    Attributes:
        total_access: Number of events in the window
        hourly_access: Event count per local hour of day (24 buckets)
        action_counts: Event count per action value
        resource_type_counts: Event count per resource type value
        device_types: Event count per device type (events with device info)
        average_access_duration: Mean duration over events that report one
        anomalous_access_count: Events flagged anomalous
        average_anomaly_score: Mean anomaly score over all events
    """

    total_access: int = 0
    hourly_access: List[int] = field(default_factory=lambda: [0] * 24)
    action_counts: Dict[str, int] = field(default_factory=dict)
    resource_type_counts: Dict[str, int] = field(default_factory=dict)
    device_types: Dict[str, int] = field(default_factory=dict)
    average_access_duration: float = 0.0
    anomalous_access_count: int = 0
    average_anomaly_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_access": self.total_access,
            "hourly_access": list(self.hourly_access),
            "action_counts": dict(self.action_counts),
            "resource_type_counts": dict(self.resource_type_counts),
            "device_types": dict(self.device_types),
            "average_access_duration": round(self.average_access_duration, 2),
            "anomalous_access_count": self.anomalous_access_count,
            "average_anomaly_score": round(self.average_anomaly_score, 2),
        }


@dataclass
class OrganizationAccessStats:
    """Organization-wide access roll-up for dashboards and reports."""

    total_access: int = 0
    total_anomaly: int = 0
    average_anomaly_score: float = 0.0
    unique_users: int = 0
    unique_resources: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_access": self.total_access,
            "total_anomaly": self.total_anomaly,
            "average_anomaly_score": round(self.average_anomaly_score, 2),
            "unique_users": self.unique_users,
            "unique_resources": self.unique_resources,
        }


class StatisticsAggregator:
    """Computes access statistics from the access log store.

    Attributes:
        store: Access log store to read from
        tz: Timezone used to bucket events into hours of day
    """

    MAX_USER_EVENTS = 10000

    def __init__(self, store: AccessLogStore, tz: Optional[tzinfo] = None):
        self.store = store
        self.tz = tz or timezone.utc

    def local_hour(self, moment: datetime) -> int:
        """Hour of day of a timestamp in the configured timezone."""
        return moment.astimezone(self.tz).hour

    async def get_user_access_stats(
        self, user_id: str, start: datetime, end: datetime
    ) -> AccessStats:
        """Compute a user's access distribution over [start, end].

        Zero matching events yields all-zero counts and 0.0 averages.
        """
        events = await self.store.query_by_user(
            user_id,
            AccessLogQuery(start=start, end=end, limit=self.MAX_USER_EVENTS),
        )

        stats = AccessStats(total_access=len(events))
        if not events:
            return stats

        action_counts: Counter = Counter()
        resource_counts: Counter = Counter()
        device_counts: Counter = Counter()
        durations: List[float] = []
        score_total = 0

        for event in events:
            stats.hourly_access[self.local_hour(event.created_at)] += 1
            action_counts[event.action.value] += 1
            resource_counts[event.resource_type.value] += 1
            if event.device_info is not None:
                device_counts[event.device_info.device_type] += 1
            if event.access_duration is not None:
                durations.append(event.access_duration)
            if event.is_anomaly:
                stats.anomalous_access_count += 1
            score_total += event.anomaly_score or 0

        stats.action_counts = dict(action_counts)
        stats.resource_type_counts = dict(resource_counts)
        stats.device_types = dict(device_counts)
        stats.average_access_duration = sum(durations) / len(durations) if durations else 0.0
        stats.average_anomaly_score = score_total / len(events)
        return stats

    async def get_organization_access_stats(
        self, organization_id: str, start: datetime, end: datetime
    ) -> OrganizationAccessStats:
        """Roll up an organization's access over [start, end]."""
        stats = OrganizationAccessStats()
        users = set()
        resources = set()
        score_total = 0

        async for event in self.store.iter_by_org(
            organization_id, AccessLogQuery(start=start, end=end, limit=None)
        ):
            stats.total_access += 1
            if event.is_anomaly:
                stats.total_anomaly += 1
            score_total += event.anomaly_score or 0
            users.add(event.user_id)
            resources.add(event.resource_id)

        stats.unique_users = len(users)
        stats.unique_resources = len(resources)
        if stats.total_access:
            stats.average_anomaly_score = score_total / stats.total_access
        return stats
