"""Factor detectors for access anomaly scoring.

Each detector looks at one aspect of an access event (when, how much, how
typical, from where, by whom) and returns a sub-score in [0, 100]. Detectors
only read from their collaborators; they never write.
"""

import logging
import math
from abc import ABC, abstractmethod
from datetime import timedelta, timezone, tzinfo
from typing import List, Optional

from ..directory import CareTeamDirectory, UserDirectory
from ..models.access_event import AccessAction, AccessEvent, ResourceType
from ..stats import StatisticsAggregator
from ..store.base import AccessLogQuery, AccessLogStore
from .models import AnomalyFactor, AnomalyThresholds, clamp_score

logger = logging.getLogger(__name__)


class FactorDetector(ABC):
    """Base class for a single scoring factor."""

    factor: AnomalyFactor

    @abstractmethod
    async def score(self, event: AccessEvent, thresholds: AnomalyThresholds) -> float:
        """Compute the sub-score for an event.

        Args:
            event: Event being scored
            thresholds: Base scores to scale

        Returns:
            Sub-score in [0, 100]
        """
        pass


class TimeOfDayDetector(FactorDetector):
    """Scores access outside working hours.

    Late night (22:00-06:00) gets the full late-night score, early morning
    and evening get a fraction, and weekends add half on top.
    """

    factor = AnomalyFactor.TIME

    EARLY_MORNING_FACTOR = 0.3  # 06:00-08:00
    EVENING_FACTOR = 0.5  # 20:00-22:00
    WEEKEND_FACTOR = 0.5

    WEEKEND_DAYS = {5, 6}  # Saturday, Sunday

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    async def score(self, event: AccessEvent, thresholds: AnomalyThresholds) -> float:
        local = event.created_at.astimezone(self.tz)
        hour = local.hour
        base = thresholds.late_night_access_score
        score = 0.0

        if hour >= 22 or hour < 6:
            score += base
        elif 6 <= hour < 8:
            score += base * self.EARLY_MORNING_FACTOR
        elif 20 <= hour < 22:
            score += base * self.EVENING_FACTOR

        if local.weekday() in self.WEEKEND_DAYS:
            score += base * self.WEEKEND_FACTOR

        return clamp_score(score)


class VolumeDetector(FactorDetector):
    """Scores bulk access within the last hour and short bursts."""

    factor = AnomalyFactor.VOLUME

    WINDOW = timedelta(hours=1)
    BURST_WINDOW = timedelta(minutes=5)
    BURST_THRESHOLD = 10

    # (minimum events in the hour, fraction of bulk_access_score)
    VOLUME_TIERS = ((50, 1.0), (30, 0.7), (20, 0.4))

    BURST_FACTOR = 0.5
    EXFILTRATION_MULTIPLIER = 1.3
    EXFILTRATION_ACTIONS = {AccessAction.EXPORT, AccessAction.PRINT}

    def __init__(self, store: AccessLogStore):
        self.store = store

    async def score(self, event: AccessEvent, thresholds: AnomalyThresholds) -> float:
        end = event.created_at
        recent = await self.store.query_by_user(
            event.user_id,
            AccessLogQuery(start=end - self.WINDOW, end=end, limit=None),
        )

        base = thresholds.bulk_access_score
        score = 0.0
        count = len(recent)
        for minimum, fraction in self.VOLUME_TIERS:
            if count >= minimum:
                score += base * fraction
                break

        burst_start = end - self.BURST_WINDOW
        burst = sum(1 for e in recent if e.created_at >= burst_start)
        if burst >= self.BURST_THRESHOLD:
            score += base * self.BURST_FACTOR

        if event.action in self.EXFILTRATION_ACTIONS:
            score *= self.EXFILTRATION_MULTIPLIER

        return clamp_score(score)


def population_std_dev(values: List[float]) -> float:
    """Population standard deviation; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


class StatisticalPatternDetector(FactorDetector):
    """Scores deviation from the user's 30-day access distribution."""

    factor = AnomalyFactor.PATTERN

    HISTORY = timedelta(days=30)
    MIN_HISTORY_EVENTS = 10

    UNUSUAL_HOUR_SCORE = 30
    RARE_ACTION_SCORE = 20
    RARE_ACTION_RATIO = 0.1
    RARE_ACTION_MIN_TOTAL = 20
    LARGE_TRANSFER_SCORE = 25
    LARGE_TRANSFER_BYTES = 10 * 1024 * 1024

    def __init__(self, stats: StatisticsAggregator):
        self.stats = stats

    async def score(self, event: AccessEvent, thresholds: AnomalyThresholds) -> float:
        end = event.created_at
        history = await self.stats.get_user_access_stats(event.user_id, end - self.HISTORY, end)
        if history.total_access < self.MIN_HISTORY_EVENTS:
            return 0.0

        score = 0.0

        hour = self.stats.local_hour(event.created_at)
        average = history.total_access / 24
        std_dev = population_std_dev(history.hourly_access)
        z_score = (history.hourly_access[hour] - average) / (std_dev or 1)
        if abs(z_score) >= thresholds.standard_deviation_threshold:
            score += self.UNUSUAL_HOUR_SCORE

        action_ratio = history.action_counts.get(event.action.value, 0) / history.total_access
        if action_ratio < self.RARE_ACTION_RATIO and history.total_access > self.RARE_ACTION_MIN_TOTAL:
            score += self.RARE_ACTION_SCORE

        if event.data_size and event.data_size > self.LARGE_TRANSFER_BYTES:
            score += self.LARGE_TRANSFER_SCORE

        return clamp_score(score)


class DeviceNoveltyDetector(FactorDetector):
    """Scores devices, operating systems, browsers and IPs the user has not used."""

    factor = AnomalyFactor.DEVICE

    HISTORY = timedelta(days=30)
    HISTORY_LIMIT = 1000
    MIN_HISTORY_EVENTS = 5

    DEVICE_TYPE_FACTOR = 1.0
    OS_FACTOR = 0.8
    BROWSER_FACTOR = 0.5
    IP_FACTOR = 0.6

    def __init__(self, store: AccessLogStore):
        self.store = store

    async def score(self, event: AccessEvent, thresholds: AnomalyThresholds) -> float:
        device = event.device_info
        if device is None:
            return 0.0

        end = event.created_at
        history = await self.store.query_by_user(
            event.user_id,
            AccessLogQuery(start=end - self.HISTORY, end=end, limit=self.HISTORY_LIMIT),
        )
        # The scored event is already stored; it is not its own history
        history = [past for past in history if past.event_id != event.event_id]
        if len(history) < self.MIN_HISTORY_EVENTS:
            return 0.0

        device_types = set()
        operating_systems = set()
        browsers = set()
        ip_addresses = set()
        for past in history:
            if past.device_info is not None:
                device_types.add(past.device_info.device_type)
                operating_systems.add(past.device_info.os)
                browsers.add(past.device_info.browser)
            if past.ip_address:
                ip_addresses.add(past.ip_address)

        base = thresholds.unusual_device_score
        score = 0.0
        if device.device_type not in device_types:
            score += base * self.DEVICE_TYPE_FACTOR
        if device.os not in operating_systems:
            score += base * self.OS_FACTOR
        if device.browser not in browsers:
            score += base * self.BROWSER_FACTOR
        if event.ip_address and event.ip_address not in ip_addresses:
            score += base * self.IP_FACTOR

        return clamp_score(score)


class AuthorizationDetector(FactorDetector):
    """Scores access by inactive users, to unassigned patients, and deletions."""

    factor = AnomalyFactor.AUTHORIZATION

    UNASSIGNED_PATIENT_FACTOR = 0.8
    DELETE_FACTOR = 0.3

    def __init__(self, users: UserDirectory, care_team: CareTeamDirectory):
        self.users = users
        self.care_team = care_team

    async def score(self, event: AccessEvent, thresholds: AnomalyThresholds) -> float:
        user = await self.users.get_user(event.user_id)
        if user is None:
            return 0.0

        base = thresholds.unauthorized_access_score
        if not user.active:
            return clamp_score(base)

        score = 0.0
        if event.resource_type == ResourceType.PATIENT:
            assigned = await self.care_team.has_active_assignment(event.resource_id, event.user_id)
            if not assigned:
                score += base * self.UNASSIGNED_PATIENT_FACTOR

        if event.action == AccessAction.DELETE:
            score += base * self.DELETE_FACTOR

        return clamp_score(score)
