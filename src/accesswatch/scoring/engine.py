"""Anomaly scoring engine.

Combines the five factor detectors into a single weighted score for an
access event. The engine is read-only: persisting the result is the
caller's job (see AccessLogStore.annotate).
"""

import asyncio
import logging
import math
from datetime import timezone, tzinfo
from typing import List, Optional

from ..directory import CareTeamDirectory, UserDirectory
from ..errors import AccessEventNotFound
from ..models.access_event import AccessEvent
from ..stats import StatisticsAggregator
from ..store.base import AccessLogStore
from .detectors import (
    AuthorizationDetector,
    DeviceNoveltyDetector,
    FactorDetector,
    StatisticalPatternDetector,
    TimeOfDayDetector,
    VolumeDetector,
)
from .models import (
    ANOMALY_SCORE_THRESHOLD,
    FACTOR_REASONS,
    MAX_SCORE,
    AnomalyDetectionResult,
    AnomalyThresholds,
    FactorScores,
    format_score,
)

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


class AnomalyScoringEngine:
    """Scores stored access events for suspiciousness.

    Attributes:
        store: Access log store holding the events and their history
        users: Directory used to resolve the acting user
        care_team: Directory of patient care-team assignments
        tz: Timezone used for hour-of-day and weekday decisions
        io_timeout_seconds: Upper bound on each detector's I/O
    """

    DEFAULT_IO_TIMEOUT_SECONDS = 10.0

    def __init__(
        self,
        store: AccessLogStore,
        users: UserDirectory,
        care_team: CareTeamDirectory,
        tz: Optional[tzinfo] = None,
        io_timeout_seconds: float = DEFAULT_IO_TIMEOUT_SECONDS,
        stats: Optional[StatisticsAggregator] = None,
    ):
        self.store = store
        self.users = users
        self.care_team = care_team
        self.tz = tz or timezone.utc
        self.io_timeout_seconds = io_timeout_seconds
        self.stats = stats or StatisticsAggregator(store, tz=self.tz)

        self.detectors: List[FactorDetector] = [
            TimeOfDayDetector(tz=self.tz),
            VolumeDetector(store),
            StatisticalPatternDetector(self.stats),
            DeviceNoveltyDetector(store),
            AuthorizationDetector(users, care_team),
        ]

    async def detect_anomaly(
        self, event_id: str, thresholds: Optional[AnomalyThresholds] = None
    ) -> AnomalyDetectionResult:
        """Score a stored access event.

        Args:
            event_id: Event to score
            thresholds: Detector base scores (defaults when omitted)

        Returns:
            AnomalyDetectionResult with the weighted score and reasons

        Raises:
            AccessEventNotFound: If no event with this id exists
        """
        thresholds = thresholds or AnomalyThresholds()

        event = await asyncio.wait_for(self.store.get(event_id), timeout=self.io_timeout_seconds)
        if event is None:
            raise AccessEventNotFound(event_id)

        return await self.score_event(event, thresholds)

    async def score_event(
        self, event: AccessEvent, thresholds: Optional[AnomalyThresholds] = None
    ) -> AnomalyDetectionResult:
        """Score an already loaded event."""
        thresholds = thresholds or AnomalyThresholds()

        factors = FactorScores()
        for detector in self.detectors:
            factors.set(detector.factor, await self._run_detector(detector, event, thresholds))

        score = max(0, min(round_half_up(factors.weighted_total()), MAX_SCORE))
        reasons = [
            f"{FACTOR_REASONS[factor]} (score: {format_score(value)})"
            for factor, value in factors.items()
            if value > 0
        ]

        result = AnomalyDetectionResult(
            event_id=event.event_id,
            is_anomaly=score >= ANOMALY_SCORE_THRESHOLD,
            anomaly_score=score,
            reasons=reasons,
            factors=factors,
        )

        logger.debug(
            f"Scored access event {event.event_id} for {event.user_id}: "
            f"{score} ({factors.to_dict()})"
        )
        return result

    async def _run_detector(
        self, detector: FactorDetector, event: AccessEvent, thresholds: AnomalyThresholds
    ) -> float:
        """Run one detector, degrading to 0 on failure or timeout."""
        try:
            return await asyncio.wait_for(
                detector.score(event, thresholds),
                timeout=self.io_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"{detector.factor.value} detector timed out after "
                f"{self.io_timeout_seconds}s for event {event.event_id}"
            )
        except Exception as e:
            logger.warning(
                f"{detector.factor.value} detector failed for event {event.event_id}: {e}"
            )
        return 0.0
