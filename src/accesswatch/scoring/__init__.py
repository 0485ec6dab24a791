"""Multi-factor anomaly scoring for access events."""

from .detectors import (
    AuthorizationDetector,
    DeviceNoveltyDetector,
    FactorDetector,
    StatisticalPatternDetector,
    TimeOfDayDetector,
    VolumeDetector,
    population_std_dev,
)
from .engine import AnomalyScoringEngine, round_half_up
from .models import (
    ANOMALY_SCORE_THRESHOLD,
    FACTOR_REASONS,
    FACTOR_WEIGHTS,
    AnomalyDetectionResult,
    AnomalyFactor,
    AnomalyThresholds,
    FactorScores,
)

__all__ = [
    "ANOMALY_SCORE_THRESHOLD",
    "FACTOR_REASONS",
    "FACTOR_WEIGHTS",
    "AnomalyDetectionResult",
    "AnomalyFactor",
    "AnomalyScoringEngine",
    "AnomalyThresholds",
    "AuthorizationDetector",
    "DeviceNoveltyDetector",
    "FactorDetector",
    "FactorScores",
    "StatisticalPatternDetector",
    "TimeOfDayDetector",
    "VolumeDetector",
    "population_std_dev",
    "round_half_up",
]
