"""Scoring models for access anomaly detection.

Defines the factor taxonomy, tunable thresholds and the result returned by
the scoring engine.
"""

import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Fixed decision threshold for is_anomaly. Distinct from the alert
# dispatcher's configurable alert threshold.
ANOMALY_SCORE_THRESHOLD = 50

MAX_SCORE = 100


class AnomalyFactor(Enum):
    """The five independent detectors, in evaluation order."""

    TIME = "time"
    VOLUME = "volume"
    PATTERN = "pattern"
    DEVICE = "device"
    AUTHORIZATION = "authorization"


FACTOR_WEIGHTS: Dict[AnomalyFactor, float] = {
    AnomalyFactor.TIME: 0.15,
    AnomalyFactor.VOLUME: 0.25,
    AnomalyFactor.PATTERN: 0.20,
    AnomalyFactor.DEVICE: 0.15,
    AnomalyFactor.AUTHORIZATION: 0.25,
}

# Reason prefix written onto scored events, per factor
FACTOR_REASONS: Dict[AnomalyFactor, str] = {
    AnomalyFactor.TIME: "Late-night or off-hours access",
    AnomalyFactor.VOLUME: "Burst of accesses in a short period",
    AnomalyFactor.PATTERN: "Access pattern deviates from user history",
    AnomalyFactor.DEVICE: "Access from an unfamiliar device",
    AnomalyFactor.AUTHORIZATION: "Access to a resource outside the user's authorization",
}


def clamp_score(value: float) -> float:
    """Clamp a sub-score into [0, 100]."""
    return max(0.0, min(float(value), float(MAX_SCORE)))


def format_score(value: float) -> str:
    """Render a sub-score for reasons: integers without decimals, else one decimal."""
    rounded = round(value, 1)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:.1f}"


@dataclass
class AnomalyThresholds:
    """Tunable base scores for the detectors.

    Attributes:
        late_night_access_score: Base score for late-night access
        unusual_device_score: Base score for an unseen device type
        bulk_access_score: Base score for bulk access within an hour
        unauthorized_access_score: Base score for unauthorized access
        standard_deviation_threshold: |z| at which an hour counts as unusual
    """

    late_night_access_score: float = 30
    unusual_device_score: float = 25
    bulk_access_score: float = 40
    unauthorized_access_score: float = 50
    standard_deviation_threshold: float = 2.0

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "AnomalyThresholds":
        """Create thresholds from a mapping, ignoring unknown keys."""
        config = config or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in config.items() if k in known})

    @classmethod
    def from_environment(cls) -> "AnomalyThresholds":
        """Create thresholds from environment variables."""
        return cls(
            late_night_access_score=float(os.environ.get("ANOMALY_LATE_NIGHT_SCORE", "30")),
            unusual_device_score=float(os.environ.get("ANOMALY_UNUSUAL_DEVICE_SCORE", "25")),
            bulk_access_score=float(os.environ.get("ANOMALY_BULK_ACCESS_SCORE", "40")),
            unauthorized_access_score=float(os.environ.get("ANOMALY_UNAUTHORIZED_SCORE", "50")),
            standard_deviation_threshold=float(os.environ.get("ANOMALY_STDDEV_THRESHOLD", "2.0")),
        )

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class FactorScores:
    """Per-detector sub-scores, each in [0, 100]."""

    time: float = 0.0
    volume: float = 0.0
    pattern: float = 0.0
    device: float = 0.0
    authorization: float = 0.0

    def get(self, factor: AnomalyFactor) -> float:
        return getattr(self, factor.value)

    def set(self, factor: AnomalyFactor, value: float) -> None:
        setattr(self, factor.value, clamp_score(value))

    def items(self) -> List[Tuple[AnomalyFactor, float]]:
        """(factor, score) pairs in evaluation order."""
        return [(factor, self.get(factor)) for factor in AnomalyFactor]

    def weighted_total(self) -> float:
        return sum(score * FACTOR_WEIGHTS[factor] for factor, score in self.items())

    def top_factor(self) -> Optional[AnomalyFactor]:
        """Highest-scoring factor; ties go to the earliest factor, None if all zero."""
        best: Optional[AnomalyFactor] = None
        best_score = 0.0
        for factor, score in self.items():
            if score > best_score:
                best, best_score = factor, score
        return best

    def to_dict(self) -> Dict[str, float]:
        return {factor.value: round(score, 2) for factor, score in self.items()}


@dataclass
class AnomalyDetectionResult:
    """Outcome of scoring one access event.

    Attributes:
        event_id: Scored event
        is_anomaly: anomaly_score >= ANOMALY_SCORE_THRESHOLD
        anomaly_score: Weighted integer score in [0, 100]
        reasons: One entry per non-zero factor, in factor order
        factors: Sub-scores per detector
    """

    event_id: str
    is_anomaly: bool
    anomaly_score: int
    reasons: List[str]
    factors: FactorScores

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "is_anomaly": self.is_anomaly,
            "anomaly_score": self.anomaly_score,
            "reasons": list(self.reasons),
            "factors": self.factors.to_dict(),
        }
