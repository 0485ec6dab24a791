"""Anomaly reporting for security reviews.

Aggregates an organization's anomalous access over a period into a report
with severity, user, time and reason breakdowns plus recommendations.
"""

import csv
import io
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from ..directory import UserDirectory
from ..models.access_event import AccessEvent, utc_now
from ..models.directory import User
from ..scoring.models import FACTOR_REASONS, AnomalyFactor
from ..stats import OrganizationAccessStats, StatisticsAggregator
from ..store.base import AccessLogQuery, AccessLogStore, QueryOrder

logger = logging.getLogger(__name__)


REPORT_PERIODS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}

UNKNOWN_USER = "Unknown"


def resolve_report_period(
    period: str, now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """Window ending at now for a named period; unknown names mean weekly."""
    end = now or utc_now()
    return end - REPORT_PERIODS.get(period, REPORT_PERIODS["weekly"]), end


def reason_category(reason: str) -> str:
    """Strip the trailing "(score: N)" from a reason."""
    return reason.split("(")[0].strip()


@dataclass
class SeverityDistribution:
    critical: int = 0  # >= 80
    high: int = 0  # 70-79
    medium: int = 0  # 50-69
    low: int = 0  # < 50

    def add(self, score: int) -> None:
        if score >= 80:
            self.critical += 1
        elif score >= 70:
            self.high += 1
        elif score >= 50:
            self.medium += 1
        else:
            self.low += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
        }


@dataclass
class AnomalousUser:
    """Per-user anomaly totals."""

    user_id: str
    user_name: str
    user_email: str
    count: int = 0
    total_score: int = 0

    @property
    def average_score(self) -> float:
        return self.total_score / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "count": self.count,
            "average_score": round(self.average_score, 2),
        }


@dataclass
class AnomalyReport:
    """Anomaly report for one organization and period.

    Attributes:
        organization_id: Reported organization
        start: Period start
        end: Period end
        overall: Organization-wide access roll-up
        severity_distribution: Anomaly counts per severity band
        top_anomalous_users: Users with the most anomalies (top 10)
        hourly_distribution: Anomaly count per hour of day
        daily_trend: (date, count) pairs in date order
        top_reasons: (reason, count) pairs, most frequent first (top 10)
        resource_type_distribution: (resource type, count), most frequent first
        critical_anomalies: Details of anomalies scoring 80 or more (max 20)
        recommendations: Suggested follow-ups
    """

    organization_id: str
    start: datetime
    end: datetime
    overall: OrganizationAccessStats
    severity_distribution: SeverityDistribution
    top_anomalous_users: List[AnomalousUser] = field(default_factory=list)
    hourly_distribution: List[int] = field(default_factory=lambda: [0] * 24)
    daily_trend: List[Tuple[str, int]] = field(default_factory=list)
    top_reasons: List[Tuple[str, int]] = field(default_factory=list)
    resource_type_distribution: List[Tuple[str, int]] = field(default_factory=list)
    critical_anomalies: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    unique_users_with_anomalies: int = 0

    @property
    def days(self) -> int:
        return math.ceil((self.end - self.start).total_seconds() / 86400)

    @property
    def anomaly_rate(self) -> float:
        """Anomalous share of all access, in percent."""
        if not self.overall.total_access:
            return 0.0
        return round(self.overall.total_anomaly / self.overall.total_access * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "summary": {
                "period": {
                    "start": self.start.isoformat(),
                    "end": self.end.isoformat(),
                    "days": self.days,
                },
                "total_access": self.overall.total_access,
                "total_anomalies": self.overall.total_anomaly,
                "anomaly_rate": self.anomaly_rate,
                "average_anomaly_score": round(self.overall.average_anomaly_score, 2),
                "unique_users_with_anomalies": self.unique_users_with_anomalies,
            },
            "severity_distribution": self.severity_distribution.to_dict(),
            "top_anomalous_users": [u.to_dict() for u in self.top_anomalous_users],
            "hourly_distribution": [
                {"hour": f"{hour}:00", "count": count}
                for hour, count in enumerate(self.hourly_distribution)
            ],
            "daily_trend": [{"date": d, "count": c} for d, c in self.daily_trend],
            "top_reasons": [{"reason": r, "count": c} for r, c in self.top_reasons],
            "resource_type_distribution": [
                {"type": t, "count": c} for t, c in self.resource_type_distribution
            ],
            "critical_anomalies": list(self.critical_anomalies),
            "recommendations": list(self.recommendations),
        }


class AnomalyReportGenerator:
    """Builds AnomalyReports from the access log store."""

    MAX_ANOMALOUS_EVENTS = 1000
    TOP_USERS = 10
    TOP_REASONS = 10
    MAX_CRITICAL = 20
    CRITICAL_SCORE = 80

    HIGH_ANOMALY_RATE = 10.0
    MANY_CRITICAL = 10
    MANY_USER_ANOMALIES = 10
    MANY_OFF_HOURS = 5
    MANY_UNAUTHORIZED = 3
    MANY_DEVICE = 5

    def __init__(
        self,
        store: AccessLogStore,
        users: UserDirectory,
        stats: Optional[StatisticsAggregator] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.users = users
        self.tz = tz or timezone.utc
        self.stats = stats or StatisticsAggregator(store, tz=self.tz)

    async def generate(
        self,
        organization_id: str,
        start: datetime,
        end: datetime,
        min_score: int = 50,
    ) -> AnomalyReport:
        """Generate the anomaly report for [start, end].

        Args:
            organization_id: Organization to report on
            start: Period start
            end: Period end
            min_score: Minimum score of anomalies included in breakdowns

        Returns:
            AnomalyReport
        """
        logger.info(f"Generating anomaly report for {organization_id}: {start.isoformat()} - {end.isoformat()}")

        overall = await self.stats.get_organization_access_stats(organization_id, start, end)
        anomalies = await self.store.query_by_org(
            organization_id,
            AccessLogQuery(
                start=start,
                end=end,
                is_anomaly=True,
                min_score=min_score,
                limit=self.MAX_ANOMALOUS_EVENTS,
                order=QueryOrder.SCORE_DESC,
            ),
        )

        report = AnomalyReport(
            organization_id=organization_id,
            start=start,
            end=end,
            overall=overall,
            severity_distribution=SeverityDistribution(),
        )

        users: Dict[str, AnomalousUser] = {}
        reasons: Counter = Counter()
        resource_types: Counter = Counter()
        daily: Counter = Counter()
        user_cache: Dict[str, Optional[User]] = {}

        for event in anomalies:
            if event.user_id not in users:
                user = await self._lookup_user(event.user_id, user_cache)
                users[event.user_id] = AnomalousUser(
                    user_id=event.user_id,
                    user_name=user.name if user and user.name else UNKNOWN_USER,
                    user_email=user.email if user and user.email else UNKNOWN_USER,
                )
            entry = users[event.user_id]
            entry.count += 1
            entry.total_score += event.anomaly_score

            local = event.created_at.astimezone(self.tz)
            report.hourly_distribution[local.hour] += 1
            daily[local.date().isoformat()] += 1
            report.severity_distribution.add(event.anomaly_score)
            resource_types[event.resource_type.value] += 1
            for reason in event.anomaly_reasons:
                reasons[reason_category(reason)] += 1

        report.unique_users_with_anomalies = len(users)
        report.top_anomalous_users = sorted(users.values(), key=lambda u: u.count, reverse=True)[: self.TOP_USERS]
        report.daily_trend = sorted(daily.items())
        report.top_reasons = reasons.most_common(self.TOP_REASONS)
        report.resource_type_distribution = resource_types.most_common()

        for event in anomalies:
            if len(report.critical_anomalies) >= self.MAX_CRITICAL:
                break
            if event.anomaly_score >= self.CRITICAL_SCORE:
                user = await self._lookup_user(event.user_id, user_cache)
                report.critical_anomalies.append(self._critical_entry(event, user))

        report.recommendations = self.build_recommendations(report)

        logger.info(
            f"Anomaly report for {organization_id}: {len(anomalies)} anomalies, "
            f"{report.severity_distribution.critical} critical"
        )
        return report

    async def _lookup_user(self, user_id: str, cache: Dict[str, Optional[User]]) -> Optional[User]:
        if user_id not in cache:
            cache[user_id] = await self.users.get_user(user_id)
        return cache[user_id]

    @staticmethod
    def _critical_entry(event: AccessEvent, user: Optional[User]) -> Dict[str, Any]:
        return {
            "event_id": event.event_id,
            "timestamp": event.created_at.isoformat(),
            "user_id": event.user_id,
            "user_name": user.name if user and user.name else UNKNOWN_USER,
            "resource_type": event.resource_type.value,
            "resource_id": event.resource_id,
            "action": event.action.value,
            "anomaly_score": event.anomaly_score,
            "reasons": list(event.anomaly_reasons),
            "ip_address": event.ip_address,
        }

    def build_recommendations(self, report: AnomalyReport) -> List[str]:
        """Suggested follow-ups derived from the report's breakdowns."""
        recommendations: List[str] = []

        if report.anomaly_rate > self.HIGH_ANOMALY_RATE:
            recommendations.append(
                "Anomalous access exceeds 10% of all access. Review access controls."
            )

        critical = report.severity_distribution.critical
        if critical > self.MANY_CRITICAL:
            recommendations.append(
                f"{critical} critical anomalies (score 80 or higher) were detected. "
                "Immediate response is required."
            )

        if report.top_anomalous_users and report.top_anomalous_users[0].count > self.MANY_USER_ANOMALIES:
            top = report.top_anomalous_users[0]
            recommendations.append(
                f'User "{top.user_name}" has {top.count} anomalous accesses. '
                "Review the account."
            )

        reason_counts = dict(report.top_reasons)
        if reason_counts.get(FACTOR_REASONS[AnomalyFactor.TIME], 0) > self.MANY_OFF_HOURS:
            recommendations.append(
                "Many late-night or off-hours accesses were detected. "
                "Consider restricting access hours."
            )
        if reason_counts.get(FACTOR_REASONS[AnomalyFactor.AUTHORIZATION], 0) > self.MANY_UNAUTHORIZED:
            recommendations.append(
                "Access to unauthorized resources was detected. Review role assignments."
            )
        if reason_counts.get(FACTOR_REASONS[AnomalyFactor.DEVICE], 0) > self.MANY_DEVICE:
            recommendations.append(
                "Many accesses from unfamiliar devices were detected. "
                "Consider enforcing multi-factor authentication."
            )

        if not recommendations:
            recommendations.append(
                "No significant security risk detected. Continue monitoring."
            )
        return recommendations


def report_to_csv(report: AnomalyReport) -> str:
    """Render the report's summary sections as CSV for spreadsheet export."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    data = report.to_dict()
    summary = data["summary"]

    writer.writerow(["Anomaly Report"])
    writer.writerow(["Period", f"{summary['period']['start']} - {summary['period']['end']}"])
    writer.writerow(["Total access", summary["total_access"]])
    writer.writerow(["Total anomalies", summary["total_anomalies"]])
    writer.writerow(["Anomaly rate (%)", summary["anomaly_rate"]])
    writer.writerow(["Average anomaly score", summary["average_anomaly_score"]])
    writer.writerow([])

    writer.writerow(["Severity", "Count"])
    severity = report.severity_distribution
    writer.writerow(["Critical (80+)", severity.critical])
    writer.writerow(["High (70-79)", severity.high])
    writer.writerow(["Medium (50-69)", severity.medium])
    writer.writerow(["Low (<50)", severity.low])
    writer.writerow([])

    writer.writerow(["User", "Email", "Anomalies", "Average score"])
    for user in report.top_anomalous_users:
        writer.writerow([user.user_name, user.user_email, user.count, f"{user.average_score:.2f}"])
    writer.writerow([])

    writer.writerow(["#", "Recommendation"])
    for index, recommendation in enumerate(report.recommendations, start=1):
        writer.writerow([index, recommendation])

    return buffer.getvalue()
