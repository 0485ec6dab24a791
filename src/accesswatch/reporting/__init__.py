"""Anomaly reporting."""

from .anomaly_report import (
    AnomalousUser,
    AnomalyReport,
    AnomalyReportGenerator,
    SeverityDistribution,
    reason_category,
    report_to_csv,
    resolve_report_period,
)

__all__ = [
    "AnomalousUser",
    "AnomalyReport",
    "AnomalyReportGenerator",
    "SeverityDistribution",
    "reason_category",
    "report_to_csv",
    "resolve_report_period",
]
