"""Data models for AccessWatch."""

from .access_event import (
    AccessAction,
    AccessEvent,
    AccessLogData,
    DeviceInfo,
    ResourceType,
    ensure_utc,
    parse_datetime,
    parse_reasons,
    utc_now,
)
from .directory import PatientAssignment, User, UserRole

__all__ = [
    "AccessAction",
    "AccessEvent",
    "AccessLogData",
    "DeviceInfo",
    "ResourceType",
    "ensure_utc",
    "parse_datetime",
    "parse_reasons",
    "utc_now",
    "PatientAssignment",
    "User",
    "UserRole",
]
