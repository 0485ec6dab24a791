"""
Access Event Schema

Normalized record of a single resource access (view, export, delete, ...)
performed by a user inside an organization. Events are written once by the
access log store and afterwards only their scoring fields change.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import logging
import uuid

logger = logging.getLogger(__name__)


class ResourceType(Enum):
    """Kinds of resources whose access is recorded."""
    PATIENT = "PATIENT"
    CONSENT = "CONSENT"
    RECORD = "RECORD"
    TASK = "TASK"
    DOCUMENT = "DOCUMENT"


class AccessAction(Enum):
    """Actions a user can perform on a resource."""
    VIEW = "VIEW"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    EXPORT = "EXPORT"
    PRINT = "PRINT"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


@dataclass
class DeviceInfo:
    """Classification of the client device derived from its user agent.

    Attributes:
        device_type: "desktop", "mobile" or "tablet"
        os: Windows, macOS, iOS, Android, Linux or Unknown
        browser: Edge, Chrome, Firefox, Safari, Opera or Unknown
        is_unusual: Placeholder flag, only ever set by callers
    """
    device_type: str = "desktop"
    os: str = "Unknown"
    browser: str = "Unknown"
    is_unusual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_type": self.device_type,
            "os": self.os,
            "browser": self.browser,
            "is_unusual": self.is_unusual,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceInfo":
        return cls(
            device_type=data.get("device_type") or data.get("deviceType") or "desktop",
            os=data.get("os") or "Unknown",
            browser=data.get("browser") or "Unknown",
            is_unusual=bool(data.get("is_unusual", data.get("isUnusual", False))),
        )

    @classmethod
    def parse(cls, value: Any) -> Optional["DeviceInfo"]:
        """Build DeviceInfo from a dict, a JSON string or an instance.

        Unparseable values are treated as "no device information".
        """
        if value is None or value == "":
            return None
        if isinstance(value, DeviceInfo):
            return value
        try:
            if isinstance(value, str):
                value = json.loads(value)
            if not isinstance(value, dict):
                return None
            return cls.from_dict(value)
        except (ValueError, TypeError) as e:
            logger.debug(f"Ignoring malformed device info: {e}")
            return None


def parse_reasons(value: Any) -> List[str]:
    """Decode an anomaly reason list stored as a list or a JSON string."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    try:
        decoded = json.loads(value)
    except (ValueError, TypeError):
        logger.debug("Ignoring malformed anomaly reasons")
        return []
    if isinstance(decoded, list):
        return [str(v) for v in decoded]
    return []


@dataclass
class AccessLogData:
    """Caller-supplied facts about an access, before it is persisted.

    Attributes:
        user_id: Acting user
        organization_id: Organization owning the resource
        resource_type: Type of the accessed resource
        resource_id: Identifier of the accessed resource
        action: Action performed
        ip_address: Client IP address, when collectible
        user_agent: Raw user agent string, when collectible
        access_duration: Seconds spent on the resource
        data_size: Bytes transferred
        created_at: Access time (defaults to now)
    """
    user_id: str
    organization_id: str
    resource_type: ResourceType
    resource_id: str
    action: AccessAction
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    access_duration: Optional[float] = None
    data_size: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("user_id is required")
        if not self.organization_id:
            raise ValueError("organization_id is required")
        if isinstance(self.resource_type, str):
            self.resource_type = ResourceType(self.resource_type.upper())
        if isinstance(self.action, str):
            self.action = AccessAction(self.action.upper())
        if self.created_at is not None:
            self.created_at = ensure_utc(self.created_at)


@dataclass
class AccessEvent:
    """A persisted access event.

    Only anomaly_score, is_anomaly and anomaly_reasons change after the
    event is appended.
    """
    event_id: str
    user_id: str
    organization_id: str
    resource_type: ResourceType
    resource_id: str
    action: AccessAction
    created_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[DeviceInfo] = None
    access_duration: Optional[float] = None
    data_size: Optional[int] = None
    anomaly_score: int = 0
    is_anomaly: bool = False
    anomaly_reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_access_data(
        cls,
        data: AccessLogData,
        device_info: Optional[DeviceInfo] = None,
        event_id: Optional[str] = None,
    ) -> "AccessEvent":
        """Create a new unscored event from caller data."""
        return cls(
            event_id=event_id or uuid.uuid4().hex,
            user_id=data.user_id,
            organization_id=data.organization_id,
            resource_type=data.resource_type,
            resource_id=data.resource_id,
            action=data.action,
            created_at=data.created_at or utc_now(),
            ip_address=data.ip_address,
            user_agent=data.user_agent,
            device_info=device_info,
            access_duration=data.access_duration,
            data_size=data.data_size,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "resource_type": self.resource_type.value,
            "resource_id": self.resource_id,
            "action": self.action.value,
            "created_at": self.created_at.isoformat(),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "device_info": self.device_info.to_dict() if self.device_info else None,
            "access_duration": self.access_duration,
            "data_size": self.data_size,
            "anomaly_score": self.anomaly_score,
            "is_anomaly": self.is_anomaly,
            "anomaly_reasons": list(self.anomaly_reasons),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessEvent":
        """Create an event from a stored dictionary.

        device_info and anomaly_reasons may arrive JSON-encoded when the
        backing store keeps them in text columns.
        """
        access_duration = data.get("access_duration")
        data_size = data.get("data_size")
        return cls(
            event_id=data["event_id"],
            user_id=data["user_id"],
            organization_id=data["organization_id"],
            resource_type=ResourceType(data["resource_type"]),
            resource_id=data["resource_id"],
            action=AccessAction(data["action"]),
            created_at=parse_datetime(data["created_at"]),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            device_info=DeviceInfo.parse(data.get("device_info")),
            access_duration=float(access_duration) if access_duration is not None else None,
            data_size=int(data_size) if data_size is not None else None,
            anomaly_score=int(data.get("anomaly_score") or 0),
            is_anomaly=bool(data.get("is_anomaly", False)),
            anomaly_reasons=parse_reasons(data.get("anomaly_reasons")),
        )
