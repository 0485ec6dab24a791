"""Identity and care-team records consulted by the detector."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class UserRole(Enum):
    """Organization roles."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    VIEWER = "VIEWER"


@dataclass
class User:
    """A user account as seen by the identity directory.

    Attributes:
        user_id: Unique user identifier
        organization_id: Owning organization
        name: Display name
        email: Email address
        role: Organization role
        active: False once the account is disabled (e.g. staff who left)
    """
    user_id: str
    organization_id: str
    name: str = ""
    email: str = ""
    role: UserRole = UserRole.STAFF
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            user_id=data["user_id"],
            organization_id=data["organization_id"],
            name=data.get("name", ""),
            email=data.get("email", ""),
            role=UserRole(data.get("role", UserRole.STAFF.value)),
            active=bool(data.get("active", True)),
        )


@dataclass(frozen=True)
class PatientAssignment:
    """Care-team membership of a user for a patient."""
    patient_id: str
    user_id: str
    active: bool = True
