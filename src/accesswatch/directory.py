"""Identity and care-team directories.

Read-only views of users and patient assignments owned by other systems.
The scoring engine and alert dispatcher only consume these contracts.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .errors import StoreError
from .models.directory import PatientAssignment, User, UserRole

logger = logging.getLogger(__name__)


class UserDirectory(ABC):
    """Abstract read contract for user accounts."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Get a user by id, or None when unknown."""
        pass

    @abstractmethod
    async def list_active_admins(self, organization_id: str) -> List[User]:
        """List active ADMIN users of an organization."""
        pass


class CareTeamDirectory(ABC):
    """Abstract read contract for patient care-team membership."""

    @abstractmethod
    async def has_active_assignment(self, patient_id: str, user_id: str) -> bool:
        """Check whether the user is actively assigned to the patient."""
        pass


class InMemoryUserDirectory(UserDirectory):
    """In-memory user directory for development/testing."""

    def __init__(self, users: Optional[Iterable[User]] = None):
        self._users: Dict[str, User] = {}
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: User) -> None:
        self._users[user.user_id] = user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def list_active_admins(self, organization_id: str) -> List[User]:
        return [
            u for u in self._users.values()
            if u.organization_id == organization_id and u.role == UserRole.ADMIN and u.active
        ]


class InMemoryCareTeamDirectory(CareTeamDirectory):
    """In-memory care-team directory for development/testing."""

    def __init__(self, assignments: Optional[Iterable[PatientAssignment]] = None):
        self._active: Set[Tuple[str, str]] = set()
        for assignment in assignments or []:
            self.add_assignment(assignment)

    def add_assignment(self, assignment: PatientAssignment) -> None:
        key = (assignment.patient_id, assignment.user_id)
        if assignment.active:
            self._active.add(key)
        else:
            self._active.discard(key)

    async def has_active_assignment(self, patient_id: str, user_id: str) -> bool:
        return (patient_id, user_id) in self._active


class DynamoDBDirectory(UserDirectory, CareTeamDirectory):
    """DynamoDB-backed directory for AWS deployments.

    Users table: PK user_id, GSI org-index on organization_id.
    Assignments table: PK patient_id, SK user_id, attribute active.
    """

    ORG_INDEX = "org-index"

    def __init__(
        self,
        users_table: str = "accesswatch-users",
        assignments_table: str = "accesswatch-patient-assignments",
        region: str = "us-east-1",
    ):
        self.users_table = users_table
        self.assignments_table = assignments_table
        self.region = region
        self._tables: Dict[str, Any] = {}

    def _get_table(self, name: str):
        """Lazy initialization of DynamoDB tables."""
        if name not in self._tables:
            import boto3
            dynamodb = boto3.resource("dynamodb", region_name=self.region)
            self._tables[name] = dynamodb.Table(name)
        return self._tables[name]

    async def get_user(self, user_id: str) -> Optional[User]:
        item = await asyncio.to_thread(self._get_user_item, user_id)
        return User.from_dict(item) if item else None

    def _get_user_item(self, user_id: str) -> Optional[Dict[str, Any]]:
        from botocore.exceptions import ClientError

        try:
            response = self._get_table(self.users_table).get_item(Key={"user_id": user_id})
        except ClientError as e:
            logger.error(f"Error reading user {user_id}: {e}")
            raise StoreError(f"Failed to read user {user_id}") from e
        return response.get("Item")

    async def list_active_admins(self, organization_id: str) -> List[User]:
        items = await asyncio.to_thread(self._query_admins, organization_id)
        return [User.from_dict(item) for item in items]

    def _query_admins(self, organization_id: str) -> List[Dict[str, Any]]:
        from boto3.dynamodb.conditions import Attr, Key
        from botocore.exceptions import ClientError

        kwargs: Dict[str, Any] = {
            "IndexName": self.ORG_INDEX,
            "KeyConditionExpression": Key("organization_id").eq(organization_id),
            "FilterExpression": Attr("role").eq(UserRole.ADMIN.value) & Attr("active").eq(True),
        }
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = self._get_table(self.users_table).query(**kwargs)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            logger.error(f"Error listing admins for {organization_id}: {e}")
            raise StoreError(f"Failed to list admins for {organization_id}") from e
        return items

    async def has_active_assignment(self, patient_id: str, user_id: str) -> bool:
        return await asyncio.to_thread(self._get_assignment, patient_id, user_id)

    def _get_assignment(self, patient_id: str, user_id: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            response = self._get_table(self.assignments_table).get_item(
                Key={"patient_id": patient_id, "user_id": user_id}
            )
        except ClientError as e:
            logger.error(f"Error reading assignment {patient_id}/{user_id}: {e}")
            raise StoreError(f"Failed to read assignment {patient_id}/{user_id}") from e
        item = response.get("Item")
        return bool(item and item.get("active", True))
