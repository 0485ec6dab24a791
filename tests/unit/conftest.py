"""
AccessWatch - Unit Test Configuration

Pytest fixtures specific to unit tests.
"""

import itertools
from datetime import datetime, timezone

import pytest

from accesswatch.alerting.dispatcher import AlertDispatcher
from accesswatch.alerting.notifications import InMemoryNotificationSink
from accesswatch.directory import InMemoryCareTeamDirectory, InMemoryUserDirectory
from accesswatch.models.access_event import AccessAction, AccessEvent, ResourceType
from accesswatch.models.directory import User, UserRole
from accesswatch.scoring.engine import AnomalyScoringEngine
from accesswatch.store.memory import InMemoryAccessLogStore

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


@pytest.fixture
def weekday_noon():
    """Wednesday 12:00 UTC."""
    return datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sunday_3am():
    """Sunday 03:00 UTC."""
    return datetime(2024, 6, 9, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_users():
    """Users of the test organizations."""
    return [
        User("admin-1", ORG_ID, "Ada Admin", "ada@example.org", UserRole.ADMIN, True),
        User("admin-2", ORG_ID, "Bob Admin", "bob@example.org", UserRole.ADMIN, True),
        User("admin-off", ORG_ID, "Old Admin", "old@example.org", UserRole.ADMIN, False),
        User("user-1", ORG_ID, "Alice Staff", "alice@example.org", UserRole.STAFF, True),
        User("user-gone", ORG_ID, "Gone Staff", "gone@example.org", UserRole.STAFF, False),
        User("admin-x", OTHER_ORG_ID, "Xavier Admin", "x@example.org", UserRole.ADMIN, True),
    ]


@pytest.fixture
def store():
    """Empty in-memory access log store."""
    return InMemoryAccessLogStore()


@pytest.fixture
def user_directory(sample_users):
    return InMemoryUserDirectory(sample_users)


@pytest.fixture
def care_team():
    return InMemoryCareTeamDirectory()


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def engine(store, user_directory, care_team):
    return AnomalyScoringEngine(store, user_directory, care_team, io_timeout_seconds=5)


@pytest.fixture
def dispatcher(store, engine, user_directory, sink):
    return AlertDispatcher(store, engine, user_directory, sink, io_timeout_seconds=5)


@pytest.fixture
def make_event(weekday_noon):
    """Factory for unscored access events with sequential ids."""
    counter = itertools.count(1)

    def _make_event(**overrides) -> AccessEvent:
        fields = {
            "event_id": f"evt-{next(counter):05d}",
            "user_id": "user-1",
            "organization_id": ORG_ID,
            "resource_type": ResourceType.RECORD,
            "resource_id": "rec-1",
            "action": AccessAction.VIEW,
            "created_at": weekday_noon,
        }
        fields.update(overrides)
        return AccessEvent(**fields)

    return _make_event
