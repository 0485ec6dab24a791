"""
Unit tests for the individual anomaly factor detectors.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from accesswatch.directory import InMemoryCareTeamDirectory
from accesswatch.models.access_event import AccessAction, DeviceInfo, ResourceType
from accesswatch.models.directory import PatientAssignment
from accesswatch.scoring.detectors import (
    AuthorizationDetector,
    DeviceNoveltyDetector,
    StatisticalPatternDetector,
    TimeOfDayDetector,
    VolumeDetector,
    population_std_dev,
)
from accesswatch.scoring.models import AnomalyThresholds
from accesswatch.stats import StatisticsAggregator

MIB = 1024 * 1024


@pytest.fixture
def thresholds():
    return AnomalyThresholds()


def _at(hour, minute=0, day=12):
    """June 2024 timestamp; the 12th is a Wednesday, the 8th/9th a weekend."""
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


class TestTimeOfDayDetector:
    """Tests for the time-of-day detector."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("moment,expected", [
        (_at(3), 30),
        (_at(22), 30),
        (_at(5, 59), 30),
        (_at(6), 9),
        (_at(7, 30), 9),
        (_at(8), 0),
        (_at(12), 0),
        (_at(19, 59), 0),
        (_at(20), 15),
        (_at(21, 59), 15),
    ])
    async def test_weekday_hours(self, make_event, thresholds, moment, expected):
        score = await TimeOfDayDetector().score(make_event(created_at=moment), thresholds)

        assert score == pytest.approx(expected)

    @pytest.mark.asyncio
    async def test_weekend_adds_half(self, make_event, thresholds):
        detector = TimeOfDayDetector()

        assert await detector.score(make_event(created_at=_at(12, day=8)), thresholds) == pytest.approx(15)
        assert await detector.score(make_event(created_at=_at(3, day=9)), thresholds) == pytest.approx(45)

    @pytest.mark.asyncio
    async def test_capped_at_100(self, make_event):
        thresholds = AnomalyThresholds(late_night_access_score=80)

        score = await TimeOfDayDetector().score(make_event(created_at=_at(3, day=9)), thresholds)

        assert score == 100

    @pytest.mark.asyncio
    async def test_uses_configured_timezone(self, make_event, thresholds):
        """12:00 UTC is 21:00 in UTC+9."""
        detector = TimeOfDayDetector(tz=timezone(timedelta(hours=9)))

        assert await detector.score(make_event(created_at=_at(12)), thresholds) == pytest.approx(15)


class TestVolumeDetector:
    """Tests for the volume/burst detector."""

    async def _seed(self, store, make_event, count, spacing_seconds, action=AccessAction.VIEW):
        """Store count events ending at noon; the last one is returned for scoring."""
        noon = _at(12)
        for i in range(count - 1, 0, -1):
            await store.append(make_event(created_at=noon - timedelta(seconds=i * spacing_seconds)))
        event = make_event(created_at=noon, action=action)
        await store.append(event)
        return event

    @pytest.mark.asyncio
    async def test_sixty_spread_over_hour(self, store, make_event, thresholds):
        event = await self._seed(store, make_event, 60, 59)

        assert await VolumeDetector(store).score(event, thresholds) == pytest.approx(40)

    @pytest.mark.asyncio
    async def test_sixty_within_five_minutes(self, store, make_event, thresholds):
        event = await self._seed(store, make_event, 60, 5)

        assert await VolumeDetector(store).score(event, thresholds) == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_export_multiplier(self, store, make_event, thresholds):
        event = await self._seed(store, make_event, 60, 59, action=AccessAction.EXPORT)

        assert await VolumeDetector(store).score(event, thresholds) == pytest.approx(52)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count,expected", [(30, 28), (49, 28), (20, 16), (29, 16), (19, 0)])
    async def test_volume_tiers(self, store, make_event, thresholds, count, expected):
        event = await self._seed(store, make_event, count, 100)

        assert await VolumeDetector(store).score(event, thresholds) == pytest.approx(expected)

    @pytest.mark.asyncio
    async def test_burst_only(self, store, make_event, thresholds):
        event = await self._seed(store, make_event, 10, 20, action=AccessAction.PRINT)

        assert await VolumeDetector(store).score(event, thresholds) == pytest.approx(26)

    @pytest.mark.asyncio
    async def test_events_outside_hour_ignored(self, store, make_event, thresholds):
        for i in range(60):
            await store.append(make_event(created_at=_at(12) - timedelta(hours=2, seconds=i)))
        event = make_event(created_at=_at(12))
        await store.append(event)

        assert await VolumeDetector(store).score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_capped_at_100(self, store, make_event):
        event = await self._seed(store, make_event, 60, 1, action=AccessAction.EXPORT)

        score = await VolumeDetector(store).score(event, AnomalyThresholds(bulk_access_score=100))

        assert score == 100


class TestPopulationStdDev:
    """Tests for the standard deviation helper."""

    def test_empty(self):
        assert population_std_dev([]) == 0.0

    def test_flat(self):
        assert population_std_dev([3] * 24) == 0.0

    def test_population_not_sample(self):
        assert population_std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)


class TestStatisticalPatternDetector:
    """Tests for the statistical pattern detector."""

    @pytest.fixture
    def detector(self, store):
        return StatisticalPatternDetector(StatisticsAggregator(store))

    @pytest.mark.asyncio
    async def test_insufficient_history(self, store, make_event, detector, thresholds):
        for day in range(1, 10):
            await store.append(make_event(created_at=_at(9) - timedelta(days=day)))
        event = make_event(created_at=_at(9), action=AccessAction.EXPORT, data_size=50 * MIB)

        assert await detector.score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_dominant_hour_is_outlier(self, store, make_event, detector, thresholds):
        for day in range(1, 25):
            await store.append(make_event(created_at=_at(9) - timedelta(days=day)))
        event = make_event(created_at=_at(9))
        await store.append(event)

        assert await detector.score(event, thresholds) == pytest.approx(30)

    @pytest.mark.asyncio
    async def test_flat_histogram_rare_action_large_transfer(self, store, make_event, detector, thresholds):
        for hour in range(24):
            await store.append(make_event(created_at=_at(hour, day=11)))
        event = make_event(created_at=_at(12), action=AccessAction.EXPORT, data_size=20 * MIB)

        assert await detector.score(event, thresholds) == pytest.approx(45)

    @pytest.mark.asyncio
    async def test_rare_action_needs_more_than_twenty_events(self, store, make_event, detector, thresholds):
        for hour in range(20):
            await store.append(make_event(created_at=_at(hour, day=11)))
        event = make_event(created_at=_at(12), action=AccessAction.EXPORT)

        assert await detector.score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_exactly_ten_megabytes_not_large(self, store, make_event, detector, thresholds):
        for hour in range(24):
            await store.append(make_event(created_at=_at(hour, day=11)))
        event = make_event(created_at=_at(12), data_size=10 * MIB)

        assert await detector.score(event, thresholds) == 0


class TestDeviceNoveltyDetector:
    """Tests for the device novelty detector."""

    KNOWN = DeviceInfo("desktop", "Windows", "Chrome")

    async def _seed_history(self, store, make_event, count=5):
        for day in range(1, count + 1):
            await store.append(make_event(
                created_at=_at(12) - timedelta(days=day),
                device_info=self.KNOWN,
                ip_address="10.0.0.1",
            ))

    @pytest.mark.asyncio
    async def test_no_device_info(self, store, make_event, thresholds):
        await self._seed_history(store, make_event)

        assert await DeviceNoveltyDetector(store).score(make_event(), thresholds) == 0

    @pytest.mark.asyncio
    async def test_insufficient_history(self, store, make_event, thresholds):
        await self._seed_history(store, make_event, count=4)
        event = make_event(device_info=DeviceInfo("mobile", "Android", "Firefox"))

        assert await DeviceNoveltyDetector(store).score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_everything_new(self, store, make_event, thresholds):
        await self._seed_history(store, make_event)
        event = make_event(device_info=DeviceInfo("mobile", "Android", "Firefox"), ip_address="10.9.9.9")
        await store.append(event)

        score = await DeviceNoveltyDetector(store).score(event, thresholds)

        assert score == pytest.approx(25 + 20 + 12.5 + 15)

    @pytest.mark.asyncio
    async def test_known_device_and_ip(self, store, make_event, thresholds):
        await self._seed_history(store, make_event)
        event = make_event(device_info=self.KNOWN, ip_address="10.0.0.1")

        assert await DeviceNoveltyDetector(store).score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_new_browser_only(self, store, make_event, thresholds):
        await self._seed_history(store, make_event)
        event = make_event(device_info=DeviceInfo("desktop", "Windows", "Edge"))

        assert await DeviceNoveltyDetector(store).score(event, thresholds) == pytest.approx(12.5)

    @pytest.mark.asyncio
    async def test_new_ip_only(self, store, make_event, thresholds):
        await self._seed_history(store, make_event)
        event = make_event(device_info=self.KNOWN, ip_address="192.168.1.1")

        assert await DeviceNoveltyDetector(store).score(event, thresholds) == pytest.approx(15)

    @pytest.mark.asyncio
    async def test_capped_at_100(self, store, make_event):
        await self._seed_history(store, make_event)
        event = make_event(device_info=DeviceInfo("tablet", "iOS", "Safari"), ip_address="1.1.1.1")

        score = await DeviceNoveltyDetector(store).score(event, AnomalyThresholds(unusual_device_score=60))

        assert score == 100


class TestAuthorizationDetector:
    """Tests for the authorization detector."""

    @pytest.mark.asyncio
    async def test_unknown_user(self, user_directory, care_team, make_event, thresholds):
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(user_id="ghost", action=AccessAction.DELETE)

        assert await detector.score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_inactive_user_short_circuits(self, user_directory, make_event, thresholds):
        care_team = AsyncMock()
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(user_id="user-gone", action=AccessAction.DELETE, resource_type=ResourceType.PATIENT)

        assert await detector.score(event, thresholds) == pytest.approx(50)
        care_team.has_active_assignment.assert_not_called()

    @pytest.mark.asyncio
    async def test_unassigned_patient(self, user_directory, care_team, make_event, thresholds):
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(resource_type=ResourceType.PATIENT, resource_id="patient-1")

        assert await detector.score(event, thresholds) == pytest.approx(40)

    @pytest.mark.asyncio
    async def test_assigned_patient(self, user_directory, make_event, thresholds):
        care_team = InMemoryCareTeamDirectory([PatientAssignment("patient-1", "user-1")])
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(resource_type=ResourceType.PATIENT, resource_id="patient-1")

        assert await detector.score(event, thresholds) == 0

    @pytest.mark.asyncio
    async def test_inactive_assignment_does_not_count(self, user_directory, make_event, thresholds):
        care_team = InMemoryCareTeamDirectory([
            PatientAssignment("patient-1", "user-1"),
            PatientAssignment("patient-1", "user-1", active=False),
        ])
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(resource_type=ResourceType.PATIENT, resource_id="patient-1")

        assert await detector.score(event, thresholds) == pytest.approx(40)

    @pytest.mark.asyncio
    async def test_delete_on_unassigned_patient(self, user_directory, care_team, make_event, thresholds):
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(resource_type=ResourceType.PATIENT, action=AccessAction.DELETE)

        assert await detector.score(event, thresholds) == pytest.approx(55)

    @pytest.mark.asyncio
    async def test_delete_non_patient(self, user_directory, care_team, make_event, thresholds):
        detector = AuthorizationDetector(user_directory, care_team)
        event = make_event(resource_type=ResourceType.DOCUMENT, action=AccessAction.DELETE)

        assert await detector.score(event, thresholds) == pytest.approx(15)
