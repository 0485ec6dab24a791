"""
Unit tests for the in-memory access log store and the access event model.
"""

import json
from datetime import timedelta

import pytest

from accesswatch.models.access_event import (
    AccessAction,
    AccessEvent,
    AccessLogData,
    DeviceInfo,
    ResourceType,
)
from accesswatch.store.base import AccessLogQuery, QueryOrder
from accesswatch.store.memory import InMemoryAccessLogStore


class TestAccessEventModel:
    """Tests for AccessEvent serialization."""

    def test_to_dict_from_dict_preserves_fields(self, make_event):
        event = make_event(
            ip_address="10.0.0.1",
            user_agent="curl/8",
            device_info=DeviceInfo("mobile", "Android", "Chrome"),
            access_duration=12.5,
            data_size=2048,
            anomaly_score=62,
            is_anomaly=True,
            anomaly_reasons=["Late-night or off-hours access (score: 30)"],
        )

        assert AccessEvent.from_dict(event.to_dict()) == event

    def test_from_dict_accepts_json_text_columns(self, make_event):
        data = make_event().to_dict()
        data["device_info"] = json.dumps({"device_type": "tablet", "os": "iOS", "browser": "Safari"})
        data["anomaly_reasons"] = json.dumps(["a (score: 1)", "b (score: 2)"])

        event = AccessEvent.from_dict(data)

        assert event.device_info.device_type == "tablet"
        assert event.anomaly_reasons == ["a (score: 1)", "b (score: 2)"]

    def test_from_dict_malformed_json_means_no_information(self, make_event):
        data = make_event().to_dict()
        data["device_info"] = "{not json"
        data["anomaly_reasons"] = "[broken"

        event = AccessEvent.from_dict(data)

        assert event.device_info is None
        assert event.anomaly_reasons == []

    def test_access_log_data_requires_ids(self):
        with pytest.raises(ValueError):
            AccessLogData("", "org-1", ResourceType.PATIENT, "p-1", AccessAction.VIEW)
        with pytest.raises(ValueError):
            AccessLogData("user-1", "", ResourceType.PATIENT, "p-1", AccessAction.VIEW)

    def test_access_log_data_coerces_enum_strings(self):
        data = AccessLogData("user-1", "org-1", "patient", "p-1", "export")

        assert data.resource_type == ResourceType.PATIENT
        assert data.action == AccessAction.EXPORT

    def test_from_access_data_assigns_unique_ids(self):
        data = AccessLogData("user-1", "org-1", ResourceType.RECORD, "r-1", AccessAction.VIEW)

        first = AccessEvent.from_access_data(data)
        second = AccessEvent.from_access_data(data)

        assert first.event_id != second.event_id
        assert first.created_at.tzinfo is not None
        assert first.anomaly_score == 0
        assert first.is_anomaly is False
        assert first.anomaly_reasons == []


class TestInMemoryStore:
    """Tests for InMemoryAccessLogStore."""

    @pytest.mark.asyncio
    async def test_append_and_get(self, store, make_event):
        event = make_event()

        event_id = await store.append(event)

        assert event_id == event.event_id
        assert await store.get(event_id) == event
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store, make_event):
        event = make_event()
        await store.append(event)

        with pytest.raises(ValueError):
            await store.append(event)

    @pytest.mark.asyncio
    async def test_returned_events_are_copies(self, store, make_event):
        event = make_event()
        await store.append(event)

        fetched = await store.get(event.event_id)
        fetched.anomaly_score = 99

        assert (await store.get(event.event_id)).anomaly_score == 0

    @pytest.mark.asyncio
    async def test_annotate_changes_only_scoring_fields(self, store, make_event):
        event = make_event(ip_address="10.0.0.1", device_info=DeviceInfo())
        await store.append(event)

        updated = await store.annotate(event.event_id, 75, True, ["x (score: 75)"])
        stored = await store.get(event.event_id)

        assert updated is True
        assert stored.anomaly_score == 75
        assert stored.is_anomaly is True
        assert stored.anomaly_reasons == ["x (score: 75)"]
        before = event.to_dict()
        after = stored.to_dict()
        for key in ("anomaly_score", "is_anomaly", "anomaly_reasons"):
            before.pop(key)
            after.pop(key)
        assert before == after

    @pytest.mark.asyncio
    async def test_annotate_missing_event(self, store):
        assert await store.annotate("missing", 10, False, []) is False

    @pytest.mark.asyncio
    async def test_conditional_annotate_skips_flagged_event(self, store, make_event):
        event = make_event(anomaly_score=90, is_anomaly=True, anomaly_reasons=["old"])
        await store.append(event)

        updated = await store.annotate(event.event_id, 10, False, [], only_if_not_anomalous=True)

        assert updated is False
        assert (await store.get(event.event_id)).anomaly_score == 90

    @pytest.mark.asyncio
    async def test_query_by_user_filters_and_orders(self, store, make_event, weekday_noon):
        for minutes in (0, 10, 20):
            await store.append(make_event(created_at=weekday_noon + timedelta(minutes=minutes)))
        await store.append(make_event(user_id="someone-else"))
        await store.append(make_event(created_at=weekday_noon - timedelta(days=2)))

        events = await store.query_by_user(
            "user-1",
            AccessLogQuery(start=weekday_noon - timedelta(hours=1), end=weekday_noon + timedelta(hours=1)),
        )

        assert len(events) == 3
        assert [e.created_at for e in events] == sorted((e.created_at for e in events), reverse=True)

    @pytest.mark.asyncio
    async def test_query_bounds_are_inclusive(self, store, make_event, weekday_noon):
        await store.append(make_event(created_at=weekday_noon))

        events = await store.query_by_user("user-1", AccessLogQuery(start=weekday_noon, end=weekday_noon))

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_query_by_org_score_order_and_min_score(self, store, make_event, weekday_noon):
        await store.append(make_event(anomaly_score=55, is_anomaly=True))
        await store.append(make_event(anomaly_score=90, is_anomaly=True))
        await store.append(make_event(anomaly_score=20))

        events = await store.query_by_org(
            "org-1",
            AccessLogQuery(is_anomaly=True, min_score=50, order=QueryOrder.SCORE_DESC),
        )

        assert [e.anomaly_score for e in events] == [90, 55]

    @pytest.mark.asyncio
    async def test_query_limit(self, store, make_event):
        for _ in range(5):
            await store.append(make_event())

        events = await store.query_by_org("org-1", AccessLogQuery(limit=2))

        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_iter_by_org_pages_oldest_first(self, store, make_event, weekday_noon):
        for minutes in range(7):
            await store.append(make_event(created_at=weekday_noon + timedelta(minutes=minutes)))

        seen = [e async for e in store.iter_by_org("org-1", page_size=3)]

        assert len(seen) == 7
        assert [e.created_at for e in seen] == sorted(e.created_at for e in seen)

    @pytest.mark.asyncio
    async def test_iter_by_org_stable_while_rows_stop_matching(self, store, make_event, weekday_noon):
        """Annotating rows during the scan must not skip later rows."""
        for minutes in range(6):
            await store.append(make_event(created_at=weekday_noon + timedelta(minutes=minutes)))

        seen = []
        async for event in store.iter_by_org("org-1", AccessLogQuery(is_anomaly=False, limit=None), page_size=2):
            seen.append(event.event_id)
            await store.annotate(event.event_id, 80, True, ["x"])

        assert len(seen) == 6
        assert len(set(seen)) == 6

    @pytest.mark.asyncio
    async def test_iter_by_org_same_timestamp_tiebreak(self, store, make_event):
        for _ in range(5):
            await store.append(make_event())

        seen = [e.event_id async for e in store.iter_by_org("org-1", page_size=2)]

        assert seen == sorted(seen)
        assert len(seen) == 5


def test_new_store_is_empty():
    assert len(InMemoryAccessLogStore()) == 0
