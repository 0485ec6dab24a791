"""In-memory access log store for development and testing."""

import asyncio
import copy
import logging
from typing import Dict, List, Optional

from ..models.access_event import AccessEvent
from .base import AccessLogQuery, AccessLogStore, PageCursor, QueryOrder, sort_events

logger = logging.getLogger(__name__)


class InMemoryAccessLogStore(AccessLogStore):
    """Dictionary-backed implementation of AccessLogStore.

    Returned events are copies, so callers cannot mutate stored state
    outside of annotate().
    """

    def __init__(self):
        self._events: Dict[str, AccessEvent] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._events)

    async def append(self, event: AccessEvent) -> str:
        """Persist a new event."""
        async with self._lock:
            if event.event_id in self._events:
                raise ValueError(f"Duplicate access event id: {event.event_id}")
            self._events[event.event_id] = copy.deepcopy(event)
        logger.debug(
            f"Recorded access {event.action.value} {event.resource_type.value}/"
            f"{event.resource_id} by {event.user_id}"
        )
        return event.event_id

    async def get(self, event_id: str) -> Optional[AccessEvent]:
        """Get an event by id."""
        event = self._events.get(event_id)
        return copy.deepcopy(event) if event else None

    async def query_by_user(
        self, user_id: str, query: Optional[AccessLogQuery] = None
    ) -> List[AccessEvent]:
        """Range scan over one user's events."""
        query = query or AccessLogQuery()
        return self._select(lambda e: e.user_id == user_id, query)

    async def query_by_org(
        self, organization_id: str, query: Optional[AccessLogQuery] = None
    ) -> List[AccessEvent]:
        """Range scan over one organization's events."""
        query = query or AccessLogQuery()
        return self._select(lambda e: e.organization_id == organization_id, query)

    async def fetch_org_page(
        self,
        organization_id: str,
        query: AccessLogQuery,
        page_size: int,
        after: Optional[PageCursor] = None,
    ) -> List[AccessEvent]:
        """Fetch one page of an organization's events, oldest first."""
        matching = [
            e for e in self._events.values()
            if e.organization_id == organization_id
            and query.matches(e)
            and (after is None or (e.created_at, e.event_id) > after)
        ]
        sort_events(matching, QueryOrder.OLDEST_FIRST)
        return [copy.deepcopy(e) for e in matching[:page_size]]

    async def annotate(
        self,
        event_id: str,
        anomaly_score: int,
        is_anomaly: bool,
        reasons: List[str],
        only_if_not_anomalous: bool = False,
    ) -> bool:
        """Write scoring results onto an existing event."""
        async with self._lock:
            event = self._events.get(event_id)
            if event is None:
                logger.warning(f"Cannot annotate missing access event {event_id}")
                return False
            if only_if_not_anomalous and event.is_anomaly:
                logger.debug(f"Access event {event_id} already flagged, skipping annotate")
                return False

            event.anomaly_score = anomaly_score
            event.is_anomaly = is_anomaly
            event.anomaly_reasons = list(reasons)

        if is_anomaly:
            logger.info(f"Anomaly recorded on access event {event_id} (score: {anomaly_score})")
        return True

    def _select(self, predicate, query: AccessLogQuery) -> List[AccessEvent]:
        matching = [e for e in self._events.values() if predicate(e) and query.matches(e)]
        sort_events(matching, query.order)
        if query.limit is not None:
            matching = matching[:query.limit]
        return [copy.deepcopy(e) for e in matching]
