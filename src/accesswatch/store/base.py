"""Access log storage interface.

Provides the abstract contract every access log backend implements, plus
the query filter object shared by all backends.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, List, Optional, Tuple

from ..models.access_event import AccessAction, AccessEvent, ResourceType, ensure_utc

logger = logging.getLogger(__name__)


class QueryOrder(Enum):
    """Sort order for store queries."""

    NEWEST_FIRST = "newest_first"
    OLDEST_FIRST = "oldest_first"
    SCORE_DESC = "score_desc"  # anomaly_score desc, then newest first


@dataclass
class AccessLogQuery:
    """Filters for access log range scans.

    Attributes:
        start: Inclusive lower bound on created_at
        end: Inclusive upper bound on created_at
        resource_type: Only events on this resource type
        action: Only events with this action
        is_anomaly: Only events with this anomaly flag
        min_score: Only events with anomaly_score >= min_score
        limit: Maximum number of events returned (None = unbounded)
        order: Sort order of the result
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    resource_type: Optional[ResourceType] = None
    action: Optional[AccessAction] = None
    is_anomaly: Optional[bool] = None
    min_score: Optional[int] = None
    limit: Optional[int] = 100
    order: QueryOrder = QueryOrder.NEWEST_FIRST

    def __post_init__(self):
        if self.start is not None:
            self.start = ensure_utc(self.start)
        if self.end is not None:
            self.end = ensure_utc(self.end)

    def matches(self, event: AccessEvent) -> bool:
        """Check whether an event satisfies every filter (ignores limit/order)."""
        if self.start is not None and event.created_at < self.start:
            return False
        if self.end is not None and event.created_at > self.end:
            return False
        if self.resource_type is not None and event.resource_type != self.resource_type:
            return False
        if self.action is not None and event.action != self.action:
            return False
        if self.is_anomaly is not None and event.is_anomaly != self.is_anomaly:
            return False
        if self.min_score is not None and event.anomaly_score < self.min_score:
            return False
        return True


def sort_events(events: List[AccessEvent], order: QueryOrder) -> List[AccessEvent]:
    """Sort events in place according to a QueryOrder and return them."""
    if order == QueryOrder.OLDEST_FIRST:
        events.sort(key=lambda e: (e.created_at, e.event_id))
    elif order == QueryOrder.SCORE_DESC:
        events.sort(key=lambda e: (e.anomaly_score, e.created_at), reverse=True)
    else:
        events.sort(key=lambda e: (e.created_at, e.event_id), reverse=True)
    return events


# (created_at, event_id) of the last event of a page
PageCursor = Tuple[datetime, str]


class AccessLogStore(ABC):
    """Abstract base class for access log storage.

    Implementations must be append-only apart from annotate(), which writes
    the three scoring fields of an existing event.
    """

    @abstractmethod
    async def append(self, event: AccessEvent) -> str:
        """Persist a new event.

        Args:
            event: Event to store

        Returns:
            The stored event id
        """
        pass

    @abstractmethod
    async def get(self, event_id: str) -> Optional[AccessEvent]:
        """Get an event by id, or None when it does not exist."""
        pass

    @abstractmethod
    async def query_by_user(
        self, user_id: str, query: Optional[AccessLogQuery] = None
    ) -> List[AccessEvent]:
        """Range scan over one user's events."""
        pass

    @abstractmethod
    async def query_by_org(
        self, organization_id: str, query: Optional[AccessLogQuery] = None
    ) -> List[AccessEvent]:
        """Range scan over one organization's events."""
        pass

    @abstractmethod
    async def fetch_org_page(
        self,
        organization_id: str,
        query: AccessLogQuery,
        page_size: int,
        after: Optional[PageCursor] = None,
    ) -> List[AccessEvent]:
        """Fetch one page of an organization's events, oldest first.

        Args:
            organization_id: Organization to scan
            query: Filters (limit and order are ignored)
            page_size: Maximum events in the page
            after: Cursor of the last event of the previous page

        Returns:
            Up to page_size events strictly after the cursor
        """
        pass

    @abstractmethod
    async def annotate(
        self,
        event_id: str,
        anomaly_score: int,
        is_anomaly: bool,
        reasons: List[str],
        only_if_not_anomalous: bool = False,
    ) -> bool:
        """Write scoring results onto an existing event.

        Args:
            event_id: Event to update
            anomaly_score: Final score (0-100)
            is_anomaly: Anomaly flag
            reasons: Human-readable reasons
            only_if_not_anomalous: Skip the update when the stored event is
                already flagged anomalous

        Returns:
            True if the event was updated
        """
        pass

    async def iter_by_org(
        self,
        organization_id: str,
        query: Optional[AccessLogQuery] = None,
        page_size: int = 500,
    ) -> AsyncIterator[AccessEvent]:
        """Stream an organization's matching events oldest first, page by page.

        Uses a keyset cursor so rows that stop matching the filter while the
        scan is running (e.g. after annotation) do not shift later pages.
        """
        query = query or AccessLogQuery()
        cursor: Optional[PageCursor] = None

        while True:
            page = await self.fetch_org_page(organization_id, query, page_size, after=cursor)
            if not page:
                return
            for event in page:
                yield event
            if len(page) < page_size:
                return
            last = page[-1]
            cursor = (last.created_at, last.event_id)
