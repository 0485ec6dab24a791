"""Access log storage backends."""

from .base import AccessLogQuery, AccessLogStore, PageCursor, QueryOrder, sort_events
from .dynamodb import DynamoDBAccessLogStore
from .memory import InMemoryAccessLogStore

__all__ = [
    "AccessLogQuery",
    "AccessLogStore",
    "PageCursor",
    "QueryOrder",
    "sort_events",
    "DynamoDBAccessLogStore",
    "InMemoryAccessLogStore",
]
