"""DynamoDB implementation of the access log store for AWS deployments."""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..errors import StoreError
from ..models.access_event import AccessEvent, ensure_utc
from .base import AccessLogQuery, AccessLogStore, PageCursor, QueryOrder, sort_events

logger = logging.getLogger(__name__)


class DynamoDBAccessLogStore(AccessLogStore):
    """DynamoDB implementation of access log storage.

    Table schema:
    - PK: pk (event id)
    - GSI user-index: (user_id, created_at)
    - GSI org-index: (organization_id, created_at)

    created_at is stored as a fixed-width UTC ISO-8601 string so that
    lexicographic order on the sort key equals chronological order.
    boto3 is synchronous; every call runs in a worker thread.
    """

    USER_INDEX = "user-index"
    ORG_INDEX = "org-index"

    def __init__(
        self,
        table_name: str = "accesswatch-access-logs",
        region: str = "us-east-1",
    ):
        self.table_name = table_name
        self.region = region
        self._table = None

    def _get_table(self):
        """Lazy initialization of DynamoDB table."""
        if self._table is None:
            import boto3
            dynamodb = boto3.resource("dynamodb", region_name=self.region)
            self._table = dynamodb.Table(self.table_name)
        return self._table

    @staticmethod
    def _format_time(value) -> str:
        return ensure_utc(value).isoformat(timespec="microseconds")

    def _event_to_item(self, event: AccessEvent) -> Dict[str, Any]:
        """Convert AccessEvent to DynamoDB item."""
        item = event.to_dict()
        item["pk"] = event.event_id
        item["created_at"] = self._format_time(event.created_at)
        if event.access_duration is not None:
            item["access_duration"] = Decimal(str(event.access_duration))
        return item

    def _item_to_event(self, item: Dict[str, Any]) -> AccessEvent:
        """Convert DynamoDB item to AccessEvent."""
        return AccessEvent.from_dict(item)

    async def append(self, event: AccessEvent) -> str:
        """Persist a new event."""
        item = self._event_to_item(event)
        await asyncio.to_thread(self._put_item, item)
        logger.debug(f"Recorded access event {event.event_id} for {event.user_id}")
        return event.event_id

    def _put_item(self, item: Dict[str, Any]) -> None:
        from botocore.exceptions import ClientError

        try:
            self._get_table().put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            logger.error(f"Error storing access event {item.get('pk')}: {e}")
            raise StoreError(f"Failed to store access event {item.get('pk')}") from e

    async def get(self, event_id: str) -> Optional[AccessEvent]:
        """Get an event by id."""
        item = await asyncio.to_thread(self._get_item, event_id)
        return self._item_to_event(item) if item else None

    def _get_item(self, event_id: str) -> Optional[Dict[str, Any]]:
        from botocore.exceptions import ClientError

        try:
            response = self._get_table().get_item(Key={"pk": event_id})
        except ClientError as e:
            logger.error(f"Error reading access event {event_id}: {e}")
            raise StoreError(f"Failed to read access event {event_id}") from e
        return response.get("Item")

    async def query_by_user(
        self, user_id: str, query: Optional[AccessLogQuery] = None
    ) -> List[AccessEvent]:
        """Range scan over one user's events."""
        query = query or AccessLogQuery()
        items = await asyncio.to_thread(
            self._query_index, self.USER_INDEX, "user_id", user_id, query
        )
        return self._finish(items, query)

    async def query_by_org(
        self, organization_id: str, query: Optional[AccessLogQuery] = None
    ) -> List[AccessEvent]:
        """Range scan over one organization's events."""
        query = query or AccessLogQuery()
        items = await asyncio.to_thread(
            self._query_index, self.ORG_INDEX, "organization_id", organization_id, query
        )
        return self._finish(items, query)

    async def fetch_org_page(
        self,
        organization_id: str,
        query: AccessLogQuery,
        page_size: int,
        after: Optional[PageCursor] = None,
    ) -> List[AccessEvent]:
        """Fetch one page of an organization's events, oldest first."""
        items = await asyncio.to_thread(
            self._query_index,
            self.ORG_INDEX,
            "organization_id",
            organization_id,
            query,
            True,
            page_size,
            after,
        )
        return [self._item_to_event(item) for item in items]

    def _finish(self, items: List[Dict[str, Any]], query: AccessLogQuery) -> List[AccessEvent]:
        events = [self._item_to_event(item) for item in items]
        if query.order == QueryOrder.SCORE_DESC:
            sort_events(events, query.order)
        if query.limit is not None:
            events = events[:query.limit]
        return events

    def _build_key_condition(self, key_name: str, key_value: str, query: AccessLogQuery, after):
        from boto3.dynamodb.conditions import Key

        condition = Key(key_name).eq(key_value)
        lower = self._format_time(query.start) if query.start else None
        if after is not None:
            cursor_time = self._format_time(after[0])
            lower = max(lower, cursor_time) if lower else cursor_time
        upper = self._format_time(query.end) if query.end else None

        if lower and upper:
            condition = condition & Key("created_at").between(lower, upper)
        elif lower:
            condition = condition & Key("created_at").gte(lower)
        elif upper:
            condition = condition & Key("created_at").lte(upper)
        return condition

    @staticmethod
    def _build_filter(query: AccessLogQuery):
        from boto3.dynamodb.conditions import Attr

        conditions = []
        if query.resource_type is not None:
            conditions.append(Attr("resource_type").eq(query.resource_type.value))
        if query.action is not None:
            conditions.append(Attr("action").eq(query.action.value))
        if query.is_anomaly is not None:
            conditions.append(Attr("is_anomaly").eq(query.is_anomaly))
        if query.min_score is not None:
            conditions.append(Attr("anomaly_score").gte(query.min_score))

        if not conditions:
            return None
        combined = conditions[0]
        for condition in conditions[1:]:
            combined = combined & condition
        return combined

    def _query_index(
        self,
        index_name: str,
        key_name: str,
        key_value: str,
        query: AccessLogQuery,
        oldest_first: bool = False,
        max_items: Optional[int] = None,
        after: Optional[PageCursor] = None,
    ) -> List[Dict[str, Any]]:
        """Query a GSI, following pagination until max_items are collected."""
        from botocore.exceptions import ClientError

        if max_items is None and query.order != QueryOrder.SCORE_DESC:
            max_items = query.limit
        if query.order == QueryOrder.OLDEST_FIRST:
            oldest_first = True
        if after is not None and query.end is not None and after[0] > query.end:
            return []

        kwargs: Dict[str, Any] = {
            "IndexName": index_name,
            "KeyConditionExpression": self._build_key_condition(key_name, key_value, query, after),
            "ScanIndexForward": oldest_first,
        }
        filter_expression = self._build_filter(query)
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression

        cursor_key = None
        if after is not None:
            cursor_key = (self._format_time(after[0]), after[1])

        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = self._get_table().query(**kwargs)
                for item in response.get("Items", []):
                    if cursor_key is not None and (item["created_at"], item["pk"]) <= cursor_key:
                        continue
                    items.append(item)

                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                if max_items is not None and len(items) >= max_items:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"Error querying {index_name} for {key_value}: {e}")
            raise StoreError(f"Failed to query access events for {key_value}") from e

        if oldest_first:
            items.sort(key=lambda i: (i["created_at"], i["pk"]))
        else:
            items.sort(key=lambda i: (i["created_at"], i["pk"]), reverse=True)

        if max_items is not None:
            items = items[:max_items]
        return items

    async def annotate(
        self,
        event_id: str,
        anomaly_score: int,
        is_anomaly: bool,
        reasons: List[str],
        only_if_not_anomalous: bool = False,
    ) -> bool:
        """Write scoring results onto an existing event."""
        updated = await asyncio.to_thread(
            self._update_scores, event_id, anomaly_score, is_anomaly, reasons, only_if_not_anomalous
        )
        if updated and is_anomaly:
            logger.info(f"Anomaly recorded on access event {event_id} (score: {anomaly_score})")
        return updated

    def _update_scores(
        self,
        event_id: str,
        anomaly_score: int,
        is_anomaly: bool,
        reasons: List[str],
        only_if_not_anomalous: bool,
    ) -> bool:
        from botocore.exceptions import ClientError

        condition = "attribute_exists(pk)"
        values: Dict[str, Any] = {
            ":score": int(anomaly_score),
            ":flag": bool(is_anomaly),
            ":reasons": list(reasons),
        }
        if only_if_not_anomalous:
            condition += " AND is_anomaly = :unflagged"
            values[":unflagged"] = False

        try:
            self._get_table().update_item(
                Key={"pk": event_id},
                UpdateExpression="SET anomaly_score = :score, is_anomaly = :flag, anomaly_reasons = :reasons",
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
            )
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.debug(f"Annotate skipped for access event {event_id}")
                return False
            logger.error(f"Error annotating access event {event_id}: {e}")
            raise StoreError(f"Failed to annotate access event {event_id}") from e
