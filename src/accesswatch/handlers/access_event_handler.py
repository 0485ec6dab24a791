"""
AWS Lambda handler for real-time access recording.

Invoked by the application backend (directly or through an SQS queue) for
every access to a protected resource. Persists the access, scores it and
dispatches security notifications.

Event fields (direct invocation):
- user_id, organization_id, resource_type, resource_id, action (required)
- ip_address, user_agent, access_duration, data_size, created_at (optional)

SQS events carry the same object as the JSON body of each record. Records
are processed independently and the handler returns the SQS partial batch
response, so the event source mapping must enable ReportBatchItemFailures.
A record that is malformed or could not be stored is reported as a batch
item failure and stays on the queue (and reaches its dead-letter queue once
retries are exhausted).
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from accesswatch.alerting.dispatcher import AlertDispatcher
from accesswatch.alerting.notifications import (
    DynamoDBNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
)
from accesswatch.alerting.throttle import EscalationThrottle, ThrottleConfig
from accesswatch.config import AccessWatchConfig
from accesswatch.directory import DynamoDBDirectory
from accesswatch.models.access_event import AccessLogData, parse_datetime
from accesswatch.scoring.engine import AnomalyScoringEngine
from accesswatch.store.dynamodb import DynamoDBAccessLogStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Kept across warm invocations so the escalation throttle persists
_config: Optional[AccessWatchConfig] = None
_dispatcher: Optional[AlertDispatcher] = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Lambda handler for access recording.

    Args:
        event: Access record, or an SQS event wrapping access records
        context: Lambda context

    Returns:
        Response with the dispatch outcome for a direct invocation, or the
        SQS partial batch response listing failed message ids
    """
    if "Records" in event:
        return _handle_sqs_batch(event["Records"])
    return _handle_direct(event)


def _handle_direct(event: Dict[str, Any]) -> Dict[str, Any]:
    start_time = time.time()

    try:
        data = _parse_access(event)
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Invalid access event: {e}")
        return _build_response(400, {"error": f"Invalid access event: {e}"})

    try:
        config, dispatcher = _get_dispatcher()
        outcome = asyncio.run(
            dispatcher.record_access_and_detect_anomaly(
                data, alert_config=config.alert, thresholds=config.thresholds
            )
        )
    except Exception as e:
        logger.error(f"Error recording access: {e}")
        return _build_response(500, {
            "error": str(e),
            "duration_ms": int((time.time() - start_time) * 1000),
        })

    result = outcome.to_dict()
    anomalies = 1 if result["result"] and result["result"]["is_anomaly"] else 0
    logger.info(f"Recorded access {outcome.event_id}, anomalous: {bool(anomalies)}")

    return _build_response(200, {
        "recorded": 1,
        "anomalies": anomalies,
        "outcomes": [result],
        "duration_ms": int((time.time() - start_time) * 1000),
    })


def _handle_sqs_batch(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Process SQS records one by one.

    Component setup failures raise so the whole batch is retried.
    """
    config, dispatcher = _get_dispatcher()
    outcomes, failed = asyncio.run(_dispatch_records(dispatcher, config, records))

    anomalies = sum(1 for o in outcomes if o["result"] and o["result"]["is_anomaly"])
    logger.info(
        f"Recorded {len(outcomes)} of {len(records)} queued accesses, "
        f"{anomalies} anomalous, {len(failed)} failed"
    )
    return {"batchItemFailures": [{"itemIdentifier": message_id} for message_id in failed]}


async def _dispatch_records(
    dispatcher: AlertDispatcher,
    config: AccessWatchConfig,
    records: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], List[str]]:
    outcomes = []
    failed = []
    for record in records:
        message_id = record.get("messageId")
        try:
            data = _parse_access(json.loads(record["body"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid access record in message {message_id}: {e}")
            failed.append(message_id)
            continue

        try:
            outcome = await dispatcher.record_access_and_detect_anomaly(
                data, alert_config=config.alert, thresholds=config.thresholds
            )
        except Exception as e:
            logger.error(f"Failed to record access from message {message_id}: {e}")
            failed.append(message_id)
            continue
        outcomes.append(outcome.to_dict())
    return outcomes, failed


def _parse_access(payload: Dict[str, Any]) -> AccessLogData:
    """Build AccessLogData from a raw payload.

    Raises:
        KeyError: If a required field is missing
        ValueError: If a field has an invalid value
    """
    return AccessLogData(
        user_id=payload["user_id"],
        organization_id=payload["organization_id"],
        resource_type=payload["resource_type"],
        resource_id=payload["resource_id"],
        action=payload["action"],
        ip_address=payload.get("ip_address"),
        user_agent=payload.get("user_agent"),
        access_duration=payload.get("access_duration"),
        data_size=payload.get("data_size"),
        created_at=parse_datetime(payload.get("created_at")),
    )


def _create_sink(config: AccessWatchConfig) -> NotificationSink:
    if config.webhook_url:
        return WebhookNotificationSink(config.webhook_url, timeout=int(config.io_timeout_seconds))
    return DynamoDBNotificationSink(table_name=config.notifications_table, region=config.region)


def _get_dispatcher():
    """Get lazily-initialized configuration and dispatcher."""
    global _config, _dispatcher
    if _dispatcher is None:
        config = AccessWatchConfig.from_environment()
        tz = config.get_tzinfo()
        store = DynamoDBAccessLogStore(table_name=config.access_log_table, region=config.region)
        directory = DynamoDBDirectory(
            users_table=config.users_table,
            assignments_table=config.assignments_table,
            region=config.region,
        )
        engine = AnomalyScoringEngine(
            store,
            users=directory,
            care_team=directory,
            tz=tz,
            io_timeout_seconds=config.io_timeout_seconds,
        )
        throttle = EscalationThrottle(
            ThrottleConfig(window_seconds=config.escalation_window_seconds)
        )
        _config = config
        _dispatcher = AlertDispatcher(
            store,
            engine,
            users=directory,
            sink=_create_sink(config),
            throttle=throttle,
            tz=tz,
            io_timeout_seconds=config.io_timeout_seconds,
        )
    return _config, _dispatcher


def _build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    """Build Lambda response."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
