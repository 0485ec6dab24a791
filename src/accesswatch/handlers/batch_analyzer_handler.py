"""
AWS Lambda handler for scheduled batch anomaly analysis.

Triggered by EventBridge (daily by default) to score every access event of
an organization that has not been flagged yet.

EventBridge Rule (CloudFormation):
```yaml
BatchAnalyzerSchedule:
  Type: AWS::Events::Rule
  Properties:
    Name: accesswatch-batch-analyzer-schedule
    ScheduleExpression: rate(1 day)
    State: ENABLED
    Targets:
      - Id: batch-analyzer-lambda
        Arn: !GetAtt BatchAnalyzerFunction.Arn
        Input: '{"organization_id": "org-123", "lookback_hours": 24}'
```

Event fields:
- organization_id (required)
- start / end: ISO-8601 bounds (optional)
- lookback_hours: window length when start is omitted (default 24)
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Tuple

from accesswatch.batch.analyzer import BatchAnalyzer
from accesswatch.config import AccessWatchConfig
from accesswatch.directory import DynamoDBDirectory
from accesswatch.errors import ConfigurationError
from accesswatch.models.access_event import parse_datetime, utc_now
from accesswatch.scoring.engine import AnomalyScoringEngine
from accesswatch.store.dynamodb import DynamoDBAccessLogStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

DEFAULT_LOOKBACK_HOURS = 24


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Lambda handler for batch anomaly analysis.

    Args:
        event: Lambda event (from EventBridge or manual trigger)
        context: Lambda context

    Returns:
        Response with execution summary
    """
    start_time = time.time()
    logger.info(f"Batch analyzer started: {json.dumps(event, default=str)}")

    try:
        organization_id, window_start, window_end = _resolve_window(event)
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Invalid batch analyzer event: {e}")
        return _build_response(400, {
            "error": str(e),
            "timestamp": utc_now().isoformat(),
        })

    try:
        config = _get_config()
        analyzer = _initialize_components(config)
        result = asyncio.run(
            analyzer.analyze_access_logs(
                organization_id, window_start, window_end, config.thresholds
            )
        )
    except Exception as e:
        logger.error(f"Error in batch analyzer: {e}")
        return _build_response(500, {
            "error": str(e),
            "timestamp": utc_now().isoformat(),
            "duration_ms": int((time.time() - start_time) * 1000),
        })

    duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Batch analyzer complete for {organization_id}: "
        f"{result.total_analyzed} analyzed, {result.anomalies_detected} anomalies, {duration_ms}ms"
    )

    return _build_response(200, {
        "timestamp": utc_now().isoformat(),
        "organization_id": organization_id,
        "start": window_start.isoformat(),
        "end": window_end.isoformat(),
        **result.to_dict(),
        "duration_ms": duration_ms,
    })


def _resolve_window(event: Dict[str, Any]) -> Tuple[str, datetime, datetime]:
    """Extract the organization and analysis window from the event."""
    organization_id = event.get("organization_id")
    if not organization_id:
        raise ConfigurationError("organization_id is required")

    window_end = parse_datetime(event.get("end")) or utc_now()
    window_start = parse_datetime(event.get("start"))
    if window_start is None:
        hours = float(event.get("lookback_hours", DEFAULT_LOOKBACK_HOURS))
        window_start = window_end - timedelta(hours=hours)

    if window_start > window_end:
        raise ConfigurationError("start must not be after end")
    return organization_id, window_start, window_end


def _get_config() -> AccessWatchConfig:
    """Load configuration from environment variables."""
    return AccessWatchConfig.from_environment()


def _initialize_components(config: AccessWatchConfig) -> BatchAnalyzer:
    """Initialize service components.

    Args:
        config: Loaded configuration

    Returns:
        BatchAnalyzer wired to the DynamoDB backends
    """
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
        tz=config.get_tzinfo(),
        io_timeout_seconds=config.io_timeout_seconds,
    )
    return BatchAnalyzer(
        store,
        engine,
        page_size=config.batch_page_size,
        progress_interval=config.progress_interval,
        io_timeout_seconds=config.io_timeout_seconds,
    )


def _build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    """Build Lambda response."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
