"""
Anomaly Report API Handler

Lambda function behind API Gateway serving the security dashboard's
anomaly report. Only active administrators may read it, and only for their
own organization.

Route:
- GET /security/anomaly-report

Query parameters:
- period: daily | weekly | monthly (default weekly)
- start / end: ISO-8601 bounds, both required to override the period
- min_score: minimum anomaly score included (default 50)
- format: json | csv (default json)
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from accesswatch.config import AccessWatchConfig
from accesswatch.directory import DynamoDBDirectory, UserDirectory
from accesswatch.handlers.auth import AuthenticationError, get_authenticated_user_id
from accesswatch.models.access_event import parse_datetime, utc_now
from accesswatch.reporting.anomaly_report import (
    AnomalyReportGenerator,
    report_to_csv,
    resolve_report_period,
)
from accesswatch.store.dynamodb import DynamoDBAccessLogStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

DEFAULT_PERIOD = "weekly"
DEFAULT_MIN_SCORE = 50

# Lazy-initialized components, reused across warm invocations
_components: Optional[Tuple[UserDirectory, AnomalyReportGenerator]] = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Handle anomaly report requests.

    Args:
        event: API Gateway proxy event
        context: Lambda context

    Returns:
        API Gateway response with the report as JSON or CSV
    """
    try:
        user_id = get_authenticated_user_id(event)
    except AuthenticationError:
        return _error_response(401, "Authentication required")

    params = event.get("queryStringParameters") or {}
    try:
        period, start, end, min_score, output_format = _parse_params(params)
    except ValueError as e:
        return _error_response(400, str(e))

    try:
        users, generator = _get_components()
        return asyncio.run(
            _handle_report(users, generator, user_id, period, start, end, min_score, output_format)
        )
    except Exception as e:
        logger.error(f"Error in anomaly report handler: {e}", exc_info=True)
        return _error_response(500, "Failed to generate anomaly report")


async def _handle_report(
    users: UserDirectory,
    generator: AnomalyReportGenerator,
    user_id: str,
    period: str,
    start: datetime,
    end: datetime,
    min_score: int,
    output_format: str,
) -> Dict[str, Any]:
    user = await users.get_user(user_id)
    if user is None or not user.active or not user.is_admin:
        logger.warning(f"Anomaly report denied for {user_id}")
        return _error_response(403, "Administrator access required")

    logger.info(f"Generating {period} anomaly report for {user.organization_id} ({user_id})")
    report = await generator.generate(user.organization_id, start, end, min_score)

    if output_format == "csv":
        filename = f"anomaly-report-{period}-{utc_now().date().isoformat()}.csv"
        return {
            "statusCode": 200,
            "headers": {
                "Content-Type": "text/csv; charset=utf-8",
                "Content-Disposition": f'attachment; filename="{filename}"',
            },
            "body": report_to_csv(report),
        }

    return _success_response({
        "success": True,
        "period": period,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "report": report.to_dict(),
    })


def _parse_params(params: Dict[str, str]) -> Tuple[str, datetime, datetime, int, str]:
    """Validate query parameters.

    Raises:
        ValueError: On malformed dates, scores or formats
    """
    period = params.get("period") or DEFAULT_PERIOD
    output_format = (params.get("format") or "json").lower()
    if output_format not in ("json", "csv"):
        raise ValueError(f"Unsupported format: {output_format}")

    try:
        min_score = int(params.get("min_score") or DEFAULT_MIN_SCORE)
    except ValueError:
        raise ValueError("min_score must be an integer")

    if params.get("start") and params.get("end"):
        try:
            start = parse_datetime(params["start"])
            end = parse_datetime(params["end"])
        except ValueError:
            raise ValueError("start and end must be ISO-8601 timestamps")
        if start > end:
            raise ValueError("start must not be after end")
    else:
        start, end = resolve_report_period(period)

    return period, start, end, min_score, output_format


def _get_components() -> Tuple[UserDirectory, AnomalyReportGenerator]:
    """Get lazily-initialized directory and report generator."""
    global _components
    if _components is None:
        config = AccessWatchConfig.from_environment()
        store = DynamoDBAccessLogStore(table_name=config.access_log_table, region=config.region)
        directory = DynamoDBDirectory(
            users_table=config.users_table,
            assignments_table=config.assignments_table,
            region=config.region,
        )
        generator = AnomalyReportGenerator(store, directory, tz=config.get_tzinfo())
        _components = (directory, generator)
    return _components


def _success_response(data: Dict[str, Any], status_code: int = 200) -> Dict[str, Any]:
    """Create a successful API response."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(data),
    }


def _error_response(status_code: int, message: str) -> Dict[str, Any]:
    """Create an error API response."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"error": message}),
    }
