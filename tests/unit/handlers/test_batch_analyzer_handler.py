"""Unit tests for the batch analyzer Lambda handler."""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from accesswatch.batch.analyzer import BatchAnalyzer
from accesswatch.config import AccessWatchConfig
from accesswatch.errors import ConfigurationError
from accesswatch.handlers import batch_analyzer_handler
from accesswatch.models.access_event import ResourceType


@pytest.fixture
def in_memory_analyzer(store, engine):
    """Run the handler against in-memory components."""
    analyzer = BatchAnalyzer(store, engine)
    with patch.object(batch_analyzer_handler, "_get_config", return_value=AccessWatchConfig()), \
            patch.object(batch_analyzer_handler, "_initialize_components", return_value=analyzer):
        yield analyzer


class TestBatchAnalyzerHandler:
    """Tests for lambda_handler."""

    def test_analyzes_requested_window(self, in_memory_analyzer, store, make_event, sunday_3am):
        asyncio.run(store.append(make_event(created_at=sunday_3am, resource_type=ResourceType.PATIENT)))

        response = batch_analyzer_handler.lambda_handler({
            "organization_id": "org-1",
            "start": (sunday_3am - timedelta(hours=1)).isoformat(),
            "end": (sunday_3am + timedelta(hours=1)).isoformat(),
        }, None)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["organization_id"] == "org-1"
        assert body["total_analyzed"] == 1
        assert body["average_score"] == 17
        assert body["failed"] == 0

    def test_missing_organization(self, in_memory_analyzer):
        response = batch_analyzer_handler.lambda_handler({}, None)

        assert response["statusCode"] == 400
        assert "organization_id" in json.loads(response["body"])["error"]

    def test_invalid_timestamp(self, in_memory_analyzer):
        response = batch_analyzer_handler.lambda_handler(
            {"organization_id": "org-1", "start": "yesterday"}, None
        )

        assert response["statusCode"] == 400

    def test_analyzer_failure_returns_500(self):
        analyzer = MagicMock()
        analyzer.analyze_access_logs = AsyncMock(side_effect=RuntimeError("table missing"))
        with patch.object(batch_analyzer_handler, "_get_config", return_value=AccessWatchConfig()), \
                patch.object(batch_analyzer_handler, "_initialize_components", return_value=analyzer):
            response = batch_analyzer_handler.lambda_handler({"organization_id": "org-1"}, None)

        assert response["statusCode"] == 500
        assert json.loads(response["body"])["error"] == "table missing"


class TestResolveWindow:
    """Tests for _resolve_window."""

    def test_default_lookback(self):
        _, start, end = batch_analyzer_handler._resolve_window({"organization_id": "org-1"})

        assert end - start == timedelta(hours=24)

    def test_custom_lookback(self):
        _, start, end = batch_analyzer_handler._resolve_window(
            {"organization_id": "org-1", "end": "2024-06-12T12:00:00Z", "lookback_hours": 6}
        )

        assert end.isoformat() == "2024-06-12T12:00:00+00:00"
        assert start.isoformat() == "2024-06-12T06:00:00+00:00"

    def test_start_after_end(self):
        with pytest.raises(ConfigurationError):
            batch_analyzer_handler._resolve_window({
                "organization_id": "org-1",
                "start": "2024-06-12T12:00:00Z",
                "end": "2024-06-11T12:00:00Z",
            })
