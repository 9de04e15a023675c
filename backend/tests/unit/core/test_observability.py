"""
Tests for structured logging and the metrics endpoint.
"""

import json
import logging

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from saas_backend.observability import StructuredJsonFormatter, setup_observability


class TestStructuredJsonFormatter:
    def test_extra_fields_become_top_level_keys(self):
        formatter = StructuredJsonFormatter()
        record = logging.LogRecord(
            name="saas_backend.events.dispatcher",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Event processing failed, will retry",
            args=(),
            exc_info=None,
        )
        record.event_id = "e-1"
        record.retries = 2

        output = json.loads(formatter.format(record))

        assert output["message"] == "Event processing failed, will retry"
        assert output["level"] == "WARNING"
        assert output["logger"] == "saas_backend.events.dispatcher"
        assert output["event_id"] == "e-1"
        assert output["retries"] == 2
        assert "trace_id" not in output


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_exposes_event_counters(self):
        app = FastAPI()
        setup_observability(app)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            await client.get("/ping")
            response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "event_bus_events_total" in response.text
