"""
Tests for structured log rendering.
"""
import json
import logging

import pytest
import structlog

from orderflow.monitoring.logging import add_app_context, build_formatter


def _format(event_dict: dict) -> dict:
    kwargs = structlog.stdlib.render_to_log_kwargs(None, "info", dict(event_dict))
    record = logging.makeLogRecord(
        {"name": "orderflow.core.delivery", "levelname": "INFO", "msg": kwargs["msg"]}
    )
    record.__dict__.update(kwargs["extra"])
    return json.loads(build_formatter().format(record))


class TestLogFormat:
    """Test that each record is a single flat JSON object."""

    @pytest.mark.unit
    def test_structlog_event_renders_flat(self) -> None:
        event = add_app_context(
            None, "info", {"event": "delivery_completed", "purchase_id": "p-1", "score": 50}
        )

        line = _format(event)

        assert line["event"] == "delivery_completed"
        assert line["purchase_id"] == "p-1"
        assert line["score"] == 50
        assert line["app_name"]
        assert line["level"] == "info"
        assert line["logger"] == "orderflow.core.delivery"
        assert line["@timestamp"]
        assert "message" not in line

    @pytest.mark.unit
    def test_plain_stdlib_record_renders(self) -> None:
        record = logging.makeLogRecord(
            {
                "name": "uvicorn.error",
                "levelname": "WARNING",
                "msg": "worker %s stopped",
                "args": ("1",),
            }
        )

        line = json.loads(build_formatter().format(record))

        assert line["event"] == "worker 1 stopped"
        assert line["level"] == "warning"
