"""
Tests for structured logging configuration.
"""
import json
import logging
from typing import Any, Generator

import pytest
import structlog
from pythonjsonlogger import jsonlogger

from order_reconciler.config import Settings
from order_reconciler.monitoring.logging import setup_logging


@pytest.fixture
def restore_logging() -> Generator[None, Any, None]:
    """Put back the JSON handler and structlog config the app configured at import."""
    root = logging.getLogger()
    json_handlers = [h for h in root.handlers if isinstance(h.formatter, jsonlogger.JsonFormatter)]
    level = root.level
    config = structlog.get_config()

    yield

    for handler in root.handlers[:]:
        if isinstance(handler.formatter, jsonlogger.JsonFormatter):
            root.removeHandler(handler)
    for handler in json_handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.configure(**config)
    structlog.contextvars.clear_contextvars()


def emitted(out: str, event: str) -> dict:
    lines = [json.loads(line) for line in out.splitlines() if line.strip()]
    return next(line for line in lines if line["message"] == event)


class TestSetupLogging:
    """Test suite for setup_logging."""

    @pytest.mark.unit
    def test_events_carry_configured_app_context(self, capsys, restore_logging) -> None:
        setup_logging(Settings(app_name="kiosk-api", app_env="staging"))

        structlog.get_logger("order_reconciler.tests").info("order_created", order_id="PES1")

        event = emitted(capsys.readouterr().out, "order_created")
        assert event["app_name"] == "kiosk-api"
        assert event["app_env"] == "staging"
        assert event["order_id"] == "PES1"
        assert event["level"] == "INFO"
        assert event["logger"] == "order_reconciler.tests"
        assert event["@timestamp"]

    @pytest.mark.unit
    def test_bound_context_and_explicit_fields(self, capsys, restore_logging) -> None:
        setup_logging(Settings(app_name="kiosk-api"))
        structlog.contextvars.bind_contextvars(request_id="req-42")

        structlog.get_logger("order_reconciler.tests").warning(
            "reconcile_conflict", app_name="batch-job"
        )

        event = emitted(capsys.readouterr().out, "reconcile_conflict")
        assert event["request_id"] == "req-42"
        assert event["app_name"] == "batch-job"
        assert event["level"] == "WARNING"

    @pytest.mark.unit
    def test_level_filters_events(self, capsys, restore_logging) -> None:
        setup_logging(Settings(log_level="WARNING"))

        log = structlog.get_logger("order_reconciler.tests")
        log.info("poll_refreshed")
        log.error("provider_unreachable")

        out = capsys.readouterr().out
        assert "poll_refreshed" not in out
        assert emitted(out, "provider_unreachable")["level"] == "ERROR"
