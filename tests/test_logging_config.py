"""Tests for logging configuration and formatters."""

import json
import sys
import logging
from datetime import date

import pytest

from duedigest.logging import ComponentLoggerAdapter, get_logger
from duedigest.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from duedigest.logging.context import log_context


@pytest.fixture
def logger():
    """Create a test logger with handler for capturing output."""
    test_logger = logging.getLogger("test_logger")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()
    yield test_logger
    test_logger.handlers.clear()


def make_record(logger, message="Firing started", extra=None):
    return logger.makeRecord("duedigest.executor", logging.INFO, "service.py", 1, message, (), None, extra=extra)


def test_json_formatter_basic(logger):
    """JSONFormatter produces one JSON object with the mandatory fields."""
    log_obj = json.loads(JSONFormatter().format(make_record(logger)))

    assert log_obj["level"] == "INFO"
    assert log_obj["logger"] == "duedigest.executor"
    assert log_obj["message"] == "Firing started"
    assert log_obj["timestamp"].endswith("Z")
    assert len(log_obj["timestamp"]) == 24


def test_json_formatter_with_extra_fields(logger):
    record = make_record(
        logger,
        extra={"event": "firing.started", "item_count": 3, "reference_date": date(2026, 2, 18), "errors": ["x"]},
    )

    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "firing.started"
    assert log_obj["item_count"] == 3
    assert log_obj["reference_date"] == "2026-02-18"
    assert log_obj["errors"] == ["x"]
    assert "name" not in log_obj
    assert "msg" not in log_obj


def test_json_formatter_includes_exception(logger):
    try:
        raise ValueError("bad body")
    except ValueError:
        record = logger.makeRecord(
            "duedigest", logging.ERROR, "f.py", 1, "Formatting failed", (), sys.exc_info()
        )

    log_obj = json.loads(JSONFormatter().format(record))

    assert "ValueError: bad body" in log_obj["exc_info"]


def test_contextual_filter_adds_labels_and_context(logger):
    record = make_record(logger, extra={"owner_id": "explicit"})

    with log_context(firing_id="f1", owner_id="from-context"):
        ContextualFilter(environment="test").filter(record)

    assert record.service == "duedigest"
    assert record.environment == "test"
    assert record.firing_id == "f1"
    assert record.owner_id == "explicit"


def test_key_value_formatter(logger):
    formatter = KeyValueFormatter("%(levelname)s %(message)s")
    record = make_record(logger, extra={"event": "delivery.send.failed", "permanent": False, "error": "HTTP 503 x"})
    record.service = "duedigest"

    output = formatter.format(record)

    assert output.startswith("INFO Firing started ")
    assert "event=delivery.send.failed" in output
    assert "permanent=false" in output
    assert 'error="HTTP 503 x"' in output
    assert "service=" not in output


def test_component_logger_adapter_stamps_component(caplog):
    adapter = get_logger("duedigest.test", component="scheduler")
    assert isinstance(adapter, ComponentLoggerAdapter)

    with caplog.at_level(logging.INFO, logger="duedigest.test"):
        adapter.info("Scheduler started", extra={"event": "scheduler.started"})

    record = caplog.records[-1]
    assert record.component == "scheduler"
    assert record.event == "scheduler.started"


def test_get_logger_without_component():
    assert isinstance(get_logger("duedigest.plain"), logging.Logger)


def test_configure_logging_invalid_level():
    with pytest.raises(ValueError, match="Invalid log level"):
        configure_logging(level="INVALID")


def test_configure_logging_invalid_format():
    with pytest.raises(ValueError, match="Invalid log format"):
        configure_logging(format_type="invalid")


@pytest.mark.parametrize("format_type,formatter_class", [("json", JSONFormatter), ("key-value", KeyValueFormatter)])
def test_configure_logging_installs_single_handler(format_type, formatter_class):
    configure_logging(level="INFO", format_type=format_type, environment="test")

    root_logger = logging.getLogger()
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, formatter_class)
    assert logging.getLogger("apscheduler").level == logging.WARNING
