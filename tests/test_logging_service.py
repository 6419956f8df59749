import json
import logging

from metrics_server.web.app.services.logging_service import (
    JSONFormatter,
    clear_request_context,
    get_logger,
    set_request_context,
)


def make_record(**extra):
    record = logging.LogRecord("metrics_engine.test", logging.INFO, __file__, 10, "Stripe data fetched", None, None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_includes_request_context_and_extras():
    set_request_context("req-123", user_id="user-9")
    try:
        line = JSONFormatter().format(make_record(step="Stripe data fetched", active_items=4))
    finally:
        clear_request_context()

    data = json.loads(line)
    assert data["message"] == "Stripe data fetched"
    assert data["level"] == "INFO"
    assert data["request_id"] == "req-123"
    assert data["user_id"] == "user-9"
    assert data["extra"]["active_items"] == 4


def test_log_step_records_structured_fields(caplog):
    logger = get_logger("test")

    with caplog.at_level(logging.INFO, logger="metrics_engine.test"):
        logger.log_step("Admin verified", caller="user-9")

    record = caplog.records[-1]
    assert record.getMessage() == "Admin verified"
    assert record.event_type == "metrics_step"
    assert record.caller == "user-9"
