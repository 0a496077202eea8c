"""Tests for council structured logging."""
import logging
import time

import structlog
from structlog.testing import capture_logs


def test_configure_logging_sets_root_level():
    """configure_logging() should accept level names and apply them."""
    from council_engine.logging_config import configure_logging
    configure_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING
    configure_logging(logging.INFO)
    assert logging.getLogger().level == logging.INFO


def test_configure_logging_debug_console():
    """configure_logging(debug=True) should not crash."""
    from council_engine.logging_config import configure_logging
    configure_logging(debug=True)
    structlog.get_logger().info("council_command", command="ping", success=True)
    configure_logging()


def test_resolve_level():
    from council_engine.logging_config import resolve_level
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.ERROR) == logging.ERROR
    assert resolve_level("not-a-level") == logging.INFO


def test_correlation_id_var():
    """correlation_id_var should store and retrieve values."""
    from council_engine.logging_config import correlation_id_var
    token = correlation_id_var.set("test-123")
    assert correlation_id_var.get() == "test-123"
    correlation_id_var.reset(token)


def test_new_correlation_id_length():
    """new_correlation_id() should return an 8-character string."""
    from council_engine.logging_config import new_correlation_id
    cid = new_correlation_id()
    assert isinstance(cid, str)
    assert len(cid) == 8


def test_add_correlation_id_processor():
    from council_engine.logging_config import add_correlation_id, correlation_id_var
    token = correlation_id_var.set("abcd1234")
    try:
        event = add_correlation_id(None, "info", {"event": "council_command"})
    finally:
        correlation_id_var.reset(token)
    assert event["correlation_id"] == "abcd1234"
    assert "correlation_id" not in add_correlation_id(None, "info", {"event": "x"})


def test_bind_connection_sets_correlation_id():
    from council_engine.logging_config import bind_connection, correlation_id_var, unbind_connection
    token = correlation_id_var.set("")
    try:
        bind_connection("conn-42")
        assert correlation_id_var.get() == "conn-42"
        assert structlog.contextvars.get_contextvars()["connection_id"] == "conn-42"
        unbind_connection()
        assert "connection_id" not in structlog.contextvars.get_contextvars()
    finally:
        correlation_id_var.reset(token)


def test_log_command_audit_record():
    from council_engine.logging_config import AUDIT_EVENT, log_command
    with capture_logs() as records:
        log_command("start", "council-1", True, time.monotonic())
    assert len(records) == 1
    record = records[0]
    assert record["event"] == AUDIT_EVENT
    assert record["command"] == "start"
    assert record["session_id"] == "council-1"
    assert record["success"] is True
    assert record["latency_ms"] >= 0
