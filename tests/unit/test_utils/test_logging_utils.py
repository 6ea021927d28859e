"""Tests for logging helpers."""

import logging
import pytest
from pythonjsonlogger import jsonlogger

from lifematrix.utils.logging import (
    correlation_context,
    get_correlation_id,
    get_structured_logger,
    log_timing,
    mask_api_key,
    mask_sensitive_data,
    mask_user_id,
    sanitize_message_text,
    setup_logging,
)


@pytest.mark.unit
def test_mask_sensitive_data_redacts_keys_and_emails():
    """Test API keys and emails never reach the logs."""
    text = "key sk-ant-REDACTED for student@example.com"

    masked = mask_sensitive_data(text)

    assert "sk-ant-api03" not in masked
    assert "student@example.com" not in masked
    assert "[REDACTED_API_KEY]" in masked


@pytest.mark.unit
def test_mask_api_key():
    """Test only the last four characters survive."""
    assert mask_api_key("sk-ant-0123456789wxyz") == "...wxyz"
    assert mask_api_key("short") == "[REDACTED]"
    assert mask_api_key("") == ""


@pytest.mark.unit
def test_mask_user_id_long_ids():
    """Test long user ids are shortened with a hash suffix."""
    masked = mask_user_id("abcdefghijklmnopqrstuvwxyz")

    assert masked.startswith("abcd...")
    assert "mnop" not in masked


@pytest.mark.unit
def test_sanitize_message_text_truncates():
    """Test long free text is cut to the limit."""
    assert sanitize_message_text("a" * 20, max_length=5) == "aaaaa..."
    assert sanitize_message_text("") is None


@pytest.mark.unit
def test_correlation_context_restores_previous():
    """Test nested correlation ids are restored on exit."""
    with correlation_context("op_outer"):
        with correlation_context() as inner:
            assert get_correlation_id() == inner
            assert inner.startswith("op_")
        assert get_correlation_id() == "op_outer"
    assert get_correlation_id() is None


@pytest.mark.unit
def test_structured_logger_adds_fields(caplog):
    """Test keyword fields and correlation id land on the record."""
    logger = get_structured_logger("lifematrix.test")

    with caplog.at_level(logging.INFO, logger="lifematrix.test"):
        with correlation_context("op_123"):
            with log_timing("unit_op", logger=logger, task_count=3):
                pass

    record = caplog.records[-1]
    assert record.operation == "unit_op"
    assert record.task_count == 3
    assert record.correlation_id == "op_123"
    assert record.processing_time_ms >= 0


@pytest.mark.unit
def test_setup_logging_installs_json_handler():
    """Test setup_logging replaces root handlers with one JSON stderr handler."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        package_logger = setup_logging()

        assert package_logger.name == "lifematrix"
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, jsonlogger.JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
