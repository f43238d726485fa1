"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from pbgateway.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
    setup_logging,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        """Test basic JSON formatting."""
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1
        assert "extra" not in data

    def test_json_format_with_context(self):
        """Test JSON formatting with context fields."""
        record = make_record("Request rejected")
        record.request_id = "req-123"
        record.client = "203.0.113.7"
        record.outcome = "rate-limited"
        record.duration_ms = 1.5

        data = json.loads(JSONFormatter().format(record))

        assert data["request_id"] == "req-123"
        assert data["client"] == "203.0.113.7"
        assert data["outcome"] == "rate-limited"
        assert data["duration_ms"] == 1.5
        assert "extra" not in data

    def test_unset_context_fields_omitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "request_id" not in data
        assert "outcome" not in data

    def test_json_format_with_extra_fields(self):
        """Test JSON formatting with extra custom fields."""
        record = make_record("Custom event")
        record.reason = "private-network"
        record.remaining = 42

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["reason"] == "private-network"
        assert data["extra"]["remaining"] == 42

    def test_json_format_with_exception(self):
        """Test JSON formatting with exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text

    def test_json_format_unicode(self):
        """Test JSON formatting with unicode characters."""
        output = JSONFormatter().format(make_record("Backend: pb.例子.com 🌍"))

        assert "pb.例子.com 🌍" in output
        assert json.loads(output)["message"] == "Backend: pb.例子.com 🌍"


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        """Test that context filter adds default fields."""
        record = make_record()

        assert ContextFilter().filter(record) is True
        for field in JSONFormatter.CONTEXT_FIELDS:
            assert hasattr(record, field)
            assert getattr(record, field) is None

    def test_preserves_existing_values(self):
        """Test that context filter preserves existing values."""
        record = make_record()
        record.request_id = "existing-request"
        record.outcome = "auth-failed"

        ContextFilter().filter(record)

        assert record.request_id == "existing-request"
        assert record.outcome == "auth-failed"


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        """Test default text format configuration."""
        with patch("pbgateway.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "standard" in config["formatters"]
        assert "structured" in config["formatters"]
        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_structured_format(self):
        """Test structured format configuration."""
        with patch("pbgateway.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "debug"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert "outcome=%(outcome)s" in config["formatters"]["structured"]["format"]

    def test_json_format(self):
        """Test JSON format configuration."""
        with patch("pbgateway.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "JSON"
            mock_settings.log_level = "WARNING"

            config = get_logging_config()

        assert config["formatters"]["json"]["()"] == "pbgateway.app.core.logging.JSONFormatter"
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["pbgateway"]["level"] == "WARNING"

    def test_context_filter_added(self):
        """Test that context filter is added to handlers."""
        config = get_logging_config()

        assert "context" in config["filters"]
        assert "context" in config["handlers"]["console"]["filters"]


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_default_name(self):
        assert get_logger().name == "pbgateway"

    def test_get_logger_custom_name(self):
        assert get_logger("custom.module").name == "custom.module"


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_basic_context(self):
        context = get_log_context(request_id="req-1", client="203.0.113.7", outcome="admitted")

        assert context == {"request_id": "req-1", "client": "203.0.113.7", "outcome": "admitted"}

    def test_context_filters_none(self):
        """Test that None values are filtered out."""
        context = get_log_context(request_id="req-1", client=None, reason=None)

        assert context == {"request_id": "req-1"}

    def test_context_with_extra(self):
        context = get_log_context(outcome="forbidden-target", reason="private-network")

        assert context["outcome"] == "forbidden-target"
        assert context["reason"] == "private-network"


class TestIntegration:
    """Integration tests for logging system."""

    def test_json_logging_output(self, capsys):
        """Test actual JSON logging output."""
        with patch("pbgateway.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("pbgateway.test")

            logger.warning(
                "Request rejected",
                extra=get_log_context(request_id="abc123", client="203.0.113.7", outcome="rate-limited"),
            )

            data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "WARNING"
        assert data["logger"] == "pbgateway.test"
        assert data["message"] == "Request rejected"
        assert data["request_id"] == "abc123"
        assert data["client"] == "203.0.113.7"
        assert data["outcome"] == "rate-limited"
