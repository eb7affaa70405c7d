"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from cellgate.core.logging import (
    ContextFilter,
    JSONFormatter,
    MaxLevelFilter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None) -> logging.LogRecord:
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
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        record = make_record("Store round trip failed")
        record.rate_key = "rate:project:123"
        record.duration_ms = 1.5

        data = json.loads(JSONFormatter().format(record))
        assert data["rate_key"] == "rate:project:123"
        assert data["duration_ms"] == 1.5

    def test_filter_placeholders_not_emitted(self):
        record = make_record()
        ContextFilter().filter(record)
        data = json.loads(JSONFormatter().format(record))
        assert "rate_key" not in data
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        record = make_record()
        record.bucket_limit = 10
        data = json.loads(JSONFormatter().format(record))
        assert data["extra"]["bucket_limit"] == 10

    def test_json_format_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())
        data = json.loads(JSONFormatter().format(record))
        assert any("ValueError" in line for line in data["exception"])


class TestContextFilter:
    def test_adds_defaults(self):
        record = make_record()
        assert ContextFilter().filter(record) is True
        assert record.rate_key == "-"
        assert record.duration_ms == "-"
        assert not hasattr(record, "request_id")

    def test_keeps_existing_values(self):
        record = make_record()
        record.rate_key = "rate:k"
        ContextFilter().filter(record)
        assert record.rate_key == "rate:k"


class TestLoggingConfig:
    def test_json_format_selected(self):
        with patch("cellgate.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "debug"
            config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["cellgate"]["level"] == "DEBUG"

    def test_text_format_default(self):
        with patch("cellgate.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"
            config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_structured_format_has_only_rate_key(self):
        with patch("cellgate.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "INFO"
            config = get_logging_config()
        fmt = config["formatters"]["structured"]["format"]
        assert "rate_key=%(rate_key)s" in fmt
        assert "request_id" not in fmt

    def test_errors_only_reach_stderr(self):
        with patch("cellgate.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"
            config = get_logging_config()
        assert "below_error" in config["handlers"]["console"]["filters"]
        assert config["filters"]["below_error"]["level"] == "ERROR"
        assert config["handlers"]["error_console"]["level"] == "ERROR"


class TestMaxLevelFilter:
    def test_caps_below_level(self):
        below_error = MaxLevelFilter("ERROR")
        assert below_error.filter(make_record(level=logging.WARNING)) is True
        assert below_error.filter(make_record(level=logging.ERROR)) is False
        assert below_error.filter(make_record(level=logging.CRITICAL)) is False

    def test_accepts_numeric_level(self):
        assert MaxLevelFilter(logging.WARNING).filter(make_record(level=logging.INFO)) is True
        assert MaxLevelFilter(logging.WARNING).filter(make_record(level=logging.WARNING)) is False


def test_get_log_context_drops_none():
    assert get_log_context(rate_key="rate:k", duration_ms=None, path="/x") == {
        "rate_key": "rate:k",
        "path": "/x",
    }


def test_get_logger_name():
    assert get_logger("cellgate.test").name == "cellgate.test"
