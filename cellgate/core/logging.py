"""Structured logging configuration for the limiter.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional, Union

from cellgate.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.
    """

    # Contextual fields set by the limiter and the middleware
    CONTEXT_FIELDS = [
        "rate_key",      # Rate-limited identifier (store key)
        "duration_ms",   # Store round trip duration in milliseconds
        "path",          # Request path
        "method",        # HTTP method
    ]

    RECORD_ATTRIBUTES = frozenset({
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "taskName",
    })

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {}

        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "-":
                log_data[field] = value

        # Anything passed through extra= that is not a LogRecord attribute
        for key, value in record.__dict__.items():
            if key not in self.RECORD_ATTRIBUTES and key not in self.CONTEXT_FIELDS:
                log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Sets each of JSONFormatter.CONTEXT_FIELDS to "-" when the record does
    not carry it, so %-style formats never fail on a missing attribute.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for field in JSONFormatter.CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


class MaxLevelFilter(logging.Filter):
    """Pass only records strictly below `level`.

    Keeps the stdout handler from repeating what the stderr handler prints.
    """

    def __init__(self, level: Union[int, str]):
        super().__init__()
        self.max_level = level if isinstance(level, int) else logging.getLevelName(level.upper())

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - rate_key=%(rate_key)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "cellgate.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context", "below_error"],
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "level": "ERROR",
            "formatter": default_formatter,
            "stream": sys.stderr,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "cellgate.core.logging.ContextFilter",
            },
            "below_error": {
                "()": "cellgate.core.logging.MaxLevelFilter",
                "level": "ERROR",
            },
        },
        "handlers": handlers,
        "loggers": {
            "cellgate": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console", "error_console"],
        },
    }


def setup_logging() -> None:
    """Configure logging for the limiter."""
    config = get_logging_config()
    logging.config.dictConfig(config)

    # Reduce noise from third-party libraries
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "cellgate") -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: Logger name, defaults to "cellgate"

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def get_log_context(rate_key: Optional[str] = None, **extra) -> Dict[str, Any]:
    """Create a log context dictionary for use with extra parameter.

    Args:
        rate_key: Rate-limited identifier
        **extra: Additional fields such as path, method or duration_ms

    Returns:
        Dictionary suitable for passing as extra= parameter to logging calls

    Example:
        >>> logger.warning(
        ...     "Store round trip failed",
        ...     extra=get_log_context(rate_key="rate:project:123")
        ... )
    """
    context = {"rate_key": rate_key}
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
