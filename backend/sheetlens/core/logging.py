"""
Logging configuration.

JSON lines for production, readable text for development, selected with the
LOG_FORMAT environment variable. Every record carries the correlation ID of
the request that produced it ("system" outside of a request).
"""
import os
import sys
import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.config import dictConfig
from typing import Any, Dict, Optional

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="system")

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'thread', 'threadName',
    'exc_info', 'exc_text', 'message', 'correlation_id', 'taskName',
}


class CorrelationIdFilter(logging.Filter):
    """Ensure correlation_id is present in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, message, location, correlation ID and extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": getattr(record, "correlation_id", correlation_id_var.get()),
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Readable text formatter for development."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = correlation_id_var.get()
        return super().format(record)


def build_logging_config(log_level: str = "INFO", log_format: str = "text") -> Dict[str, Any]:
    formatter = "json" if log_format.lower() == "json" else "text"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "correlation_id": {"()": CorrelationIdFilter},
        },
        "formatters": {
            "text": {"()": TextFormatter},
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "filters": ["correlation_id"],
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": log_level.upper(),
            "handlers": ["console"],
        },
        "loggers": {
            # Reduce noise from third-party libraries
            "uvicorn.access": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
    }


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure application logging.

    Args:
        log_level: Root level; defaults to LOG_LEVEL or INFO
        log_format: 'json' or 'text'; defaults to LOG_FORMAT or text
    """
    log_level = log_level or os.getenv('LOG_LEVEL', 'INFO')
    log_format = log_format or os.getenv('LOG_FORMAT', 'text')
    dictConfig(build_logging_config(log_level, log_format))

    if log_format.lower() == 'json':
        logging.getLogger(__name__).info("Structured JSON logging enabled")
