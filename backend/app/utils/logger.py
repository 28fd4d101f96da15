"""
Structured Logging Configuration Module for NaviStream

Provides JSON-formatted and plain-text log output, request-scoped context
enrichment through a LoggerAdapter, and Uvicorn integration so that the API
server, the ingestion pipeline and the operator scripts all log the same way.

Features:
- JSONFormatter: structured JSON log records for log aggregation
- StandardFormatter: human readable console output for development
- setup_logging: application-wide logging configuration
- add_log_context: enrich every record of one upload with its request id,
  user id, public id and pipeline stage
- ORPHAN_LOGGER_NAME: dedicated logger for remote assets left without a record

Usage:
    from app.utils.logger import add_log_context, setup_logging

    setup_logging(log_level="INFO", json_logs=True)

    logger = logging.getLogger(__name__)
    ctx_logger = add_log_context(logger, request_id="abc123", user_id="user456")
    ctx_logger.info("Processing upload")
"""

import json
import logging
import sys
import traceback

from datetime import UTC, datetime
from typing import Any


# =============================================================================
# Constants
# =============================================================================

LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Libraries whose INFO/DEBUG chatter would drown the pipeline logs
THIRD_PARTY_LOGGERS: list[str] = [
    "uvicorn.access",
    "motor",
    "pymongo",
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
    "httpx",
    "httpcore",
    "multipart",
    "PIL",
    "asyncio",
]

# Orphaned remote assets are reported here so operators can alert on it alone
ORPHAN_LOGGER_NAME: str = "app.orphans"


# =============================================================================
# Custom JSON Encoder
# =============================================================================


class LogJSONEncoder(json.JSONEncoder):
    """JSON encoder that stringifies anything json cannot serialize natively."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return str(obj)


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """
    Logging formatter that renders each record as a single JSON line.

    Context fields added through ContextLoggerAdapter (or ``extra=``) are
    lifted to the top level of the document so that aggregators can index
    ``request_id`` and ``public_id`` directly.

    Example output:
        {"timestamp":"2025-01-15T10:30:45.123456+00:00","level":"INFO",
         "logger":"app.services.upload_service","message":"Video recorded",
         "request_id":"abc123","public_id":"navistream/videos/4f1c..."}
    """

    RESERVED_ATTRS: frozenset[str] = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
        }
    )

    def __init__(self, include_source_location: bool = False) -> None:
        """
        Initialize the JSON formatter.

        Args:
            include_source_location: If True, include filename, lineno and function
        """
        super().__init__()
        self.include_source_location = include_source_location

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="microseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_source_location:
            log_entry["source"] = {
                "filename": record.filename,
                "lineno": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc_value) if exc_value else "",
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in self.RESERVED_ATTRS or key in log_entry:
                continue
            log_entry[key] = value

        return json.dumps(log_entry, cls=LogJSONEncoder, ensure_ascii=False, separators=(",", ":"))


class StandardFormatter(logging.Formatter):
    """
    Human readable formatter for development consoles.

    Context fields are appended as ``key=value`` pairs after the message so
    that a request id is still visible without JSON output.

    Format: [TIMESTAMP] LEVEL logger_name: message key=value ...
    """

    DEFAULT_FORMAT: str = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
    DEFAULT_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    CONTEXT_KEYS: tuple[str, ...] = ("request_id", "user_id", "public_id", "stage")

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt or self.DEFAULT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        context = [
            f"{key}={getattr(record, key)}"
            for key in self.CONTEXT_KEYS
            if getattr(record, key, None) is not None
        ]
        if context:
            formatted = f"{formatted} {' '.join(context)}"
        return formatted


# =============================================================================
# Application Logging Setup
# =============================================================================


def build_formatter(json_logs: bool, level: int = logging.INFO) -> logging.Formatter:
    """Return the formatter matching the configured output mode."""
    if json_logs:
        return JSONFormatter(include_source_location=level <= logging.DEBUG)
    return StandardFormatter()


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    third_party_level: str = "WARNING",
) -> None:
    """
    Configure application-wide logging.

    Should be called once at application startup (the FastAPI lifespan or an
    operator script's ``main``). It replaces any handlers on the root logger,
    routes Uvicorn's own loggers through the same formatter and quiets noisy
    third-party libraries.

    Args:
        log_level: Application log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON lines; if False, output plain text
        third_party_level: Log level for third-party libraries (default WARNING)
    """
    level_str = log_level.upper()
    level = LOG_LEVEL_MAP.get(level_str, logging.INFO)
    formatter = build_formatter(json_logs, level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Uvicorn installs its own handlers; send its records through ours instead
    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
        uvicorn_logger.setLevel(level)

    third_party_log_level = LOG_LEVEL_MAP.get(third_party_level.upper(), logging.WARNING)
    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(third_party_log_level)

    logging.getLogger(__name__).info("Logging configured: level=%s, json=%s", level_str, json_logs)


# =============================================================================
# Context Enrichment
# =============================================================================


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that merges its context into each call's ``extra`` dict
    instead of replacing it, so call sites can still add their own fields.
    """

    def process(self, msg: Any, kwargs: dict[str, Any]) -> tuple[Any, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        for key, value in self.extra.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextLoggerAdapter":
        """Return a new adapter carrying this adapter's context plus ``context``."""
        return ContextLoggerAdapter(self.logger, {**self.extra, **context})


def add_log_context(logger: logging.Logger | logging.LoggerAdapter, **kwargs: Any) -> ContextLoggerAdapter:
    """
    Create a LoggerAdapter that enriches all log messages with context fields.

    Typical fields are ``request_id``, ``user_id``, ``public_id`` and
    ``stage``. Passing an existing ContextLoggerAdapter extends its context.

    Args:
        logger: Base logger (or adapter) to wrap with context
        **kwargs: Context fields to include in all log messages

    Returns:
        ContextLoggerAdapter that includes the specified context in all output

    Example:
        ctx_logger = add_log_context(logger, request_id="abc-123", user_id="u-1")
        ctx_logger.info("Staging upload")
        ctx_logger.error("Remote upload failed", extra={"attempt": 3})
    """
    if isinstance(logger, ContextLoggerAdapter):
        return logger.bind(**kwargs)
    return ContextLoggerAdapter(logger, kwargs)


def get_orphan_logger() -> logging.Logger:
    """Return the logger that records orphaned remote assets."""
    return logging.getLogger(ORPHAN_LOGGER_NAME)


__all__ = [
    "JSONFormatter",
    "StandardFormatter",
    "ContextLoggerAdapter",
    "build_formatter",
    "setup_logging",
    "add_log_context",
    "get_orphan_logger",
    "LOG_LEVEL_MAP",
    "ORPHAN_LOGGER_NAME",
]
