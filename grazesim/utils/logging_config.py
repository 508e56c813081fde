"""
Logging configuration for the grazing simulation engine
Supports JSON logs in production and human-readable logs in development
Includes request ID support for the HTTP layer
"""

import logging
import sys
import json
import uuid
from typing import Any, Dict, Iterable, Optional, TYPE_CHECKING
from logging.handlers import RotatingFileHandler
from contextvars import ContextVar
import os

if TYPE_CHECKING:
    from grazesim.config import Settings

# Context variable for request ID (thread-safe)
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra=`
_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "request_id",
    }
)

# Libraries that are too chatty at INFO
DEFAULT_QUIET_LOGGERS = ("uvicorn", "fastapi")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add request ID from context or record attribute
        request_id = request_id_context.get()
        if request_id:
            log_data["request_id"] = request_id
        elif hasattr(record, "request_id"):
            log_data["request_id"] = record.request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields (flow, expression, code, ...)
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS:
                log_data[key] = value

        # numpy scalars and dates are not JSON-native
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter with request ID support"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string"""
        request_id = request_id_context.get()
        if not request_id and hasattr(record, "request_id"):
            request_id = record.request_id

        base_format = "%(asctime)s - %(name)s - %(levelname)s"
        if request_id:
            base_format += f" - [request_id={request_id}]"
        base_format += " - %(message)s"

        formatter = logging.Formatter(base_format, datefmt="%Y-%m-%d %H:%M:%S")

        return formatter.format(record)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    quiet_loggers: Iterable[str] = DEFAULT_QUIET_LOGGERS,
) -> None:
    """
    Setup logging configuration

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (for production)
        log_file: Optional log file path
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep
        quiet_loggers: Third-party loggers raised to WARNING
    """
    formatter: logging.Formatter = JSONFormatter() if json_format else HumanReadableFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_settings(settings: "Settings") -> None:
    """Configure logging from application settings"""
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_format_json,
        log_file=settings.log_file,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request ID in context

    Args:
        request_id: Optional request ID. If None, generates a new UUID.

    Returns:
        The request ID (generated or provided)
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_context.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    """Get current request ID from context"""
    return request_id_context.get()


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
