"""Logging configuration for the media workflow engine.

Runs execute on worker threads, so the run context (run id, workflow id)
is kept per thread and stamped onto every record by ``RunContextFilter``.
"""

import logging
import sys
import json
import threading
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
from pathlib import Path


DEFAULT_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers whose chatter is only useful at DEBUG
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; run context and ``extra_fields`` are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }

        entry.update(getattr(record, "run_context", {}))
        entry.update(getattr(record, "extra_fields", {}))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str)


class RunContextFilter(logging.Filter):
    """Attach the calling thread's run context to log records."""

    def __init__(self):
        super().__init__()
        self._local = threading.local()

    @property
    def context(self) -> Dict[str, Any]:
        if not hasattr(self._local, "context"):
            self._local.context = {}
        return self._local.context

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_context = dict(self.context)
        # Plain-text formats may reference %(run_id)s
        record.run_id = record.run_context.get("run_id", "-")
        return True


_context_filter = RunContextFilter()


def _build_formatter(structured: bool, log_format: Optional[str]) -> logging.Formatter:
    if structured:
        return StructuredFormatter()
    return logging.Formatter(fmt=log_format or DEFAULT_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure root logging for the server.

    Args:
        level: Logging level name
        log_file: Optional path of a rotating log file
        log_format: Text format; ignored when ``structured`` is set
        structured: Emit JSON lines instead of text
        max_size: Bytes before the log file rotates
        backup_count: Rotated files to keep

    Returns:
        The ``mediaflow`` logger
    """
    formatter = _build_formatter(structured, log_format)
    numeric_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
        root_logger.addHandler(handler)

    if numeric_level > logging.DEBUG:
        for name, quiet_level in _QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(quiet_level)

    return logging.getLogger("mediaflow")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs):
    """Set run context fields for log records emitted by this thread."""
    _context_filter.context.update(kwargs)


def clear_logging_context():
    _context_filter.context.clear()


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional structured fields."""
    logger.log(level, message, extra={"extra_fields": context})


class RetryLogger:
    """Reports retries of a single provider or download operation."""

    def __init__(self, operation: str):
        self.logger = get_logger(f"mediaflow.retry.{operation}")
        self.operation = operation

    def retrying(self, error: Exception, attempt: int, max_attempts: int, delay: float):
        log_with_context(
            self.logger, logging.WARNING,
            f"{self.operation} failed (attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s: {error}",
            operation=self.operation,
            error_type=type(error).__name__,
            attempt=attempt,
            delay=round(delay, 2),
        )

    def recovered(self, attempts: int):
        log_with_context(
            self.logger, logging.INFO,
            f"{self.operation} succeeded after {attempts} attempts",
            operation=self.operation,
            attempts=attempts,
        )

    def gave_up(self, error: Exception, attempts: int):
        log_with_context(
            self.logger, logging.ERROR,
            f"{self.operation} failed after {attempts} attempts: {error}",
            operation=self.operation,
            error_type=type(error).__name__,
            attempts=attempts,
        )
