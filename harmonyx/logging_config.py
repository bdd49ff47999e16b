# SPDX-License-Identifier: Apache-2.0
"""
Logging configuration for harmonyx.

This module provides centralized logging configuration with support for:
- Standard logging with configurable levels, including TRACE
- Structured JSON logging (optional)
- Decode-session context tracking
- File logging with daily rotation
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

# Below DEBUG; raw model text is only ever logged at this level
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Context variable for decode-session tracking
_session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

_STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_SESSION_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(session_id)s] - %(message)s"


class SessionContextFilter(logging.Filter):
    """
    Add session_id to log records.

    Every record logged while a decode session is active carries its ID, so
    interleaved streams can be told apart.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add session_id attribute to log record unless it already has one."""
        if getattr(record, "session_id", None) is None:
            record.session_id = _session_id.get() or "-"
        return True


class ColoredFormatter(logging.Formatter):
    """
    Colored log formatter for terminal output.

    Uses ANSI color codes to highlight different log levels.
    """

    COLORS = {
        TRACE: "\033[90m",             # Gray
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with colors."""
        color = self.COLORS.get(record.levelno, "")
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    EXTRA_FIELDS = ("endpoint", "model", "status_code", "frames", "events")

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        session_id = getattr(record, "session_id", None)
        if session_id and session_id != "-":
            log_data["session_id"] = session_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data)


def resolve_level(level: str) -> int:
    """Map a level name (including "trace") to its numeric value."""
    level_name = level.upper()
    if level_name == "TRACE":
        return TRACE
    return getattr(logging, level_name, logging.INFO)


def get_session_id() -> Optional[str]:
    """Get the current decode-session ID from context."""
    return _session_id.get()


def set_session_id(session_id: Optional[str]) -> None:
    """Set the current decode-session ID in context."""
    _session_id.set(session_id)


def new_session_id() -> str:
    """Generate a short decode-session ID."""
    return f"hx-{uuid.uuid4().hex[:8]}"


def configure_logging(
    level: str = "INFO",
    format_style: str = "standard",
    include_session_id: bool = True,
    colored: bool = True,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_style: "standard" for plain text, "json" for structured JSON.
        include_session_id: Whether to include session_id in log format.
        colored: Whether to use colored output (only for standard format).
    """
    log_level = resolve_level(level)
    format_str = _SESSION_FORMAT if include_session_id else _STANDARD_FORMAT

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    if format_style == "json":
        formatter = JsonFormatter(format_str)
    elif colored and sys.stderr.isatty():
        formatter = ColoredFormatter(format_str)
    else:
        formatter = logging.Formatter(format_str)

    handler.setFormatter(formatter)

    if include_session_id:
        handler.addFilter(SessionContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logging.getLogger("harmonyx").setLevel(log_level)

    # Suppress noisy third-party loggers unless trace level
    third_party_level = log_level if log_level <= TRACE else logging.INFO
    logging.getLogger("httpx").setLevel(third_party_level)
    logging.getLogger("httpcore").setLevel(third_party_level)


class SessionLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with a fixed session ID.

    Unlike SessionLogContext it leaves the context variable alone, so it is
    safe inside async generators whose sessions interleave in one task. With
    session_id None, records fall back to the context ID.
    """

    def __init__(self, logger: logging.Logger, session_id: Optional[str] = None):
        super().__init__(logger, {"session_id": session_id})

    @property
    def session_id(self) -> Optional[str]:
        return self.extra["session_id"]

    def process(self, msg, kwargs):
        if self.session_id is not None:
            extra = dict(kwargs.get("extra") or {})
            extra.setdefault("session_id", self.session_id)
            kwargs["extra"] = extra
        return msg, kwargs


class SessionLogContext:
    """
    Context manager for session-scoped logging.

    Sets the ID in the current context for the duration of a synchronous
    block. Async generators should use SessionLoggerAdapter instead.

    Usage:
        with SessionLogContext() as ctx:
            logger.info(f"Decoding stream {ctx.session_id}")
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or new_session_id()
        self.previous_id: Optional[str] = None

    def __enter__(self) -> "SessionLogContext":
        self.previous_id = _session_id.get()
        _session_id.set(self.session_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _session_id.set(self.previous_id)


def configure_file_logging(
    log_dir: Path,
    level: str = "INFO",
    include_session_id: bool = True,
    retention_days: int = 7,
) -> Path:
    """
    Configure file logging with daily rotation.

    Adds a file handler to the root logger that writes to
    {log_dir}/harmonyx.log, rotated at midnight. Old log files are deleted
    after retention_days.

    Args:
        log_dir: Directory to store log files.
        level: Log level name.
        include_session_id: Whether to include session_id in log format.
        retention_days: Number of days to retain old logs.

    Returns:
        Path of the active log file.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_level = resolve_level(level)
    format_str = _SESSION_FORMAT if include_session_id else _STANDARD_FORMAT

    # Rotated files: harmonyx.log.YYYY-MM-DD
    log_file = log_dir / "harmonyx.log"

    file_handler = TimedRotatingFileHandler(
        filename=log_file,
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
    )
    file_handler.suffix = "%Y-%m-%d"
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(format_str))

    if include_session_id:
        file_handler.addFilter(SessionContextFilter())

    logging.getLogger().addHandler(file_handler)
    return log_file
