"""Structured logging for the merge engine.

This module provides:
- JSON-formatted log output for production environments
- Merge context via ContextVar (request_id, merge_id)
- get_logger() that configures a default handler on first use
- Human-readable format for development
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
merge_id_var: ContextVar[str | None] = ContextVar("merge_id", default=None)

# LogRecord attributes that are not user-supplied "extra" fields
_STANDARD_ATTRS = frozenset(
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
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_var.get()


def get_merge_id() -> str | None:
    """Get the ID of the merge currently executing, if any."""
    return merge_id_var.get()


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments.

    Output format:
    {
        "timestamp": "2026-01-29T12:34:56.789Z",
        "level": "INFO",
        "logger": "services.merge_coordinator",
        "message": "Merge committed",
        "request_id": "abc-123",
        "merge_id": "f3c1...",
        "extra": {"target_id": 4, "absorbed": ["7", "9"]}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        merge_id = get_merge_id()
        if request_id:
            log_data["request_id"] = request_id
        if merge_id:
            log_data["merge_id"] = merge_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
            log_data["exception_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else None
            )

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable log formatter for development.

    Output format:
    2026-01-29 12:34:56.789 | INFO     | services.merge_coordinator | [merge:f3c1a2b4] Merge committed
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        level = record.levelname.ljust(8)

        merge_id = get_merge_id()
        request_id = get_request_id()
        if merge_id:
            prefix = f"[merge:{merge_id[:8]}] "
        elif request_id:
            prefix = f"[{request_id[:8]}] "
        else:
            prefix = ""

        formatted = f"{timestamp} | {level} | {record.name} | {prefix}{record.getMessage()}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
):
    """Configure the root logger with structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format. If None, auto-detect from the DEBUG env var.
    """
    if json_format is None:
        debug_mode = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
        json_format = not debug_mode

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else HumanReadableFormatter())
    root_logger.addHandler(handler)

    # SQL echo is controlled by the engine, keep the library logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the module, configuring defaults if nothing has yet.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logging.getLogger().handlers:
        configure_logging()

    return logger


class LogContext:
    """Context manager binding request/merge identifiers to log records.

    Usage:
        with LogContext(merge_id=merge_id):
            logger.info("Repointing relationships")
    """

    def __init__(self, request_id: str | None = None, merge_id: str | None = None):
        self.request_id = request_id
        self.merge_id = merge_id
        self._tokens: list[tuple[ContextVar, Any]] = []

    def __enter__(self):
        if self.request_id:
            self._tokens.append((request_id_var, request_id_var.set(self.request_id)))
        if self.merge_id:
            self._tokens.append((merge_id_var, merge_id_var.set(self.merge_id)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
