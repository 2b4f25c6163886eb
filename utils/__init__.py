"""Shared utilities for the merge engine."""

from utils.logging import LogContext, configure_logging, get_logger

__all__ = [
    "LogContext",
    "configure_logging",
    "get_logger",
]
