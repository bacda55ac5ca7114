"""Shared utilities: logging and error reporting."""

from .logging import get_logger, setup_logging, LoggerMixin
from .reporting import ErrorReporter, init_error_tracking

__all__ = [
    "get_logger",
    "setup_logging",
    "LoggerMixin",
    "ErrorReporter",
    "init_error_tracking"
]
