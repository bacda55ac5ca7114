"""Logging configuration and utilities.

structlog renders every event to a single string and hands it to stdlib
logging, which fans it out to the console, an optional process log file and
any per-connection log files attached to session loggers.
"""

import functools
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import List, Optional

import structlog
import colorlog
from structlog.typing import Processor


LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Root handlers installed by setup_logging, replaced on the next call
_root_handlers: List[logging.Handler] = []


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def _build_processors(format_type: str) -> List[Processor]:
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Line colour comes from colorlog, keyed on the stdlib level
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure structlog and the root handlers.

    Arguments override the ``logging`` section of the process settings.
    Calling it again replaces the handlers from the previous call.
    """
    from ..config.settings import get_settings

    logging_settings = get_settings().logging
    level = log_level or logging_settings.level
    format_type = log_format or logging_settings.format
    file_path = log_file or logging_settings.file_path

    structlog.configure(
        processors=_build_processors(format_type),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(_level(level))
    while _root_handlers:
        handler = _root_handlers.pop()
        root.removeHandler(handler)
        handler.close()

    handlers = [console_handler(level)]
    if file_path:
        handlers.append(rotating_file_handler(file_path, level))
    for handler in handlers:
        root.addHandler(handler)
        _root_handlers.append(handler)


def console_handler(level: str) -> logging.Handler:
    """Colored stdout handler."""
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(_level(level))
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(message)s",
        reset=True,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    return handler


def rotating_file_handler(file_path: str, level: str) -> logging.Handler:
    """Size-rotated log file; parent directories are created."""
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        file_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8"
    )
    handler.setLevel(_level(level))
    # Events arrive already rendered by structlog
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def attach_logger_file(logger_name: str, file_path: str, level: str = "DEBUG") -> logging.Handler:
    """Send one named logger to its own file as well as the root handlers.

    Returns:
        The handler, to be passed to ``detach_logger_file`` later
    """
    handler = rotating_file_handler(file_path, level)
    logging.getLogger(logger_name).addHandler(handler)
    return handler


def detach_logger_file(logger_name: str, handler: logging.Handler) -> None:
    logging.getLogger(logger_name).removeHandler(handler)
    handler.close()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LoggerMixin:
    """Mixin class to add logging capabilities to any class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)


def log_async_execution_time(func):
    """Log how long a coroutine took, and whether it raised."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__).bind(function=func.__qualname__)
        started = time.monotonic()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Coroutine failed",
                execution_time=f"{time.monotonic() - started:.4f}s",
                error=str(e)
            )
            raise

        logger.debug("Coroutine finished", execution_time=f"{time.monotonic() - started:.4f}s")
        return result

    return wrapper
