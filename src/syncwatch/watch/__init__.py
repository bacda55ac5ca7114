"""Filesystem change sources."""

from .base import (
    ChangeCallback,
    ChangeEvent,
    ChangeSource,
    ChangeSourceError,
    ChangeType
)
from .watchdog_source import WatchdogChangeSource

__all__ = [
    "ChangeCallback",
    "ChangeEvent",
    "ChangeSource",
    "ChangeSourceError",
    "ChangeType",
    "WatchdogChangeSource"
]
