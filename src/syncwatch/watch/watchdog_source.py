"""Change source backed by the watchdog observer."""

import os
import threading
from typing import Optional

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from .base import ChangeCallback, ChangeEvent, ChangeSource, ChangeSourceError, ChangeType
from ..utils.logging import LoggerMixin


class _ForwardingHandler(FileSystemEventHandler):
    """Maps watchdog events onto ChangeEvent and forwards them."""

    def __init__(self, callback: ChangeCallback):
        super().__init__()
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(ChangeType.CREATED, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(ChangeType.MODIFIED, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(ChangeType.DELETED, event)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        self._forward(ChangeType.MOVED, event, dest_path=os.fsdecode(event.dest_path))

    def _forward(self, change_type: ChangeType, event: FileSystemEvent, dest_path: Optional[str] = None) -> None:
        self._callback(ChangeEvent(
            change_type=change_type,
            path=os.fsdecode(event.src_path),
            dest_path=dest_path,
            is_directory=event.is_directory,
        ))


class WatchdogChangeSource(LoggerMixin, ChangeSource):
    """Watches one directory tree with a dedicated watchdog observer."""

    def __init__(self, join_timeout: float = 10.0):
        self.join_timeout = join_timeout
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()

    @property
    def is_subscribed(self) -> bool:
        return self._observer is not None

    def subscribe(self, path: str, callback: ChangeCallback, recursive: bool = True) -> None:
        if not os.path.isdir(path):
            raise ChangeSourceError(f"Cannot watch `{path}`: not a directory")

        with self._lock:
            if self._observer is not None:
                raise ChangeSourceError("Change source is already subscribed")

            observer = Observer()
            try:
                observer.schedule(_ForwardingHandler(callback), path, recursive=recursive)
                observer.start()
            except OSError as e:
                raise ChangeSourceError(f"Cannot watch `{path}`: {e}") from e

            self._observer = observer

        self.logger.debug("Watching directory", path=path, recursive=recursive)

    def unsubscribe(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None

        if observer is None:
            return

        observer.stop()
        observer.join(self.join_timeout)
        self.logger.debug("Stopped watching directory")
