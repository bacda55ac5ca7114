"""Change source interface and event types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class ChangeType(str, Enum):
    """Kinds of filesystem change a source reports."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True)
class ChangeEvent:
    """One raw change notification."""

    change_type: ChangeType
    path: str
    dest_path: Optional[str] = None
    is_directory: bool = False


ChangeCallback = Callable[[ChangeEvent], None]


class ChangeSourceError(Exception):
    """Raised when a change source cannot watch a path."""
    pass


class ChangeSource(ABC):
    """Delivers filesystem change notifications for a directory tree.

    Callbacks may run on a thread owned by the source. ``unsubscribe``
    must not return until no further callback can run.
    """

    @abstractmethod
    def subscribe(self, path: str, callback: ChangeCallback, recursive: bool = True) -> None:
        """Start delivering events under ``path`` to ``callback``.

        Raises:
            ChangeSourceError: If the path cannot be watched
        """
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivering events. Idempotent."""
        pass

    @property
    @abstractmethod
    def is_subscribed(self) -> bool:
        pass
