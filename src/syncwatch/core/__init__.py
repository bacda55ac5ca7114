"""Session orchestration: debouncing, session lifecycle and the manager."""

from .debounce import DebounceEngine
from .reporting import OutcomeReporter, describe_outcome
from .session import SessionStartError, SessionState, SyncSession
from .manager import SyncManager

__all__ = [
    "DebounceEngine",
    "OutcomeReporter",
    "describe_outcome",
    "SessionStartError",
    "SessionState",
    "SyncSession",
    "SyncManager"
]
