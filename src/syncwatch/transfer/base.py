"""Transfer provider interface and result types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class ConnectionParams:
    """Parameters for opening a transfer connection."""

    host_name: str
    user_name: str
    host_key_fingerprint: str = ""
    port: int = 22
    reconnect_interval: float = 1.0

    @property
    def accept_any_host_key(self) -> bool:
        """An empty fingerprint trusts whatever key the host presents."""
        return not self.host_key_fingerprint


@dataclass
class OperationOutcome:
    """Result of one operation (upload, chmod, touch, removal) on one file."""

    file_name: str
    error: Optional[str] = None
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class TransferOutcome:
    """Everything that happened to one file during a pass.

    Each part is None when that operation did not apply to the file.
    """

    file_name: str
    destination: str
    upload: Optional[OperationOutcome] = None
    chmod: Optional[OperationOutcome] = None
    touch: Optional[OperationOutcome] = None
    removal: Optional[OperationOutcome] = None

    @property
    def failed(self) -> bool:
        parts = [self.upload, self.chmod, self.touch, self.removal]
        return any(part is not None and not part.succeeded for part in parts)


@dataclass
class TransferFailure:
    """A per-file failure collected during a pass."""

    file_name: str
    operation: str
    error: Exception


@dataclass
class SyncPassResult:
    """Result of one full synchronization pass."""

    outcomes: List[TransferOutcome] = field(default_factory=list)
    failures: List[TransferFailure] = field(default_factory=list)
    duration: Optional[float] = None

    @property
    def success(self) -> bool:
        return not self.failures


class TransferError(Exception):
    """Raised when a transfer operation fails as a whole."""
    pass


class TransferConnectionError(TransferError):
    """Raised when a transfer connection cannot be opened."""
    pass


class TransferProvider(ABC):
    """Performs remote synchronization for a session.

    A connection returned by ``open`` belongs to exactly one session and is
    never used by two passes at once.
    """

    @abstractmethod
    async def open(self, params: ConnectionParams) -> Any:
        """Open a connection.

        Raises:
            TransferConnectionError: If the connection cannot be established
        """
        pass

    @abstractmethod
    async def ensure_remote_dir(self, connection: Any, remote_path: str) -> None:
        """Create ``remote_path`` and its parents if necessary."""
        pass

    @abstractmethod
    async def synchronize(
        self,
        connection: Any,
        local_path: str,
        remote_path: str,
        file_mask: str = ""
    ) -> SyncPassResult:
        """Mirror ``local_path`` onto ``remote_path``.

        Per-file problems are returned in the result rather than raised.
        """
        pass

    @abstractmethod
    async def close(self, connection: Any) -> None:
        """Close a connection. Must tolerate an already closed connection."""
        pass
