"""Transfer providers for mirroring local trees to remote hosts."""

from .base import (
    ConnectionParams,
    OperationOutcome,
    SyncPassResult,
    TransferConnectionError,
    TransferError,
    TransferFailure,
    TransferOutcome,
    TransferProvider
)
from .mask import FileMask
from .sftp import SftpConnection, SftpTransferProvider, fingerprint_matches

__all__ = [
    # Interface and results
    "ConnectionParams",
    "OperationOutcome",
    "SyncPassResult",
    "TransferConnectionError",
    "TransferError",
    "TransferFailure",
    "TransferOutcome",
    "TransferProvider",

    "FileMask",

    # SFTP implementation
    "SftpConnection",
    "SftpTransferProvider",
    "fingerprint_matches"
]
