"""SFTP transfer provider built on paramiko."""

import asyncio
import base64
import hashlib
import os
import posixpath
import stat
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import paramiko

from .base import (
    ConnectionParams,
    OperationOutcome,
    SyncPassResult,
    TransferConnectionError,
    TransferError,
    TransferFailure,
    TransferOutcome,
    TransferProvider,
)
from .mask import FileMask
from ..utils.logging import get_logger


def key_fingerprints(key: paramiko.PKey) -> Set[str]:
    """Fingerprints of ``key`` in the forms users paste into settings."""
    blob = key.asbytes()
    sha256 = base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii").rstrip("=")
    md5 = hashlib.md5(blob).hexdigest()
    md5_colons = ":".join(md5[i:i + 2] for i in range(0, len(md5), 2))
    return {sha256, md5, md5_colons}


def fingerprint_matches(expected: str, key: paramiko.PKey) -> bool:
    """Compare a configured fingerprint against a host key.

    Accepts ``ssh-ed25519 256 <base64 sha256>``, a bare or ``SHA256:``
    prefixed base64 digest, and MD5 hex with or without colons.
    """
    token = expected.strip().split()[-1]
    if token.upper().startswith("SHA256:"):
        token = token[len("SHA256:"):]
    if token.upper().startswith("MD5:"):
        token = token[len("MD5:"):]
    token = token.rstrip("=")
    known = key_fingerprints(key)
    return token in known or token.lower() in known


class FingerprintPolicy(paramiko.MissingHostKeyPolicy):
    """Accept a host only if its key matches the configured fingerprint."""

    def __init__(self, expected: str):
        self.expected = expected

    def missing_host_key(self, client, hostname, key):
        if not fingerprint_matches(self.expected, key):
            raise paramiko.SSHException(
                f"Host key for {hostname} does not match the configured fingerprint"
            )
        client.get_host_keys().add(hostname, key.get_name(), key)


@dataclass
class SftpConnection:
    """Connection handle owned by one session."""

    params: ConnectionParams
    client: Any
    sftp: Any

    @property
    def is_active(self) -> bool:
        transport = self.client.get_transport() if self.client else None
        return bool(transport and transport.is_active())


class SftpTransferProvider(TransferProvider):
    """Mirrors a local tree onto an SFTP server.

    Files are compared by modification time and size. New and changed files
    are uploaded, then their permissions and timestamps are set. Remote files
    that no longer exist locally are removed. Paths excluded by the file mask
    are left untouched on both sides.
    """

    def __init__(
        self,
        connect_timeout: float = 20.0,
        file_permissions: Optional[int] = 0o777,
        remove_files: bool = True,
        preserve_timestamps: bool = True,
        keepalive_seconds: int = 30
    ):
        self.connect_timeout = connect_timeout
        self.file_permissions = file_permissions
        self.remove_files = remove_files
        self.preserve_timestamps = preserve_timestamps
        self.keepalive_seconds = keepalive_seconds
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_settings(cls, transfer_settings) -> "SftpTransferProvider":
        return cls(
            connect_timeout=transfer_settings.connect_timeout_seconds,
            file_permissions=transfer_settings.file_permissions,
            remove_files=transfer_settings.remove_files,
            preserve_timestamps=transfer_settings.preserve_timestamps,
        )

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def open(self, params: ConnectionParams) -> SftpConnection:
        return await self._run(self._connect, params)

    async def ensure_remote_dir(self, connection: SftpConnection, remote_path: str) -> None:
        try:
            await self._run(self._makedirs, connection.sftp, remote_path)
        except (OSError, paramiko.SSHException) as e:
            raise TransferError(f"Cannot create remote path `{remote_path}`: {e}") from e

    async def synchronize(
        self,
        connection: SftpConnection,
        local_path: str,
        remote_path: str,
        file_mask: str = ""
    ) -> SyncPassResult:
        return await self._run(self._synchronize, connection, local_path, remote_path, file_mask)

    async def close(self, connection: SftpConnection) -> None:
        await self._run(self._close_quietly, connection)

    # -- blocking helpers, run on executor threads --------------------------

    def _connect(self, params: ConnectionParams) -> SftpConnection:
        self.logger.info(
            "Opening SFTP connection",
            host=params.host_name,
            user=params.user_name,
            port=params.port
        )

        client = paramiko.SSHClient()
        if params.accept_any_host_key:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.set_missing_host_key_policy(FingerprintPolicy(params.host_key_fingerprint))

        try:
            client.connect(
                hostname=params.host_name,
                port=params.port,
                username=params.user_name,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
            client.get_transport().set_keepalive(self.keepalive_seconds)
            sftp = client.open_sftp()
        except (OSError, paramiko.SSHException) as e:
            client.close()
            raise TransferConnectionError(
                f"Cannot connect to {params.user_name}@{params.host_name}:{params.port}: {e}"
            ) from e

        return SftpConnection(params=params, client=client, sftp=sftp)

    def _close_quietly(self, connection: SftpConnection) -> None:
        for resource in (connection.sftp, connection.client):
            if resource is None:
                continue
            try:
                resource.close()
            except (OSError, paramiko.SSHException) as e:
                self.logger.debug("Ignoring error while closing connection", error=str(e))

    def _ensure_connected(self, connection: SftpConnection) -> None:
        if connection.is_active:
            return

        self.logger.warning(
            "SFTP connection lost, reconnecting",
            host=connection.params.host_name,
            wait_seconds=connection.params.reconnect_interval
        )
        self._close_quietly(connection)
        time.sleep(connection.params.reconnect_interval)

        try:
            fresh = self._connect(connection.params)
        except TransferConnectionError as e:
            raise TransferError(f"Reconnect failed: {e}") from e
        connection.client = fresh.client
        connection.sftp = fresh.sftp

    def _makedirs(self, sftp, remote_path: str) -> None:
        current = "/" if remote_path.startswith("/") else ""
        for part in [p for p in remote_path.split("/") if p]:
            current = posixpath.join(current, part) if current else part
            try:
                sftp.stat(current)
            except FileNotFoundError:
                sftp.mkdir(current)

    def _walk_local(
        self,
        local_path: str,
        mask: FileMask,
        errors: List[OSError]
    ) -> Tuple[Dict[str, str], Set[str]]:
        """Collect included local files and directories.

        Directories that cannot be listed are appended to ``errors``; the
        returned tree is incomplete whenever ``errors`` is not empty.
        """
        files: Dict[str, str] = {}
        dirs: Set[str] = set()

        for root, dir_names, file_names in os.walk(local_path, onerror=errors.append):
            rel_root = os.path.relpath(root, local_path).replace(os.sep, "/")
            rel_root = "" if rel_root == "." else rel_root

            kept = []
            for name in dir_names:
                rel = f"{rel_root}/{name}" if rel_root else name
                if mask.includes_dir(rel):
                    kept.append(name)
                    dirs.add(rel)
            dir_names[:] = kept

            for name in file_names:
                rel = f"{rel_root}/{name}" if rel_root else name
                if mask.includes_file(rel):
                    files[rel] = os.path.join(root, name)

        return files, dirs

    def _walk_remote(self, sftp, remote_path: str, mask: FileMask) -> Tuple[Dict[str, Any], Set[str]]:
        files: Dict[str, Any] = {}
        dirs: Set[str] = set()
        pending = [""]

        while pending:
            rel_dir = pending.pop()
            for attr in sftp.listdir_attr(posixpath.join(remote_path, rel_dir) if rel_dir else remote_path):
                rel = f"{rel_dir}/{attr.filename}" if rel_dir else attr.filename
                if stat.S_ISDIR(attr.st_mode or 0):
                    if mask.includes_dir(rel):
                        dirs.add(rel)
                        pending.append(rel)
                elif mask.includes_file(rel):
                    files[rel] = attr

        return files, dirs

    def _needs_upload(self, local_stat: os.stat_result, remote_attr: Any) -> bool:
        if remote_attr is None:
            return True
        if remote_attr.st_size != local_stat.st_size:
            return True
        if self.preserve_timestamps:
            return int(local_stat.st_mtime) != int(remote_attr.st_mtime or 0)
        # Remote mtime is the upload time here
        return int(local_stat.st_mtime) > int(remote_attr.st_mtime or 0)

    def _upload(
        self,
        sftp,
        rel: str,
        local_file: str,
        remote_file: str,
        local_stat: os.stat_result,
        result: SyncPassResult
    ) -> TransferOutcome:
        outcome = TransferOutcome(file_name=local_file, destination=remote_file)
        outcome.upload = OperationOutcome(file_name=local_file)

        try:
            sftp.put(local_file, remote_file)
        except (OSError, paramiko.SSHException) as e:
            outcome.upload.error = str(e)
            result.failures.append(TransferFailure(file_name=rel, operation="upload", error=e))
            return outcome

        if self.file_permissions is not None:
            outcome.chmod = OperationOutcome(file_name=remote_file, detail=oct(self.file_permissions))
            try:
                sftp.chmod(remote_file, self.file_permissions)
            except (OSError, paramiko.SSHException) as e:
                outcome.chmod.error = str(e)
                result.failures.append(TransferFailure(file_name=rel, operation="chmod", error=e))

        if self.preserve_timestamps:
            mtime = int(local_stat.st_mtime)
            outcome.touch = OperationOutcome(
                file_name=remote_file,
                detail=datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()
            )
            try:
                sftp.utime(remote_file, (int(local_stat.st_atime), mtime))
            except (OSError, paramiko.SSHException) as e:
                outcome.touch.error = str(e)
                result.failures.append(TransferFailure(file_name=rel, operation="touch", error=e))

        return outcome

    def _remove(self, sftp, rel: str, remote_target: str, is_dir: bool, result: SyncPassResult) -> TransferOutcome:
        outcome = TransferOutcome(file_name=remote_target, destination=remote_target)
        outcome.removal = OperationOutcome(file_name=remote_target)
        try:
            if is_dir:
                sftp.rmdir(remote_target)
            else:
                sftp.remove(remote_target)
        except (OSError, paramiko.SSHException) as e:
            outcome.removal.error = str(e)
            result.failures.append(TransferFailure(file_name=rel, operation="removal", error=e))
        return outcome

    def _synchronize(self, connection: SftpConnection, local_path: str, remote_path: str, file_mask: str) -> SyncPassResult:
        started = time.monotonic()
        if not os.path.isdir(local_path):
            raise TransferError(f"Local path `{local_path}` is not a readable directory")

        self._ensure_connected(connection)
        sftp = connection.sftp
        mask = FileMask(file_mask)
        result = SyncPassResult()

        walk_errors: List[OSError] = []
        local_files, local_dirs = self._walk_local(local_path, mask, walk_errors)
        for error in walk_errors:
            rel = os.path.relpath(error.filename or local_path, local_path).replace(os.sep, "/")
            result.failures.append(TransferFailure(file_name=rel, operation="scan", error=error))
        try:
            remote_files, remote_dirs = self._walk_remote(sftp, remote_path, mask)
        except FileNotFoundError:
            self._makedirs(sftp, remote_path)
            remote_files, remote_dirs = {}, set()

        for rel in sorted(local_dirs - remote_dirs):
            target = posixpath.join(remote_path, rel)
            try:
                sftp.mkdir(target)
            except (OSError, paramiko.SSHException) as e:
                result.failures.append(TransferFailure(file_name=rel, operation="mkdir", error=e))

        for rel in sorted(local_files):
            local_file = local_files[rel]
            remote_file = posixpath.join(remote_path, rel)
            try:
                local_stat = os.stat(local_file)
            except FileNotFoundError:
                # Deleted after the walk, the next pass removes it remotely
                continue
            if not self._needs_upload(local_stat, remote_files.get(rel)):
                continue
            result.outcomes.append(
                self._upload(sftp, rel, local_file, remote_file, local_stat, result)
            )

        if self.remove_files and walk_errors:
            self.logger.warning(
                "Local scan incomplete, remote removals skipped",
                local_path=local_path,
                unreadable=len(walk_errors)
            )
        elif self.remove_files:
            for rel in sorted(set(remote_files) - set(local_files)):
                result.outcomes.append(
                    self._remove(sftp, rel, posixpath.join(remote_path, rel), False, result)
                )
            # Deepest directories first so parents are empty when removed
            for rel in sorted(remote_dirs - local_dirs, key=lambda p: p.count("/"), reverse=True):
                result.outcomes.append(
                    self._remove(sftp, rel, posixpath.join(remote_path, rel), True, result)
                )

        result.duration = time.monotonic() - started
        self.logger.debug(
            "Synchronization pass finished",
            local_path=local_path,
            remote_path=remote_path,
            transferred=len(result.outcomes),
            failures=len(result.failures),
            duration=f"{result.duration:.3f}s"
        )
        return result
