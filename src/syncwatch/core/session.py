"""Lifecycle of a single watched connection."""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .debounce import DebounceEngine
from .reporting import OutcomeReporter
from ..config import SyncSettings
from ..transfer import ConnectionParams, SyncPassResult, TransferProvider
from ..watch import ChangeEvent, ChangeSource
from ..utils.logging import get_logger, log_async_execution_time
from ..utils.reporting import ErrorReporter


class SessionState(str, Enum):
    """States of a sync session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    INITIAL_SYNC = "initial_sync"
    WATCHING = "watching"
    RESYNCING = "resyncing"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class SessionStartError(Exception):
    """Raised when a session cannot reach the watching state."""

    def __init__(self, message: str, session_name: Optional[str] = None):
        super().__init__(message)
        self.session_name = session_name


class SyncSession:
    """Keeps one local directory mirrored to one remote path.

    ``start()`` connects, makes sure the remote path exists, runs the first
    pass and then watches the local tree. Every debounced change trigger runs
    another pass. Passes never overlap: they are taken from a single trigger
    stream and run under a per-session lock. A failing pass is reported and
    the session keeps watching. Only connection and setup failures put the
    session into ``FAILED``.

    ``stop()`` can be called from any state, any number of times.
    """

    def __init__(
        self,
        settings: SyncSettings,
        provider: TransferProvider,
        change_source: ChangeSource,
        error_reporter: ErrorReporter,
        name: Optional[str] = None,
        quiet_window: float = 1.0,
        reconnect_interval: float = 1.0,
        port: int = 22,
        pass_limiter: Optional[asyncio.Semaphore] = None
    ):
        """Initialize sync session.

        Args:
            settings: Resolved connection settings
            provider: Transfer provider that performs the passes
            change_source: Source of local filesystem changes
            error_reporter: Receives every error the session hits
            name: Name used in logs and status, defaults to host:remote_path
            quiet_window: Debounce window in seconds
            reconnect_interval: Reconnect hint handed to the provider
            port: Remote SSH port
            pass_limiter: Optional semaphore shared by sessions to cap concurrent passes
        """
        self.settings = settings
        self.provider = provider
        self.change_source = change_source
        self.error_reporter = error_reporter
        self.name = name or settings.label
        self.quiet_window = quiet_window
        self.reconnect_interval = reconnect_interval
        self.port = port

        self.logger_name = f"SyncSession.{self.name}"
        self.logger = get_logger(self.logger_name).bind(connection=settings.label)
        self.outcomes = OutcomeReporter(self.logger, error_reporter, settings.label)

        self.state = SessionState.IDLE
        self._connection: Any = None
        self._debounce: Optional[DebounceEngine] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._pass_lock = asyncio.Lock()
        self._pass_limiter = pass_limiter
        self._stop_requested = False
        self._start_finished = asyncio.Event()
        self._stopped = asyncio.Event()

        # Statistics
        self.pass_count = 0
        self.failed_pass_count = 0
        self.started_at: Optional[datetime] = None
        self.last_pass_at: Optional[datetime] = None

    async def __aenter__(self) -> "SyncSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.WATCHING, SessionState.RESYNCING)

    def connection_params(self) -> ConnectionParams:
        return ConnectionParams(
            host_name=self.settings.host_name,
            user_name=self.settings.user_name,
            host_key_fingerprint=self.settings.ssh_host_key_fingerprint,
            port=self.port,
            reconnect_interval=self.reconnect_interval,
        )

    def _set_state(self, state: SessionState) -> None:
        previous, self.state = self.state, state
        self.logger.info("Session state changed", previous=previous.value, state=state.value)

    @log_async_execution_time
    async def start(self) -> None:
        """Connect, run the initial pass and start watching.

        Raises:
            SessionStartError: If the session cannot connect, create the
                remote path or watch the local path
        """
        if self.state != SessionState.IDLE:
            raise SessionStartError(
                f"Session {self.name} cannot start from state {self.state.value}",
                session_name=self.name
            )

        try:
            await self._start()
        finally:
            self._start_finished.set()

    async def _start(self) -> None:
        self._set_state(SessionState.CONNECTING)
        self.logger.info(f"Opening a connection to `{self.settings.label}` ...")

        try:
            self._connection = await self.provider.open(self.connection_params())
        except Exception as e:
            await self._fail(e, f"Connection to {self.settings.label} failed")
            raise SessionStartError(f"Connection to {self.settings.label} failed: {e}", self.name) from e

        self._set_state(SessionState.INITIAL_SYNC)

        try:
            self.logger.info(f"Creating the remote path `{self.settings.remote_path}` if necessary...")
            await self.provider.ensure_remote_dir(self._connection, self.settings.remote_path)
        except Exception as e:
            await self._fail(e, f"Creating remote path {self.settings.remote_path} failed")
            raise SessionStartError(f"Creating remote path failed: {e}", self.name) from e

        if self._stop_requested:
            await self._shutdown()
            return

        self.logger.info(f"Initiating first sync to {self.settings.remote_path}")
        await self.run_pass()
        self.logger.info(f"First sync finished to {self.settings.remote_path}")

        if self._stop_requested:
            await self._shutdown()
            return

        try:
            self._begin_watching()
        except Exception as e:
            await self._fail(e, f"Watching {self.settings.local_path} failed")
            raise SessionStartError(f"Watching {self.settings.local_path} failed: {e}", self.name) from e

        self.started_at = datetime.now(timezone.utc)
        self._set_state(SessionState.WATCHING)
        self.logger.info(f"Sync watching: {self.settings.local_path}")

    def _begin_watching(self) -> None:
        self._debounce = DebounceEngine(self.quiet_window, name=self.name)
        self._debounce.start()
        self.change_source.subscribe(self.settings.local_path, self._on_change, recursive=True)
        self._watch_task = asyncio.create_task(self._watch_loop(), name=f"watch-{self.name}")
        self._watch_task.add_done_callback(self._on_watch_done)

    def _on_watch_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        self.error_reporter.report_error_sync(
            task.exception(),
            f"{self.settings.label} | Watching stopped unexpectedly"
        )

    def _on_change(self, event: ChangeEvent) -> None:
        # Runs on the change source's thread
        debounce = self._debounce
        if debounce is not None:
            debounce.push_threadsafe(event)

    async def _watch_loop(self) -> None:
        async for _ in self._debounce.triggers():
            if self._stop_requested:
                break

            self._set_state(SessionState.RESYNCING)
            self.logger.info(f"Starting sync to {self.settings.remote_path}")
            try:
                await self.run_pass()
            except Exception as e:
                self.logger.error("Resync raised, watching continues", error=str(e), error_type=type(e).__name__)
            else:
                self.logger.info(f"Sync completed to {self.settings.remote_path}")

            if self._stop_requested:
                break
            self._set_state(SessionState.WATCHING)

    async def run_pass(self) -> Optional[SyncPassResult]:
        """Run one synchronization pass.

        Never raises for transfer problems: they are reported and ``None``
        is returned when the pass as a whole failed.
        """
        if self._connection is None:
            self.logger.warning("Pass requested without an open connection")
            return None

        async with self._pass_lock:
            if self._pass_limiter is not None:
                await self._pass_limiter.acquire()
            try:
                result = await self.provider.synchronize(
                    self._connection,
                    self.settings.local_path,
                    self.settings.remote_path,
                    self.settings.file_mask
                )
            except Exception as e:
                self.failed_pass_count += 1
                await self._report_quietly(
                    self.error_reporter.report_error(
                        e,
                        f"{self.settings.label} | Synchronization pass failed",
                        session=self.name
                    )
                )
                return None
            finally:
                if self._pass_limiter is not None:
                    self._pass_limiter.release()
                self.pass_count += 1
                self.last_pass_at = datetime.now(timezone.utc)

            if not result.success:
                self.failed_pass_count += 1
            await self._report_quietly(self.outcomes.report_pass(result))
            return result

    async def _report_quietly(self, report) -> None:
        """Await a report; a failing reporter is logged and never ends the pass."""
        try:
            await report
        except Exception as e:
            self.logger.error("Reporting failed", error=str(e), error_type=type(e).__name__)

    async def stop(self) -> None:
        """Stop watching and close the connection.

        A pending trigger is dropped. A pass that is already running
        finishes before the connection is closed.
        """
        self._stop_requested = True

        if self.state == SessionState.IDLE:
            self._set_state(SessionState.STOPPED)
            self._stopped.set()
            return

        if self.state in (SessionState.CONNECTING, SessionState.INITIAL_SYNC):
            await self._start_finished.wait()

        if self.state == SessionState.STOPPING:
            await self._stopped.wait()
            return

        if self.state in (SessionState.STOPPED, SessionState.FAILED):
            return

        await self._shutdown()

    async def _shutdown(self) -> None:
        self._set_state(SessionState.STOPPING)
        try:
            await self._release()
        finally:
            self._set_state(SessionState.STOPPED)
            self._stopped.set()

    async def _fail(self, error: Exception, message: str) -> None:
        self._set_state(SessionState.FAILED)
        await self.error_reporter.report_error(error, message, session=self.name)
        await self._release()

    async def _release(self) -> None:
        """Release watcher, debounce engine and connection. Safe to repeat."""
        if self.change_source.is_subscribed:
            await asyncio.get_running_loop().run_in_executor(None, self.change_source.unsubscribe)

        if self._debounce is not None:
            await self._debounce.dispose()

        watch_task, self._watch_task = self._watch_task, None
        if watch_task is not None and watch_task is not asyncio.current_task():
            # Lets an in-flight pass finish; a crash was reported by _on_watch_done
            await asyncio.gather(watch_task, return_exceptions=True)

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await self.provider.close(connection)
            except Exception as e:
                self.logger.warning("Error closing connection", error=str(e))

    def get_status(self) -> Dict[str, Any]:
        """Status summary for the status endpoint and the manager."""
        return {
            "name": self.name,
            "connection": self.settings.label,
            "local_path": self.settings.local_path,
            "state": self.state.value,
            "pass_count": self.pass_count,
            "failed_pass_count": self.failed_pass_count,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_pass_at": self.last_pass_at.isoformat() if self.last_pass_at else None,
        }
