"""Manager that runs one sync session per configured connection."""

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .session import SessionState, SyncSession
from ..config import (
    AppSettings,
    ConfigurationError,
    ConnectionEntry,
    SettingsResolver,
    SyncSettings,
    get_settings,
    load_setup,
)
from ..transfer import SftpTransferProvider, TransferProvider
from ..watch import ChangeSource, WatchdogChangeSource
from ..utils.logging import (
    attach_logger_file,
    detach_logger_file,
    get_logger,
    log_async_execution_time,
)
from ..utils.reporting import ErrorReporter


ProviderFactory = Callable[[SyncSettings], TransferProvider]
ChangeSourceFactory = Callable[[SyncSettings], ChangeSource]


class SyncManager:
    """Builds, starts and stops sync sessions.

    In multi-session mode a connection that cannot be resolved or started
    is reported and skipped; the remaining connections keep running. In
    single-session mode any such error ends the run with exit code 1.
    """

    def __init__(
        self,
        error_reporter: ErrorReporter,
        settings: Optional[AppSettings] = None,
        provider_factory: Optional[ProviderFactory] = None,
        change_source_factory: Optional[ChangeSourceFactory] = None
    ):
        """Initialize sync manager.

        Args:
            error_reporter: Receives every error from the manager and its sessions
            settings: Application settings, defaults to the process settings
            provider_factory: Builds a transfer provider per session
            change_source_factory: Builds a change source per session
        """
        self.error_reporter = error_reporter
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory or self._default_provider
        self.change_source_factory = change_source_factory or (lambda _settings: WatchdogChangeSource())
        self.resolver = SettingsResolver()
        self.logger = get_logger(self.__class__.__name__)

        self.sessions: List[SyncSession] = []
        self._log_handlers: List[Tuple[str, Any]] = []
        self._pending_reports: List[Tuple[Exception, str]] = []

        limit = self.settings.session.max_concurrent_passes
        self._pass_limiter: Optional[asyncio.Semaphore] = asyncio.Semaphore(limit) if limit > 0 else None

    def _default_provider(self, _settings: SyncSettings) -> TransferProvider:
        return SftpTransferProvider.from_settings(self.settings.transfer)

    @staticmethod
    def select_entries(entries: List[ConnectionEntry], startup: bool = False) -> List[ConnectionEntry]:
        """Keep enabled entries; on a startup launch only those marked runOnStartup."""
        return [
            entry for entry in entries
            if entry.is_enabled and (entry.run_on_startup or not startup)
        ]

    def create_session(self, settings: SyncSettings, name: Optional[str] = None) -> SyncSession:
        session_settings = self.settings.session
        return SyncSession(
            settings=settings,
            provider=self.provider_factory(settings),
            change_source=self.change_source_factory(settings),
            error_reporter=self.error_reporter,
            name=name,
            quiet_window=session_settings.debounce_seconds,
            reconnect_interval=session_settings.reconnect_interval_seconds,
            port=self.settings.transfer.port,
            pass_limiter=self._pass_limiter,
        )

    def _settings_source(self, directory: Union[str, Path]) -> Path:
        return Path(directory) / self.settings.session.settings_file_name

    def build_sessions(self, entries: List[ConnectionEntry], isolate: bool = True) -> List[SyncSession]:
        """Resolve settings for each entry and construct its session.

        Args:
            entries: Entries that should get a session
            isolate: Skip entries that cannot be resolved or set up instead of raising

        Raises:
            ConfigurationError: When ``isolate`` is False and an entry is invalid
        """
        sessions = []

        for index, entry in enumerate(entries):
            try:
                settings = self.resolver.resolve(self._settings_source(entry.path), entry.path)
            except ConfigurationError as e:
                self.logger.error("Connection skipped", path=entry.path, error=str(e))
                if not isolate:
                    raise
                self._report_soon(e, f"Connection settings in {entry.path} are invalid")
                continue

            try:
                session = self.create_session(settings, name=f"{index}:{settings.label}")
                if entry.log_file_path:
                    log_file = Path(self.settings.logging.directory) / entry.log_file_path
                    handler = attach_logger_file(session.logger_name, str(log_file), self.settings.logging.level)
                    self._log_handlers.append((session.logger_name, handler))
            except Exception as e:
                self.logger.error("Connection skipped", path=entry.path, error=str(e))
                if not isolate:
                    raise ConfigurationError(f"Cannot set up the connection in {entry.path}: {e}") from e
                self._report_soon(e, f"Connection in {entry.path} cannot be set up")
                continue

            sessions.append(session)
            self.logger.info("Connection added", local_path=settings.local_path, connection=settings.label)

        self.sessions.extend(sessions)
        return sessions

    def _report_soon(self, error: Exception, message: str) -> None:
        # build_sessions is synchronous, reports go out with the next start
        self._pending_reports.append((error, message))

    async def _flush_reports(self) -> None:
        while self._pending_reports:
            error, message = self._pending_reports.pop(0)
            await self.error_reporter.report_error(error, message)

    async def _start_one(self, session: SyncSession) -> bool:
        try:
            await session.start()
        except Exception as e:
            # SessionStartError has already been reported by the session
            self.logger.error("Connection start failed", session=session.name, error=str(e))
            return False

        if not session.is_active:
            self.logger.info("Connection stopped while starting", session=session.name, state=session.state.value)
        return session.is_active

    @log_async_execution_time
    async def start_sessions(self, sessions: Optional[List[SyncSession]] = None) -> List[SyncSession]:
        """Start sessions concurrently; one failing never stops the others.

        Returns:
            The sessions that reached the watching state
        """
        sessions = self.sessions if sessions is None else sessions
        await self._flush_reports()

        results = await asyncio.gather(*(self._start_one(session) for session in sessions))
        started = [session for session, ok in zip(sessions, results) if ok]

        self.logger.info(
            "Sessions started",
            started=len(started),
            failed=len(sessions) - len(started)
        )
        return started

    async def run(
        self,
        setup_source: Union[str, Path],
        startup: bool = False,
        stop_event: Optional[asyncio.Event] = None
    ) -> int:
        """Multi-session mode: run every eligible connection until stopped.

        Returns:
            Process exit code
        """
        self.logger.info("sync-watch started in manager mode", setup_file=str(setup_source), startup=startup)

        try:
            entries = load_setup(setup_source)
        except ConfigurationError as e:
            await self.error_reporter.report_error(e, "Cannot read the connection list")
            return 1

        eligible = self.select_entries(entries, startup=startup)
        if not eligible:
            self.logger.warning("No enabled connections to watch", total=len(entries))
            return 0

        sessions = self.build_sessions(eligible, isolate=True)
        self.logger.info("Successfully read the connection list", sessions=len(sessions))

        started = await self.start_sessions(sessions)
        if not started:
            await self.stop()
            self.logger.error("No connection could be started")
            return 1

        await self._wait(stop_event)
        await self.stop()
        return 0

    async def run_single(
        self,
        directory: Union[str, Path],
        stop_event: Optional[asyncio.Event] = None
    ) -> int:
        """Single-session mode: any startup error aborts the run.

        Returns:
            Process exit code
        """
        self.logger.info("sync-watch started", directory=str(directory))

        try:
            sessions = self.build_sessions([ConnectionEntry(path=str(directory))], isolate=False)
        except ConfigurationError as e:
            await self.error_reporter.report_error(e, "Cannot load connection settings")
            return 1

        started = await self.start_sessions(sessions)
        if not started:
            await self.stop()
            return 1

        await self._wait(stop_event)
        await self.stop()
        return 0

    async def _wait(self, stop_event: Optional[asyncio.Event]) -> None:
        # Without a stop event the manager runs until its task is cancelled
        stop_event = stop_event or asyncio.Event()
        await stop_event.wait()
        self.logger.info("Stop requested")

    async def stop(self) -> None:
        """Stop every session. Idempotent."""
        results = await asyncio.gather(*(session.stop() for session in self.sessions), return_exceptions=True)
        for session, result in zip(self.sessions, results):
            if isinstance(result, Exception):
                await self.error_reporter.report_error(result, f"Stopping {session.name} failed")

        for logger_name, handler in self._log_handlers:
            detach_logger_file(logger_name, handler)
        self._log_handlers.clear()

        self.logger.info("All sessions stopped", sessions=len(self.sessions))

    def get_status(self) -> List[Dict[str, Any]]:
        return [session.get_status() for session in self.sessions]

    def count_by_state(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for session in self.sessions:
            counts[session.state.value] = counts.get(session.state.value, 0) + 1
        return counts

    @property
    def has_active_sessions(self) -> bool:
        return any(session.state in (SessionState.WATCHING, SessionState.RESYNCING) for session in self.sessions)
