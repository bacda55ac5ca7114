"""Main application entry point."""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from aiohttp import web, web_runner

from . import __version__
from .config import AppSettings, ConfigurationError, create_template, get_settings
from .core import SyncManager
from .utils.logging import setup_logging, get_logger
from .utils.reporting import ErrorReporter, init_error_tracking


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="syncwatch",
        description="Watch local directories and mirror them to remote hosts over SFTP.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create sync-settings.json in the current directory
  syncwatch --create

  # Watch the connection configured in the current directory
  syncwatch

  # Run every connection from a setup list, as on OS boot
  syncwatch --manager connections.json --startup
        """
    )
    parser.add_argument("-c", "--create", action="store_true",
                        help="Create a template settings file and exit")
    parser.add_argument("-m", "--manager", metavar="SETUP_FILE",
                        help="Run all connections listed in SETUP_FILE")
    parser.add_argument("-s", "--startup", action="store_true",
                        help="Signifies that the application is starting on OS boot")
    parser.add_argument("-d", "--directory", default=".",
                        help="Directory holding the settings file in single-connection mode")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Override the configured log level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


class SyncWatchApp:
    """Runs the manager until a shutdown signal arrives."""

    def __init__(
        self,
        args: argparse.Namespace,
        error_reporter: ErrorReporter,
        settings: Optional[AppSettings] = None,
        manager: Optional[SyncManager] = None
    ):
        self.args = args
        self.settings = settings or get_settings()
        self.error_reporter = error_reporter
        self.logger = get_logger("SyncWatch")
        self.manager = manager or SyncManager(error_reporter=error_reporter, settings=self.settings)
        self.stop_event = asyncio.Event()
        self.started_at = datetime.now(timezone.utc)
        self.web_runner: Optional[web_runner.AppRunner] = None

    def request_stop(self, signum: Optional[int] = None) -> None:
        if signum is not None:
            self.logger.info(f"Received signal {signum}")
        self.stop_event.set()

    async def run(self) -> int:
        """Run in manager or single-connection mode.

        Returns:
            Process exit code
        """
        self.logger.info("Starting syncwatch", version=self.settings.version)

        if self.settings.status.enabled:
            await self._setup_web_server()

        try:
            if self.args.manager:
                return await self.manager.run(
                    self.args.manager,
                    startup=self.args.startup,
                    stop_event=self.stop_event
                )
            return await self.manager.run_single(self.args.directory, stop_event=self.stop_event)
        finally:
            await self._stop_web_server()
            self.logger.info("syncwatch stopped")

    async def _setup_web_server(self):
        """Set up web server for health checks and status."""
        app = web.Application()
        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/status', self._status_handler)

        self.web_runner = web_runner.AppRunner(app)
        await self.web_runner.setup()

        site = web_runner.TCPSite(self.web_runner, self.settings.status.host, self.settings.status.port)
        await site.start()

        self.logger.info(f"Status server started on http://{self.settings.status.host}:{self.settings.status.port}")

    async def _stop_web_server(self):
        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            self.logger.info("Status server stopped")

    async def _health_handler(self, request):
        """Healthy while at least one session is watching."""
        healthy = self.manager.has_active_sessions
        health_data = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "uptime_seconds": int((datetime.now(timezone.utc) - self.started_at).total_seconds())
        }
        return web.json_response(health_data, status=200 if healthy else 503)

    async def _status_handler(self, request):
        status_data = {
            "application": {
                "name": self.settings.name,
                "version": self.settings.version,
                "mode": "manager" if self.args.manager else "single",
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
            "states": self.manager.count_by_state(),
            "sessions": self.manager.get_status()
        }
        return web.json_response(status_data)


def setup_signal_handlers(app: SyncWatchApp) -> None:
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.request_stop, sig)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(app.request_stop, signum))


async def run_app(args: argparse.Namespace, error_reporter: ErrorReporter, settings: AppSettings) -> int:
    app = SyncWatchApp(args, error_reporter=error_reporter, settings=settings)
    setup_signal_handlers(app)
    return await app.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    setup_logging(log_level=args.log_level)
    logger = get_logger("main")

    if args.create:
        try:
            path = create_template(Path(args.directory), settings.session.settings_file_name)
        except ConfigurationError as e:
            logger.error("Cannot create settings file", error=str(e))
            return 1
        logger.info(f"Created `{path}`. Fill in the connection details and run `syncwatch`.")
        return 0

    sentry_enabled = init_error_tracking(
        settings.error_tracking.sentry_dsn,
        environment=settings.error_tracking.environment,
        release=__version__
    )
    error_reporter = ErrorReporter(sentry_enabled=sentry_enabled)

    try:
        return asyncio.run(run_app(args, error_reporter, settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0
    except Exception as e:
        error_reporter.report_error_sync(e, "syncwatch failed with an unexpected error")
        return 1


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
