"""Error reporting collaborator shared by the manager and its sessions."""

import asyncio
from typing import Optional

import sentry_sdk

from .logging import get_logger


def init_error_tracking(dsn: Optional[str], environment: str = "production", release: Optional[str] = None) -> bool:
    """Initialise Sentry once for the process.

    Returns:
        True if a DSN was configured and Sentry is active
    """
    if not dsn:
        return False

    sentry_sdk.init(dsn=dsn, environment=environment, release=release)
    get_logger("init_error_tracking").info("Error tracking enabled", environment=environment)
    return True


class ErrorReporter:
    """Single reporting interface for errors.

    Every error goes to the structured log. When Sentry is enabled the error
    is captured and the client flushed before ``report_error`` returns, so
    nothing is lost if the process exits right after.
    """

    def __init__(self, sentry_enabled: bool = False, flush_timeout: float = 5.0):
        self.sentry_enabled = sentry_enabled
        self.flush_timeout = flush_timeout
        self.logger = get_logger(self.__class__.__name__)
        self.reported_count = 0

    async def report_error(self, error: BaseException, message: str, **context) -> None:
        """Report an error with a human-readable message."""
        self.reported_count += 1
        self.logger.error(
            message,
            error=str(error),
            error_type=type(error).__name__,
            **context
        )

        if not self.sentry_enabled:
            return

        with sentry_sdk.new_scope() as scope:
            for key, value in context.items():
                scope.set_extra(key, value)
            scope.set_extra("message", message)
            sentry_sdk.capture_exception(error)

        await asyncio.get_running_loop().run_in_executor(None, sentry_sdk.flush, self.flush_timeout)

    def report_error_sync(self, error: BaseException, message: str) -> None:
        """Blocking variant used outside the event loop, e.g. at process exit."""
        self.reported_count += 1
        self.logger.error(message, error=str(error), error_type=type(error).__name__)

        if self.sentry_enabled:
            sentry_sdk.capture_exception(error)
            sentry_sdk.flush(self.flush_timeout)
