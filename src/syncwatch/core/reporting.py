"""Reporting of per-file transfer outcomes."""

from typing import List

from ..transfer import SyncPassResult, TransferOutcome
from ..utils.reporting import ErrorReporter


def describe_outcome(outcome: TransferOutcome) -> List[str]:
    """Human-readable lines for everything that happened to one file."""
    lines = []

    if outcome.upload is not None:
        if outcome.upload.succeeded:
            lines.append(f"Upload of {outcome.upload.file_name} succeeded")
        else:
            lines.append(f"Upload of {outcome.upload.file_name} failed: {outcome.upload.error}")

        if outcome.chmod is None:
            lines.append(f"Permissions of {outcome.destination} kept with their defaults")
        elif outcome.chmod.succeeded:
            lines.append(f"Permissions of {outcome.chmod.file_name} set to {outcome.chmod.detail}")
        else:
            lines.append(f"Setting permissions of {outcome.chmod.file_name} failed: {outcome.chmod.error}")

        if outcome.touch is None:
            lines.append(f"Timestamp of {outcome.destination} kept with its default (current time)")
        elif outcome.touch.succeeded:
            lines.append(f"Timestamp of {outcome.touch.file_name} set to {outcome.touch.detail}")
        else:
            lines.append(f"Setting timestamp of {outcome.touch.file_name} failed: {outcome.touch.error}")

    if outcome.removal is not None:
        if outcome.removal.succeeded:
            lines.append(f"Removal of {outcome.removal.file_name} succeeded")
        else:
            lines.append(f"Removal of {outcome.removal.file_name} failed: {outcome.removal.error}")

    return lines


class OutcomeReporter:
    """Sends pass results to a session's log and to the error reporter."""

    def __init__(self, logger, error_reporter: ErrorReporter, label: str):
        self.logger = logger
        self.error_reporter = error_reporter
        self.label = label

    def log_outcome(self, outcome: TransferOutcome) -> None:
        log = self.logger.warning if outcome.failed else self.logger.info
        for line in describe_outcome(outcome):
            log(f"{self.label} | {line}")

    async def report_pass(self, result: SyncPassResult) -> None:
        """Log every outcome, then report every failure.

        Failures are awaited one by one so they reach the error reporter
        before the session moves on.
        """
        for outcome in result.outcomes:
            self.log_outcome(outcome)

        for failure in result.failures:
            await self.error_reporter.report_error(
                failure.error,
                f"{self.label} | {failure.operation} of {failure.file_name} failed",
                file_name=failure.file_name,
                operation=failure.operation
            )
