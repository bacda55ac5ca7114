"""Tests for logging setup and per-connection log files."""

import logging

import structlog

from syncwatch.utils import logging as log_utils


class TestSetupLogging:
    """Root handler management."""

    def teardown_method(self):
        root = logging.getLogger()
        while log_utils._root_handlers:
            handler = log_utils._root_handlers.pop()
            root.removeHandler(handler)
            handler.close()
        structlog.reset_defaults()

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        log_file = tmp_path / "logs" / "syncwatch.log"

        log_utils.setup_logging(log_level="DEBUG", log_format="json", log_file=str(log_file))
        first = list(log_utils._root_handlers)
        log_utils.setup_logging(log_level="WARNING", log_format="json", log_file=str(log_file))

        root = logging.getLogger()
        assert len(log_utils._root_handlers) == 2
        assert not any(handler in root.handlers for handler in first)
        assert root.level == logging.WARNING
        assert log_file.parent.is_dir()

    def test_events_reach_log_file(self, tmp_path):
        log_file = tmp_path / "syncwatch.log"
        log_utils.setup_logging(log_level="INFO", log_format="json", log_file=str(log_file))

        log_utils.get_logger("test_logging").info("Session state changed", state="watching")
        for handler in log_utils._root_handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert '"event": "Session state changed"' in content
        assert '"state": "watching"' in content


class TestLoggerFiles:
    """Per-connection log files."""

    def test_attach_and_detach(self, tmp_path):
        log_file = tmp_path / "connections" / "site.log"

        handler = log_utils.attach_logger_file("SyncSession.test-site", str(log_file), "INFO")
        assert handler in logging.getLogger("SyncSession.test-site").handlers
        assert log_file.exists()

        log_utils.detach_logger_file("SyncSession.test-site", handler)
        assert handler not in logging.getLogger("SyncSession.test-site").handlers
