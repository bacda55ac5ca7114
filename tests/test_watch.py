"""Tests for the watchdog-backed change source."""

import threading
import time

import pytest
from watchdog.events import DirDeletedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from syncwatch.watch import ChangeEvent, ChangeSourceError, ChangeType, WatchdogChangeSource
from syncwatch.watch.watchdog_source import _ForwardingHandler


class TestForwardingHandler:
    """Mapping of watchdog events onto change events."""

    def setup_method(self):
        self.events = []
        self.handler = _ForwardingHandler(self.events.append)

    def test_created_and_modified(self):
        self.handler.dispatch(FileCreatedEvent("/site/index.html"))
        self.handler.dispatch(FileModifiedEvent("/site/index.html"))

        assert self.events == [
            ChangeEvent(ChangeType.CREATED, "/site/index.html"),
            ChangeEvent(ChangeType.MODIFIED, "/site/index.html"),
        ]

    def test_moved_keeps_destination(self):
        self.handler.dispatch(FileMovedEvent("/site/a.html", "/site/b.html"))

        assert self.events == [ChangeEvent(ChangeType.MOVED, "/site/a.html", dest_path="/site/b.html")]

    def test_directory_flag(self):
        self.handler.dispatch(DirDeletedEvent("/site/assets"))

        assert self.events[0].change_type == ChangeType.DELETED
        assert self.events[0].is_directory


class TestWatchdogChangeSource:
    """Subscribing to a real directory."""

    def test_subscribe_rejects_missing_directory(self, tmp_path):
        source = WatchdogChangeSource()

        with pytest.raises(ChangeSourceError):
            source.subscribe(str(tmp_path / "missing"), lambda event: None)

        assert not source.is_subscribed

    def test_subscribe_twice_raises(self, tmp_path):
        source = WatchdogChangeSource()
        source.subscribe(str(tmp_path), lambda event: None)

        try:
            with pytest.raises(ChangeSourceError):
                source.subscribe(str(tmp_path), lambda event: None)
        finally:
            source.unsubscribe()

    def test_unsubscribe_is_idempotent(self, tmp_path):
        source = WatchdogChangeSource()
        source.subscribe(str(tmp_path), lambda event: None)

        source.unsubscribe()
        source.unsubscribe()

        assert not source.is_subscribed

    def test_delivers_events_for_new_files(self, tmp_path):
        received = []
        seen = threading.Event()

        def on_change(event):
            received.append(event)
            seen.set()

        source = WatchdogChangeSource()
        source.subscribe(str(tmp_path), on_change)
        try:
            # Give the observer a moment to install its watches
            time.sleep(0.2)
            (tmp_path / "index.html").write_text("<html></html>", encoding="utf-8")
            assert seen.wait(timeout=5.0)
        finally:
            source.unsubscribe()

        assert any(event.path.endswith("index.html") for event in received)
