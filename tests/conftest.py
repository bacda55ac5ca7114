"""Shared fixtures for the syncwatch tests."""

import asyncio
import json
import time
from pathlib import Path

import pytest

from fakes import FakeChangeSource, FakeTransferProvider, RecordingReporter
from syncwatch.config import AppSettings, LoggingSettings, SessionSettings, SyncSettings


async def _wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not reached before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Poll a predicate from an async test until it holds."""
    return _wait_until


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def provider():
    return FakeTransferProvider()


@pytest.fixture
def change_source():
    return FakeChangeSource()


@pytest.fixture
def sync_settings(tmp_path):
    return SyncSettings(
        host_name="example.com",
        user_name="deploy",
        remote_path="/var/www/site",
        local_path=str(tmp_path),
        file_mask="|.git/",
    )


@pytest.fixture
def app_settings(tmp_path):
    return AppSettings(
        session=SessionSettings(debounce_seconds=0.05, reconnect_interval_seconds=0.01),
        logging=LoggingSettings(directory=str(tmp_path / "logs")),
    )


@pytest.fixture
def write_settings():
    """Write a settings file for one connection directory."""

    def _write(directory: Path, host: str = "example.com", local_path: str = ".", **extra) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        data = {
            "hostName": host,
            "userName": "deploy",
            "remotePath": f"/srv/{directory.name}",
            "localPath": local_path,
            "fileMask": "",
            "sshHostKeyFingerprint": "",
        }
        data.update(extra)
        target = directory / "sync-settings.json"
        target.write_text(json.dumps(data), encoding="utf-8")
        return target

    return _write
