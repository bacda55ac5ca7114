"""Tests for the sync session lifecycle."""

import asyncio

import pytest

from fakes import FakeChangeSource, FakeTransferProvider, FlakyReporter
from syncwatch.core import SessionStartError, SessionState, SyncSession
from syncwatch.transfer import (
    OperationOutcome,
    SyncPassResult,
    TransferError,
    TransferFailure,
    TransferOutcome,
)


def failed_pass(file_name: str = "index.html") -> SyncPassResult:
    error = OSError("Permission denied")
    outcome = TransferOutcome(
        file_name=file_name,
        destination=f"/var/www/site/{file_name}",
        upload=OperationOutcome(file_name=file_name, error=str(error)),
    )
    return SyncPassResult(
        outcomes=[outcome],
        failures=[TransferFailure(file_name=file_name, operation="upload", error=error)],
    )


class TestSyncSession:
    """Session state machine and pass scheduling."""

    @pytest.fixture
    def make_session(self, sync_settings, provider, change_source, reporter):
        def _make(**kwargs):
            kwargs.setdefault("quiet_window", 0.05)
            kwargs.setdefault("reconnect_interval", 0.01)
            return SyncSession(
                settings=sync_settings,
                provider=provider,
                change_source=change_source,
                error_reporter=reporter,
                **kwargs
            )
        return _make

    @pytest.mark.asyncio
    async def test_start_reaches_watching(self, make_session, provider, change_source, sync_settings):
        session = make_session()
        await session.start()

        assert session.state == SessionState.WATCHING
        assert session.is_active
        assert provider.remote_dirs == ["/var/www/site"]
        assert provider.sync_calls == [(sync_settings.local_path, "/var/www/site", "|.git/")]
        assert change_source.path == sync_settings.local_path
        assert session.pass_count == 1

        await session.stop()

    @pytest.mark.asyncio
    async def test_connection_params_follow_settings(self, make_session, provider):
        session = make_session(port=2222)
        await session.start()

        params = provider.opened[0]
        assert params.host_name == "example.com"
        assert params.user_name == "deploy"
        assert params.port == 2222
        assert params.accept_any_host_key

        await session.stop()

    @pytest.mark.asyncio
    async def test_change_triggers_resync(self, make_session, provider, change_source, wait_until):
        session = make_session()
        await session.start()

        for _ in range(5):
            change_source.emit()

        await wait_until(lambda: provider.completed_passes == 2)
        await wait_until(lambda: session.state == SessionState.WATCHING)
        await asyncio.sleep(0.2)
        assert provider.completed_passes == 2

        await session.stop()

    @pytest.mark.asyncio
    async def test_passes_never_overlap(self, make_session, provider, change_source, wait_until):
        """Changes arriving during a slow pass never start a second concurrent pass."""
        provider.pass_delay = 0.1
        session = make_session()
        await session.start()

        # Spaced wider than the quiet window so triggers fire while passes run
        for _ in range(10):
            change_source.emit()
            await asyncio.sleep(0.08)

        await wait_until(lambda: provider.completed_passes >= 3)
        await asyncio.sleep(0.3)
        assert provider.max_depth == 1

        await asyncio.gather(session.run_pass(), session.run_pass())
        assert provider.max_depth == 1

        await session.stop()

    @pytest.mark.asyncio
    async def test_failed_file_does_not_block_next_pass(
        self, make_session, provider, change_source, reporter, wait_until
    ):
        session = make_session()
        await session.start()

        provider.results.append(failed_pass("index.html"))
        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 2)
        await wait_until(lambda: session.state == SessionState.WATCHING)

        assert session.failed_pass_count == 1
        assert any("upload of index.html failed" in message for message in reporter.messages)

        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 3)
        assert session.failed_pass_count == 1

        await session.stop()

    @pytest.mark.asyncio
    async def test_pass_exception_keeps_watching(
        self, make_session, provider, change_source, reporter, wait_until
    ):
        session = make_session()
        await session.start()

        provider.results.append(TransferError("Reconnect failed"))
        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 2)
        await wait_until(lambda: session.state == SessionState.WATCHING)

        assert session.failed_pass_count == 1
        assert isinstance(reporter.reports[-1][0], TransferError)

        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 3)

        await session.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scripted", [TransferError("Reconnect failed"), failed_pass()])
    async def test_failing_reporter_keeps_watching(
        self, sync_settings, provider, change_source, wait_until, scripted
    ):
        reporter = FlakyReporter()
        session = SyncSession(
            settings=sync_settings,
            provider=provider,
            change_source=change_source,
            error_reporter=reporter,
            quiet_window=0.05,
        )
        await session.start()

        provider.results.append(scripted)
        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 2)
        await wait_until(lambda: session.state == SessionState.WATCHING)
        assert reporter.failures == 0

        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 3)
        await wait_until(lambda: session.state == SessionState.WATCHING)
        assert session.failed_pass_count == 1

        await session.stop()
        assert session.state == SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_unexpected_resync_error_keeps_watching(
        self, make_session, provider, change_source, wait_until, monkeypatch
    ):
        session = make_session()
        await session.start()

        run_pass = session.run_pass
        calls = []

        async def run_pass_failing_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("unexpected")
            return await run_pass()

        monkeypatch.setattr(session, "run_pass", run_pass_failing_once)

        change_source.emit()
        await wait_until(lambda: len(calls) == 1)
        await wait_until(lambda: session.state == SessionState.WATCHING)

        change_source.emit()
        await wait_until(lambda: provider.completed_passes == 2)
        assert not session._watch_task.done()

        await session.stop()

    @pytest.mark.asyncio
    async def test_watch_task_crash_is_reported(self, make_session, reporter, monkeypatch):
        session = make_session()
        await session.start()

        sync_reports = []
        monkeypatch.setattr(reporter, "report_error_sync", lambda error, message: sync_reports.append(message))

        async def crash():
            raise RuntimeError("trigger stream broken")

        task = asyncio.create_task(crash())
        task.add_done_callback(session._on_watch_done)
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        assert sync_reports == ["example.com:/var/www/site | Watching stopped unexpectedly"]

        await session.stop()

    @pytest.mark.asyncio
    async def test_failed_initial_pass_still_watches(self, make_session, provider):
        provider.results.append(failed_pass())
        session = make_session()
        await session.start()

        assert session.state == SessionState.WATCHING
        assert session.failed_pass_count == 1

        await session.stop()

    @pytest.mark.asyncio
    async def test_connect_failure_marks_failed(self, make_session, provider, change_source, reporter):
        provider.fail_hosts.add("example.com")
        session = make_session()

        with pytest.raises(SessionStartError):
            await session.start()

        assert session.state == SessionState.FAILED
        assert len(reporter.reports) == 1
        assert provider.sync_calls == []
        assert not change_source.is_subscribed

        await session.stop()
        assert session.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_remote_dir_failure_closes_connection(self, make_session, provider):
        provider.fail_remote_dir = True
        session = make_session()

        with pytest.raises(SessionStartError):
            await session.start()

        assert session.state == SessionState.FAILED
        assert provider.closed == 1
        assert provider.sync_calls == []

    @pytest.mark.asyncio
    async def test_subscribe_failure_marks_failed(self, sync_settings, provider, reporter):
        session = SyncSession(
            settings=sync_settings,
            provider=provider,
            change_source=FakeChangeSource(fail_subscribe=True),
            error_reporter=reporter,
            quiet_window=0.05,
        )

        with pytest.raises(SessionStartError):
            await session.start()

        assert session.state == SessionState.FAILED
        assert provider.closed == 1

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, make_session):
        session = make_session()
        await session.start()

        with pytest.raises(SessionStartError):
            await session.start()

        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_session, provider, change_source):
        session = make_session()
        await session.start()

        await session.stop()
        await session.stop()

        assert session.state == SessionState.STOPPED
        assert provider.closed == 1
        assert change_source.unsubscribe_count == 1
        assert not session.is_active

    @pytest.mark.asyncio
    async def test_stop_before_start(self, make_session, provider):
        session = make_session()
        await session.stop()

        assert session.state == SessionState.STOPPED
        assert provider.opened == []

    @pytest.mark.asyncio
    async def test_stop_drops_pending_trigger(self, make_session, provider, change_source):
        session = make_session(quiet_window=0.1)
        await session.start()

        change_source.emit()
        await session.stop()
        await asyncio.sleep(0.2)

        assert provider.completed_passes == 1
        assert session.state == SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_pass(self, make_session, provider, change_source, wait_until):
        session = make_session()
        await session.start()

        provider.pass_delay = 0.2
        change_source.emit()
        await wait_until(lambda: provider.depth == 1)

        await session.stop()

        assert session.state == SessionState.STOPPED
        assert provider.completed_passes == 2
        assert provider.log[-2:] == ["sync_end", "close"]

    @pytest.mark.asyncio
    async def test_stop_during_start(self, make_session, provider):
        provider.pass_delay = 0.1
        session = make_session()

        start = asyncio.create_task(session.start())
        await asyncio.sleep(0.02)
        await session.stop()
        await start

        assert session.state == SessionState.STOPPED
        assert provider.closed == 1

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_session, provider):
        async with make_session() as session:
            assert session.state == SessionState.WATCHING

        assert session.state == SessionState.STOPPED
        assert provider.closed == 1

    @pytest.mark.asyncio
    async def test_shared_limiter_caps_concurrent_passes(self, sync_settings, reporter, wait_until):
        provider = FakeTransferProvider(pass_delay=0.05)
        limiter = asyncio.Semaphore(1)
        sessions = [
            SyncSession(
                settings=sync_settings,
                provider=provider,
                change_source=FakeChangeSource(),
                error_reporter=reporter,
                name=f"site-{i}",
                quiet_window=0.05,
                pass_limiter=limiter,
            )
            for i in range(3)
        ]

        await asyncio.gather(*(session.start() for session in sessions))
        assert provider.max_depth == 1
        assert provider.completed_passes == 3

        await asyncio.gather(*(session.stop() for session in sessions))

    @pytest.mark.asyncio
    async def test_status_summary(self, make_session):
        session = make_session(name="0:example.com:/var/www/site")
        await session.start()

        status = session.get_status()
        assert status["name"] == "0:example.com:/var/www/site"
        assert status["state"] == "watching"
        assert status["pass_count"] == 1
        assert status["started_at"] is not None

        await session.stop()
