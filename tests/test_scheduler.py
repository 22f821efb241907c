"""Tests for the upload scheduler."""
import asyncio

import pytest

from results_uploader.models import ReporterConfig, UploadTask
from results_uploader.orchestrator.scheduler import UploadScheduler
from results_uploader.services.credentials import CredentialError
from results_uploader.services.storage import TransferError, TransferErrorKind
from results_uploader.utils.events import EventEmitter

from conftest import FakeBroker, make_grant


def _scheduler(broker, storage, clock, **config):
    return UploadScheduler(
        broker,
        config=ReporterConfig(**config),
        session_factory=storage,
        clock=clock,
    )


class TestScenarios:
    @pytest.mark.asyncio
    async def test_all_files_uploaded_with_single_grant(self, storage, clock, make_files):
        tasks = make_files([10, 20, 30])
        broker = FakeBroker(storage)

        outcome = await _scheduler(broker, storage, clock).run(tasks, make_grant(5000), "target")

        assert outcome.message == "Success. 3 files uploaded. 60 bytes uploaded."
        assert outcome.warnings == []
        assert sorted(storage.uploaded_keys) == [
            "run-1/0/case0-file0.log",
            "run-1/0/case0-file1.log",
            "run-1/0/case0-file2.log",
        ]
        assert broker.calls == []

    @pytest.mark.asyncio
    async def test_missing_file_is_reported_and_skipped(self, storage, clock, make_files, tmp_path):
        tasks = make_files([7]) + [UploadTask(1, tmp_path / "missing.log")]

        outcome = await _scheduler(FakeBroker(storage), storage, clock).run(tasks, make_grant(5000), "t")

        assert outcome.files_uploaded == 1
        assert outcome.bytes_uploaded == 7
        assert outcome.warnings == ["File not found: missing.log"]

    @pytest.mark.asyncio
    async def test_directory_is_treated_as_missing(self, storage, clock, tmp_path):
        folder = tmp_path / "screenshots"
        folder.mkdir()

        outcome = await _scheduler(FakeBroker(storage), storage, clock).run(
            [UploadTask(0, folder)], make_grant(5000), "t"
        )

        assert outcome.files_uploaded == 0
        assert outcome.warnings == ["File not found: screenshots"]
        assert storage.log == []

    @pytest.mark.asyncio
    async def test_renewal_mid_batch_uploads_every_file_once(self, storage, clock, make_files):
        tasks = make_files([1, 2, 3, 4, 5, 6])
        storage.on_upload = lambda path, key: clock.advance(20)
        broker = FakeBroker(storage, [make_grant(10_000, n=2)])

        outcome = await _scheduler(broker, storage, clock, max_active_uploads=2).run(
            tasks, make_grant(1100), "target"
        )

        assert outcome.files_uploaded == 6
        assert outcome.bytes_uploaded == 21
        assert outcome.warnings == []
        assert sorted(storage.uploaded_keys) == sorted(t.object_key("run-1") for t in tasks)
        assert len(storage.uploaded_keys) == len(set(storage.uploaded_keys))
        assert broker.calls == [("target", "run-1")]
        assert len(storage.sessions) == 2
        assert storage.sessions[0].closed

    @pytest.mark.asyncio
    async def test_renewal_failure_stops_batch(self, storage, clock, make_files):
        tasks = make_files([1, 1, 1, 1])
        storage.on_upload = lambda path, key: clock.advance(30)
        broker = FakeBroker(storage, [CredentialError("Unable to connect.")])

        outcome = await _scheduler(broker, storage, clock, max_active_uploads=1).run(
            tasks, make_grant(1100), "target"
        )

        # 1000, 1030 and 1060 are usable; at 1090 the grant is inside the buffer
        assert outcome.files_uploaded == 3
        assert outcome.warnings == ["Unable to connect."]
        assert "run-1/0/case0-file3.log" not in storage.uploaded_keys
        assert len(broker.calls) == 1
        assert storage.sessions[-1].closed


class TestCredentialLifecycle:
    @pytest.mark.asyncio
    async def test_refused_renewal_abandons_pending(self, storage, clock, make_files):
        tasks = make_files([1, 1, 1, 1, 1])
        storage.on_upload = lambda path, key: clock.advance(30)
        broker = FakeBroker(storage, [CredentialError("Upload quota exceeded.", refused=True)])

        outcome = await _scheduler(broker, storage, clock, max_active_uploads=1).run(
            tasks, make_grant(1100), "target"
        )

        assert outcome.files_uploaded == 3
        assert "Upload quota exceeded." in outcome.warnings
        assert len(storage.uploaded_keys) == 3

    @pytest.mark.asyncio
    async def test_expiring_grant_renewed_before_first_dispatch(self, storage, clock, make_files):
        tasks = make_files([4, 4])
        broker = FakeBroker(storage, [make_grant(5000, n=2)])

        outcome = await _scheduler(broker, storage, clock).run(tasks, make_grant(1005), "target")

        assert storage.log[0] == "renew"
        assert outcome.files_uploaded == 2
        assert storage.sessions[0].closed
        assert storage.sessions[1].grant.access_key_id == "AKIA2"

    @pytest.mark.asyncio
    async def test_never_renews_with_transfers_in_flight(self, storage, clock, make_files):
        tasks = make_files([1] * 12)
        storage.on_upload = lambda path, key: clock.advance(15)
        grants = [make_grant(int(clock.now) + 100 * i, n=i) for i in range(2, 12)]
        broker = FakeBroker(storage, grants)

        outcome = await _scheduler(broker, storage, clock, max_active_uploads=3).run(
            tasks, make_grant(1100), "target"
        )

        assert outcome.files_uploaded == 12
        assert broker.calls
        assert all(active == 0 for active in broker.active_at_call)

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_unusable_grants(self, storage, clock, make_files):
        tasks = make_files([1, 1])
        broker = FakeBroker(storage, [make_grant(1010, n=i) for i in range(5)])

        outcome = await _scheduler(broker, storage, clock).run(tasks, make_grant(1000), "target")

        assert len(broker.calls) == UploadScheduler.MAX_UNUSABLE_RENEWALS
        assert outcome.files_uploaded == 0
        assert outcome.warnings == ["Upload credentials expired."]

    @pytest.mark.asyncio
    async def test_renewal_keeps_key_prefix(self, storage, clock, make_files):
        tasks = make_files([1], case_index=2)
        broker = FakeBroker(storage, [make_grant(5000, key_prefix="other", n=2)])

        await _scheduler(broker, storage, clock).run(tasks, make_grant(1000, key_prefix="batch"), "t")

        assert broker.calls == [("t", "batch")]
        assert storage.uploaded_keys == ["batch/2/case2-file0.log"]


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_cap(self, storage, clock, make_files):
        tasks = make_files([1] * 25)
        storage.default_delay = 8

        outcome = await _scheduler(FakeBroker(storage), storage, clock).run(tasks, make_grant(5000), "t")

        assert outcome.files_uploaded == 25
        assert 1 < storage.max_active <= 10

    @pytest.mark.asyncio
    async def test_custom_cap(self, storage, clock, make_files):
        tasks = make_files([1] * 8)
        storage.default_delay = 8

        await _scheduler(FakeBroker(storage), storage, clock, max_active_uploads=2).run(
            tasks, make_grant(5000), "t"
        )

        assert storage.max_active <= 2

    @pytest.mark.asyncio
    async def test_completions_processed_in_finish_order(self, storage, clock, make_files):
        tasks = make_files([1, 2])
        storage.delays = {"case0-file0.log": 20, "case0-file1.log": 1}
        events = EventEmitter()
        completed = []
        events.on("file_complete", lambda task, num_bytes: completed.append(task.file_name))

        scheduler = UploadScheduler(
            FakeBroker(storage),
            session_factory=storage,
            clock=clock,
            events=events,
        )
        await scheduler.run(tasks, make_grant(5000), "t")

        assert completed == ["case0-file1.log", "case0-file0.log"]


class TestTransferFailures:
    @pytest.mark.asyncio
    async def test_service_error_becomes_warnings(self, storage, clock, make_files):
        tasks = make_files([1, 2, 3])

        def fail_second(path, key):
            if path.name == "case0-file1.log":
                raise TransferError(
                    TransferErrorKind.SERVICE_ERROR,
                    detail="Access Denied",
                    message="An error occurred (AccessDenied)",
                )

        storage.on_upload = fail_second

        outcome = await _scheduler(FakeBroker(storage), storage, clock).run(tasks, make_grant(5000), "t")

        assert outcome.files_uploaded == 2
        assert outcome.bytes_uploaded == 4
        assert outcome.warnings == [
            "Access Denied",
            "An error occurred (AccessDenied)",
            "Failed to upload file.",
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_generic_warning(self, storage, clock, make_files):
        tasks = make_files([1, 1])

        def boom(path, key):
            raise RuntimeError("disk on fire")

        storage.on_upload = boom

        outcome = await _scheduler(FakeBroker(storage), storage, clock).run(tasks, make_grant(5000), "t")

        assert outcome.files_uploaded == 0
        assert outcome.warnings == ["Failed to upload file.", "Failed to upload file."]

    @pytest.mark.asyncio
    async def test_every_task_dispatched_or_rejected(self, storage, clock, make_files, tmp_path):
        tasks = make_files([1, 1, 1]) + [UploadTask(3, tmp_path / "gone.png")]

        outcome = await _scheduler(FakeBroker(storage), storage, clock).run(tasks, make_grant(5000), "t")

        dispatched = [entry for entry in storage.log if entry.startswith("upload:")]
        rejected = [w for w in outcome.warnings if w.startswith("File not found")]
        assert len(dispatched) + len(rejected) == len(tasks)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_no_tasks_opens_no_session(self, storage, clock):
        outcome = await _scheduler(FakeBroker(storage), storage, clock).run([], make_grant(5000), "t")

        assert outcome.message == "Success. 0 files uploaded. 0 bytes uploaded."
        assert storage.sessions == []

    @pytest.mark.asyncio
    async def test_session_closed_when_done(self, storage, clock, make_files):
        await _scheduler(FakeBroker(storage), storage, clock).run(make_files([1]), make_grant(5000), "t")

        assert len(storage.sessions) == 1
        assert storage.sessions[0].closed

    @pytest.mark.asyncio
    async def test_emits_events(self, storage, clock, make_files, tmp_path):
        tasks = make_files([5]) + [UploadTask(1, tmp_path / "nope.txt")]
        events = EventEmitter()
        seen = []
        events.on("file_start", lambda task, key: seen.append(("start", key)))
        events.on("file_complete", lambda task, n: seen.append(("complete", n)))
        events.on("file_fail", lambda task, warnings: seen.append(("fail", warnings)))
        events.on("finish", lambda outcome: seen.append(("finish", outcome.files_uploaded)))

        scheduler = UploadScheduler(FakeBroker(storage), session_factory=storage, clock=clock, events=events)
        await scheduler.run(tasks, make_grant(5000), "t")

        assert ("start", "run-1/0/case0-file0.log") in seen
        assert ("complete", 5) in seen
        assert ("fail", ["File not found: nope.txt"]) in seen
        assert seen[-1] == ("finish", 1)


class TestSessionFailures:
    @pytest.mark.asyncio
    async def test_session_failure_on_renewal_keeps_outcome(self, storage, clock, make_files):
        tasks = make_files([1, 1, 1, 1, 1])
        storage.on_upload = lambda path, key: clock.advance(30)
        broker = FakeBroker(storage, [make_grant(10_000, n=2)])

        def factory(grant):
            if storage.sessions:
                raise RuntimeError("Provided region_name 'us east 1' doesn't match a supported format.")
            return storage(grant)

        scheduler = UploadScheduler(
            broker,
            config=ReporterConfig(max_active_uploads=1),
            session_factory=factory,
            clock=clock,
        )
        outcome = await scheduler.run(tasks, make_grant(1100), "target")

        assert outcome.files_uploaded == 3
        assert outcome.warnings == ["Failed to upload file."]
        assert len(broker.calls) == 1
        assert storage.sessions[0].closed

    @pytest.mark.asyncio
    async def test_session_failure_at_start(self, storage, clock, make_files):
        def factory(grant):
            raise RuntimeError("bad region")

        scheduler = UploadScheduler(FakeBroker(storage), session_factory=factory, clock=clock)
        outcome = await scheduler.run(make_files([1, 1]), make_grant(5000), "t")

        assert outcome.files_uploaded == 0
        assert outcome.warnings == ["Failed to upload file."]
        assert storage.log == []

    @pytest.mark.asyncio
    async def test_cancelled_run_stops_transfers(self, storage, clock, make_files):
        storage.default_delay = 1000
        scheduler = _scheduler(FakeBroker(storage), storage, clock)
        run = asyncio.create_task(scheduler.run(make_files([1, 1, 1]), make_grant(5000), "t"))
        for _ in range(10):
            await asyncio.sleep(0)
        assert storage.active > 0

        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

        assert storage.active == 0
        assert storage.sessions[0].closed
