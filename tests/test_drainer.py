"""Tests for the drain engine.

Uses an in-memory fake backend so every remote step can be made to
succeed or fail per photo.
"""

import asyncio
import json

import httpx
import pytest

from fieldsync.errors import EnrichmentError, PersistenceError, TransferError
from fieldsync.sync.backend import BackendClient
from fieldsync.sync.connectivity import ConnectivityMonitor
from fieldsync.sync.drainer import DrainSummary, PhotoSync, build_object_path
from fieldsync.sync.records import PhotoAnalysis

from tests.conftest import make_capture


class FakeBackend:
    """Stand-in for BackendClient recording every call."""

    def __init__(self) -> None:
        self.uploaded: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.records: list = []
        self.classify_calls: list[tuple[str, str]] = []
        self.fail_upload_for: set[str] = set()
        self.fail_insert_for: set[str] = set()
        self.fail_delete = False
        self.classify_error = False
        self.analysis = PhotoAnalysis(
            ai_category="damage",
            ai_room_type="kitchen",
            ai_damage_type="water",
            ai_description="Water stain on ceiling",
            ai_tags=["ceiling", "stain"],
            ai_confidence=0.92,
        )
        self.upload_gate: asyncio.Event | None = None
        self.on_upload = None

    def public_url(self, path: str) -> str:
        return f"https://backend.test/public/{path}"

    async def upload_object(self, path: str, data: bytes, content_type: str) -> str:
        if self.on_upload is not None:
            self.on_upload()
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        if data.decode() in self.fail_upload_for:
            raise TransferError("connection reset")
        self.uploaded[path] = data
        return path

    async def delete_object(self, path: str) -> None:
        if self.fail_delete:
            raise TransferError("storage unavailable")
        self.deleted.append(path)
        self.uploaded.pop(path, None)

    async def classify_photo(self, image_url: str, project_id: str) -> PhotoAnalysis:
        self.classify_calls.append((image_url, project_id))
        if self.classify_error:
            raise EnrichmentError("model timeout")
        return self.analysis

    async def insert_photo_record(self, record) -> None:
        if record.file_name in self.fail_insert_for:
            raise PersistenceError("row level security violation")
        self.records.append(record)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sync(queue, backend):
    return PhotoSync(queue, backend, ConnectivityMonitor(initial=True), retry_base_delay=60.0)


def run(coro):
    return asyncio.run(coro)


class TestDrain:
    """Draining commits photos and removes them from the queue."""

    def test_all_succeed_empties_queue(self, sync, queue, backend):
        for i in range(4):
            queue.enqueue(make_capture(i, room_type="Kitchen"))

        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=4, failed=0)
        assert queue.count() == 0
        assert len(backend.records) == 4
        assert len(backend.uploaded) == 4
        assert sorted(r.file_name for r in backend.records) == [f"photo_{i}.jpg" for i in range(4)]

    def test_metadata_failure_keeps_only_that_record(self, sync, queue, backend):
        ids = [queue.enqueue(make_capture(i, room_type="Kitchen")) for i in range(4)]
        backend.fail_insert_for = {"photo_2.jpg"}

        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=3, failed=1)
        assert queue.count() == 1
        assert [item.id for item in queue.list_queued()] == [ids[2]]

    def test_transfer_failure_keeps_record_and_continues(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Bath"))
        failing = queue.enqueue(make_capture(1, room_type="Bath"))
        queue.enqueue(make_capture(2, room_type="Bath"))
        backend.fail_upload_for = {"jpeg-bytes-1"}

        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=2, failed=1)
        assert [item.id for item in queue.list_queued()] == [failing]
        assert len(backend.records) == 2

    def test_failed_record_succeeds_on_next_drain(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}
        run(sync.drain())
        assert queue.count() == 1

        backend.fail_insert_for = set()
        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=1, failed=0)
        assert queue.count() == 0
        assert len(backend.records) == 1

    def test_empty_queue_returns_empty_summary(self, sync):
        assert run(sync.drain()) == DrainSummary()

    def test_offline_drain_does_nothing(self, queue, backend):
        sync = PhotoSync(queue, backend, ConnectivityMonitor(initial=False))
        queue.enqueue(make_capture(0))

        assert run(sync.drain()) == DrainSummary()
        assert queue.count() == 1
        assert backend.uploaded == {}

    def test_records_enqueued_during_drain_wait_for_next_drain(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Bath"))

        def enqueue_mid_drain():
            if queue.count() < 2:
                queue.enqueue(make_capture(9, room_type="Bath"))

        backend.on_upload = enqueue_mid_drain

        summary = run(sync.drain())

        assert summary.succeeded == 1
        assert queue.count() == 1
        assert next(iter(queue.list_queued())).file_name == "photo_9.jpg"


class TestInFlightGuard:
    """Only one drain runs at a time."""

    def test_concurrent_trigger_is_dropped(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Bath"))

        async def scenario():
            backend.upload_gate = asyncio.Event()
            first = asyncio.create_task(sync.drain())
            await asyncio.sleep(0)
            assert sync.is_processing is True

            second = await sync.drain()

            backend.upload_gate.set()
            first_summary = await first
            return first_summary, second

        first_summary, second = run(scenario())

        assert second is None
        assert first_summary == DrainSummary(succeeded=1, failed=0)
        assert len(backend.records) == 1
        assert sync.is_processing is False


class TestEnrichment:
    """Classification is best-effort."""

    def test_auto_detect_uses_classifier(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Auto-detect"))

        run(sync.drain())

        assert len(backend.classify_calls) == 1
        image_url, project_id = backend.classify_calls[0]
        assert image_url.startswith("https://backend.test/public/org-1/proj-1/")
        assert project_id == "proj-1"
        record = backend.records[0]
        assert record.ai_damage_type == "water"
        assert record.ai_tags == ["ceiling", "stain"]
        assert record.ai_confidence == 0.92

    def test_missing_room_type_uses_classifier(self, sync, queue, backend):
        queue.enqueue(make_capture(0))

        run(sync.drain())

        assert len(backend.classify_calls) == 1

    def test_explicit_room_type_skips_classifier(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Master Bedroom"))

        run(sync.drain())

        assert backend.classify_calls == []
        record = backend.records[0]
        assert record.ai_room_type == "master bedroom"
        assert record.ai_category is None
        assert record.ai_confidence is None

    def test_classifier_failure_does_not_fail_record(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Auto-detect"))
        backend.classify_error = True

        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=1, failed=0)
        assert queue.count() == 0
        record = backend.records[0]
        assert record.ai_category is None
        assert record.ai_room_type is None
        assert record.ai_tags is None


class TestOrphanCleanup:
    """A stored binary whose row insert failed is deleted again."""

    def test_orphan_deleted_after_persistence_failure(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}

        run(sync.drain())

        assert len(backend.deleted) == 1
        assert backend.uploaded == {}
        assert queue.count() == 1

    def test_delete_failure_is_tolerated(self, sync, queue, backend):
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}
        backend.fail_delete = True

        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=0, failed=1)
        assert queue.count() == 1

    def test_cleanup_can_be_disabled(self, queue, backend):
        sync = PhotoSync(queue, backend, ConnectivityMonitor(), cleanup_orphans=False)
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}

        run(sync.drain())

        assert backend.deleted == []
        assert len(backend.uploaded) == 1


class TestConnectivityTrigger:
    """Coming back online starts a drain."""

    def test_online_transition_drains_queue(self, queue, backend):
        monitor = ConnectivityMonitor(initial=False)
        sync = PhotoSync(queue, backend, monitor)
        queue.enqueue(make_capture(0, room_type="Bath"))

        async def scenario():
            await sync.start()
            assert queue.count() == 1

            monitor.set_online(True)
            for _ in range(10):
                await asyncio.sleep(0)
                if queue.count() == 0:
                    break
            await sync.stop()

        run(scenario())

        assert queue.count() == 0
        assert len(backend.records) == 1

    def test_offline_transition_does_not_drain(self, queue, backend):
        monitor = ConnectivityMonitor(initial=True)
        sync = PhotoSync(queue, backend, monitor)

        async def scenario():
            await sync.start()
            queue.enqueue(make_capture(0, room_type="Bath"))
            monitor.set_online(False)
            await asyncio.sleep(0)
            await sync.stop()

        run(scenario())

        assert queue.count() == 1
        assert backend.uploaded == {}

    def test_stop_unsubscribes(self, queue, backend):
        monitor = ConnectivityMonitor(initial=False)
        sync = PhotoSync(queue, backend, monitor)

        async def scenario():
            await sync.start()
            await sync.stop()
            queue.enqueue(make_capture(0, room_type="Bath"))
            monitor.set_online(True)
            await asyncio.sleep(0)

        run(scenario())

        assert queue.count() == 1


class TestRetryBackoff:
    """Failed drains schedule a bounded retry."""

    def test_failure_schedules_retry_with_growing_delay(self, queue, backend):
        sync = PhotoSync(
            queue, backend, ConnectivityMonitor(), retry_base_delay=0.01, retry_max_delay=0.02
        )
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}

        async def scenario():
            await sync.drain()
            assert sync._retry_task is not None
            backend.fail_insert_for = set()
            await asyncio.sleep(0.05)
            await sync.stop()

        run(scenario())

        assert queue.count() == 0
        assert len(backend.records) == 1

    def test_clean_drain_schedules_nothing(self, sync, queue):
        queue.enqueue(make_capture(0, room_type="Bath"))

        async def scenario():
            await sync.drain()
            return sync._retry_task

        assert run(scenario()) is None


class TestSummary:
    """Summary notifications mirror the user-facing messages."""

    def test_listener_receives_summary(self, sync, queue, backend):
        received = []
        sync.on_summary(received.append)
        queue.enqueue(make_capture(0, room_type="Bath"))
        queue.enqueue(make_capture(1, room_type="Bath"))
        backend.fail_insert_for = {"photo_1.jpg"}

        run(sync.drain())

        assert received == [DrainSummary(succeeded=1, failed=1)]
        assert received[0].title == "Sync Complete"
        assert received[0].message == "1 photo uploaded successfully, 1 failed"

    def test_all_failed_message(self):
        summary = DrainSummary(succeeded=0, failed=2)
        assert summary.title == "Sync Failed"
        assert summary.message == "Failed to upload 2 photos. Will retry when online."

    def test_plural_success_message(self):
        assert DrainSummary(succeeded=3).message == "3 photos uploaded successfully"

    def test_nothing_attempted(self):
        assert DrainSummary().title is None
        assert DrainSummary().message is None

    def test_listener_error_does_not_break_drain(self, sync, queue):
        def broken(_summary):
            raise RuntimeError("toast failed")

        sync.on_summary(broken)
        queue.enqueue(make_capture(0, room_type="Bath"))

        assert run(sync.drain()) == DrainSummary(succeeded=1, failed=0)


class TestObjectPath:
    """Storage paths are scoped by organization and project."""

    def test_path_format(self, queue):
        item = queue.get(queue.enqueue(make_capture(0, file_name="IMG_0001.HEIC")))

        path = build_object_path(item, now_ms=1700000000000)

        org, project, name = path.split("/")
        assert (org, project) == ("org-1", "proj-1")
        assert name.startswith("1700000000000-")
        assert name.endswith(".HEIC")

    def test_paths_do_not_collide(self, queue):
        item = queue.get(queue.enqueue(make_capture(0)))
        paths = {build_object_path(item, now_ms=1) for _ in range(50)}
        assert len(paths) == 50


class TestRecordIsolation:
    """An unexpected error on one photo does not stop the ones behind it."""

    def test_unexpected_error_counts_as_failure(self, sync, queue, backend):
        broken = queue.enqueue(make_capture(0, room_type="Bath"))
        queue.enqueue(make_capture(1, room_type="Bath"))
        calls = []

        def explode_first_upload():
            calls.append(1)
            if len(calls) == 1:
                raise KeyError("bucket")

        backend.on_upload = explode_first_upload

        summary = run(sync.drain())

        assert summary == DrainSummary(succeeded=1, failed=1)
        assert [item.id for item in queue.list_queued()] == [broken]
        assert [r.file_name for r in backend.records] == ["photo_1.jpg"]

    def test_bad_mime_type_ahead_of_good_photo(self, queue):
        inserted = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/rest/v1/"):
                inserted.append(json.loads(request.content)["file_name"])
                return httpx.Response(201)
            return httpx.Response(200, json={})

        broken = queue.enqueue(make_capture(0, room_type="Bath", mime_type="image/jpég"))
        queue.enqueue(make_capture(1, room_type="Bath"))

        async def scenario():
            async with BackendClient(
                base_url="https://backend.test",
                api_key="anon-key",
                transport=httpx.MockTransport(handler),
            ) as client:
                sync = PhotoSync(queue, client, ConnectivityMonitor(), retry_base_delay=60.0)
                summary = await sync.drain()
                await sync.stop()
                return summary

        assert run(scenario()) == DrainSummary(succeeded=1, failed=1)
        assert inserted == ["photo_1.jpg"]
        assert [item.id for item in queue.list_queued()] == [broken]


class TestStopEndsRetries:
    """stop() ends the retry cycle, including a retry drain already running."""

    def test_stop_cancels_running_retry_drain(self, queue, backend):
        sync = PhotoSync(
            queue, backend, ConnectivityMonitor(), retry_base_delay=0.01, retry_max_delay=0.01
        )
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}
        attempts = []

        def count_attempt():
            attempts.append(1)

        async def scenario():
            await sync.drain()
            backend.on_upload = count_attempt
            backend.upload_gate = asyncio.Event()
            for _ in range(100):
                await asyncio.sleep(0.005)
                if attempts:
                    break
            assert sync.is_processing

            await sync.stop()
            backend.upload_gate.set()
            await asyncio.sleep(0.1)

        run(scenario())

        assert attempts == [1]
        assert sync._retry_task is None
        assert not sync.is_processing
        assert queue.count() == 1

    def test_no_retry_scheduled_after_stop(self, queue, backend):
        sync = PhotoSync(queue, backend, ConnectivityMonitor(), retry_base_delay=0.01)
        queue.enqueue(make_capture(0, room_type="Bath"))
        backend.fail_insert_for = {"photo_0.jpg"}

        async def scenario():
            await sync.stop()
            summary = await sync.drain()
            return summary, sync._retry_task

        summary, retry_task = run(scenario())

        assert summary == DrainSummary(succeeded=0, failed=1)
        assert retry_task is None
