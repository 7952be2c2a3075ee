"""Drain engine replaying queued photos against the backend."""

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError

from fieldsync.errors import EnrichmentError, PersistenceError, TransferError
from fieldsync.logging import (
    log_drain_summary,
    log_upload_failed,
    log_upload_success,
    sync_logger,
)
from fieldsync.sync.backend import BackendClient
from fieldsync.sync.connectivity import ConnectivityMonitor
from fieldsync.sync.queue import PhotoCapture, PhotoQueue, QueuedUpload
from fieldsync.sync.records import PhotoAnalysis, PhotoRecord, needs_classification

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _plural(count: int) -> str:
    return "s" if count != 1 else ""


@dataclass(frozen=True)
class DrainSummary:
    """Aggregate result of one drain pass."""

    succeeded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def title(self) -> str | None:
        """Notification title, or None when nothing was attempted."""
        if self.succeeded > 0:
            return "Sync Complete"
        if self.failed > 0:
            return "Sync Failed"
        return None

    @property
    def message(self) -> str | None:
        """Notification body, or None when nothing was attempted."""
        if self.succeeded > 0:
            text = f"{self.succeeded} photo{_plural(self.succeeded)} uploaded successfully"
            if self.failed > 0:
                text += f", {self.failed} failed"
            return text
        if self.failed > 0:
            return (
                f"Failed to upload {self.failed} photo{_plural(self.failed)}. "
                "Will retry when online."
            )
        return None


def build_object_path(item: QueuedUpload, now_ms: int | None = None) -> str:
    """Storage path for a queued photo.

    Format: {organization_id}/{project_id}/{epoch_ms}-{random}.{ext}
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(7))
    return f"{item.organization_id}/{item.project_id}/{now_ms}-{suffix}.{item.extension}"


class PhotoSync:
    """Offline photo sync for one application session.

    Owns the local queue, the backend client, the connectivity monitor
    and the in-flight flag. Only one drain runs at a time; a trigger that
    arrives while a drain is running is dropped, not deferred.

    Example:
        sync = PhotoSync(queue, backend, monitor)
        sync.on_summary(lambda s: print(s.message))
        await sync.start()
        ...
        await sync.stop()
    """

    def __init__(
        self,
        queue: PhotoQueue,
        backend: BackendClient,
        connectivity: ConnectivityMonitor,
        retry_base_delay: float = 5.0,
        retry_max_delay: float = 300.0,
        cleanup_orphans: bool = True,
    ) -> None:
        """Initialize the sync session.

        Args:
            queue: Local durable photo queue
            backend: Backend client used for storage, classification and rows
            connectivity: Source of online/offline transitions
            retry_base_delay: First delay before re-draining after failures
            retry_max_delay: Upper bound for the retry delay
            cleanup_orphans: Delete the stored binary when its row insert fails
        """
        self.queue = queue
        self.backend = backend
        self.connectivity = connectivity
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.cleanup_orphans = cleanup_orphans

        self._in_flight = False
        self._retry_attempt = 0
        self._stopped = False
        self._retry_task: asyncio.Task | None = None
        self._drain_tasks: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None
        self._summary_callbacks: list[Callable[[DrainSummary], None]] = []

    @property
    def is_processing(self) -> bool:
        """True while a drain pass is running."""
        return self._in_flight

    @property
    def queue_count(self) -> int:
        """Number of photos waiting for upload."""
        return self.queue.count()

    def on_summary(self, callback: Callable[[DrainSummary], None]) -> None:
        """Register callback for drain outcomes that need a notification.

        Args:
            callback: Called with the DrainSummary after a drain that attempted uploads
        """
        self._summary_callbacks.append(callback)

    def _notify_summary(self, summary: DrainSummary) -> None:
        for callback in self._summary_callbacks:
            try:
                callback(summary)
            except Exception as e:
                logger.error("Summary callback failed: %s", e)

    def enqueue(self, photo: PhotoCapture) -> str:
        """Queue a photo for upload."""
        return self.queue.enqueue(photo)

    async def start(self) -> None:
        """Subscribe to connectivity changes and drain whatever is pending."""
        self._stopped = False
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.observe(self._handle_connectivity)
        await self.drain()

    def _handle_connectivity(self, online: bool) -> None:
        """Kick off a drain when the device comes back online."""
        if not online:
            return
        self._retry_attempt = 0
        task = asyncio.get_running_loop().create_task(self.drain())
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def drain(self) -> DrainSummary | None:
        """Upload every photo queued at call time.

        Returns:
            DrainSummary of the pass, or None if another drain was running
        """
        if self._in_flight:
            logger.debug("Drain already in progress, trigger dropped")
            return None
        if not self.connectivity.is_online:
            return DrainSummary()

        self._in_flight = True
        try:
            snapshot = self.queue.list_queued()
            if len(snapshot) == 0:
                return DrainSummary()

            logger.info("Uploading %d queued photo%s", len(snapshot), _plural(len(snapshot)))

            succeeded = 0
            failed = 0
            for item in snapshot:
                try:
                    committed = await self._process(item)
                except Exception as e:
                    log_upload_failed(sync_logger(), item.id, "unexpected", str(e))
                    committed = False
                if committed:
                    succeeded += 1
                else:
                    failed += 1
        finally:
            self._in_flight = False

        summary = DrainSummary(succeeded=succeeded, failed=failed)
        log_drain_summary(sync_logger(), summary.succeeded, summary.failed)
        self._notify_summary(summary)
        self._schedule_retry(summary)
        return summary

    async def _process(self, item: QueuedUpload) -> bool:
        """Commit one queued photo. Returns True once it has left the queue."""
        started = time.monotonic()
        file_path = build_object_path(item)

        try:
            await self.backend.upload_object(file_path, item.file, item.mime_type)
        except TransferError as e:
            log_upload_failed(sync_logger(), item.id, "transfer", str(e))
            return False

        analysis = await self._enrich(item, file_path)

        try:
            record = PhotoRecord.build(item, file_path, analysis)
            await self.backend.insert_photo_record(record)
        except (PersistenceError, ValidationError) as e:
            log_upload_failed(sync_logger(), item.id, "persist", str(e))
            await self._remove_orphan(file_path)
            return False

        self.queue.dequeue(item.id)
        log_upload_success(
            sync_logger(), item.id, file_path, (time.monotonic() - started) * 1000
        )
        return True

    async def _enrich(self, item: QueuedUpload, file_path: str) -> PhotoAnalysis:
        """Best-effort classification; failures leave the fields null."""
        analysis = PhotoAnalysis.from_room_hint(item.room_type)
        if not needs_classification(item.room_type):
            return analysis
        try:
            result = await self.backend.classify_photo(
                self.backend.public_url(file_path), item.project_id
            )
        except EnrichmentError as e:
            logger.warning("AI analysis failed (non-blocking): queue_id=%s, error=%s", item.id, e)
            return analysis
        return analysis.merged(result)

    async def _remove_orphan(self, file_path: str) -> None:
        """Delete a binary whose row never made it into the table."""
        if not self.cleanup_orphans:
            return
        try:
            await self.backend.delete_object(file_path)
        except TransferError as e:
            logger.warning("Orphaned photo left in storage: path=%s, error=%s", file_path, e)

    def _schedule_retry(self, summary: DrainSummary) -> None:
        """Schedule a follow-up drain with bounded exponential backoff."""
        if summary.failed == 0:
            self._retry_attempt = 0
            return
        if self._stopped:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return

        delay = min(self.retry_base_delay * (2 ** self._retry_attempt), self.retry_max_delay)
        self._retry_attempt += 1
        logger.info("Retrying failed uploads in %.1fs", delay)
        self._retry_task = asyncio.get_running_loop().create_task(self._retry_after(delay))

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._stopped or not self.connectivity.is_online:
            return
        # Detach so the follow-up drain can schedule its own retry. stop()
        # still cancels it through _drain_tasks
        task = asyncio.current_task()
        self._retry_task = None
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)
        await self.drain()

    async def stop(self) -> None:
        """Unsubscribe from connectivity and cancel pending retries."""
        self._stopped = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        pending = [t for t in (self._retry_task, *self._drain_tasks) if t and not t.done()]
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._retry_task = None
