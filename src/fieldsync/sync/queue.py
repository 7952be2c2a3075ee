"""SQLite-backed persistent queue for offline photo uploads."""

import mimetypes
import secrets
import sqlite3
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from fieldsync.logging import log_photo_queued, sync_logger

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class PhotoCapture:
    """A photo taken in the field, before it gets a queue identity."""

    project_id: str
    organization_id: str
    uploaded_by: str
    file: bytes
    file_name: str
    mime_type: str
    caption: str | None = None
    notes: str | None = None
    is_before_photo: bool = False
    is_after_photo: bool = False
    room_type: str | None = None
    location_lat: float | None = None
    location_lng: float | None = None

    @property
    def file_size(self) -> int:
        """Size of the binary payload in bytes."""
        return len(self.file)

    @classmethod
    def from_file(
        cls,
        filepath: Path,
        project_id: str,
        organization_id: str,
        uploaded_by: str,
        **metadata: Any,
    ) -> "PhotoCapture":
        """Read a photo from disk.

        Args:
            filepath: Image file to read
            project_id: Owning project
            organization_id: Owning organization
            uploaded_by: Uploading user
            **metadata: Any optional PhotoCapture field (caption, room_type, ...)
        """
        mime_type = metadata.pop("mime_type", None) or (
            mimetypes.guess_type(filepath.name)[0] or "application/octet-stream"
        )
        return cls(
            project_id=project_id,
            organization_id=organization_id,
            uploaded_by=uploaded_by,
            file=filepath.read_bytes(),
            file_name=filepath.name,
            mime_type=mime_type,
            **metadata,
        )


@dataclass(frozen=True)
class QueuedUpload:
    """A photo waiting in the upload queue.

    Records are immutable; they leave the queue only once the backend has
    confirmed both the storage write and the metadata write.
    """

    id: str
    project_id: str
    organization_id: str
    uploaded_by: str
    file: bytes
    file_name: str
    file_size: int
    mime_type: str
    caption: str | None
    notes: str | None
    is_before_photo: bool
    is_after_photo: bool
    room_type: str | None
    location_lat: float | None
    location_lng: float | None
    timestamp: int  # epoch milliseconds

    @property
    def extension(self) -> str:
        """File extension taken from the original file name."""
        return self.file_name.rsplit(".", 1)[-1]


def generate_queue_id(now_ms: int | None = None) -> str:
    """Build a queue id of the form ``<epoch-ms>-<random base36>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(7))
    return f"{now_ms}-{suffix}"


class QueueSnapshot:
    """Restartable view over the records queued when the snapshot was taken.

    Only the ids are captured up front. Payloads are read one at a time while
    iterating, and records removed in the meantime are skipped.
    """

    def __init__(self, queue: "PhotoQueue", ids: tuple[str, ...]) -> None:
        self._queue = queue
        self._ids = ids

    @property
    def ids(self) -> tuple[str, ...]:
        return self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[QueuedUpload]:
        for item_id in self._ids:
            item = self._queue.get(item_id)
            if item is not None:
                yield item


class PhotoQueue:
    """SQLite-backed persistent queue for offline photo uploads.

    Photos are queued locally when the backend is unreachable, or when an
    upload attempt fails, and replayed when connectivity is restored. The
    queue persists across sessions.
    """

    _COLUMNS = (
        "id, project_id, organization_id, uploaded_by, file, file_name, file_size, "
        "mime_type, caption, notes, is_before_photo, is_after_photo, room_type, "
        "location_lat, location_lng, timestamp"
    )

    def __init__(self, db_path: Path) -> None:
        """Initialize the photo queue.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._create_table()

    def _create_table(self) -> None:
        """Create the queue table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS photo_queue (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                uploaded_by TEXT NOT NULL,
                file BLOB NOT NULL,
                file_name TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                mime_type TEXT NOT NULL,
                caption TEXT,
                notes TEXT,
                is_before_photo INTEGER NOT NULL DEFAULT 0,
                is_after_photo INTEGER NOT NULL DEFAULT 0,
                room_type TEXT,
                location_lat REAL,
                location_lng REAL,
                timestamp INTEGER NOT NULL
            )
        """)
        self._conn.commit()

    def enqueue(self, photo: PhotoCapture) -> str:
        """Persist a photo to the queue.

        Args:
            photo: The captured photo and its metadata

        Returns:
            Queue item ID
        """
        timestamp = int(time.time() * 1000)
        attempts = 0
        while True:
            item_id = generate_queue_id(timestamp)
            try:
                self._conn.execute(
                    f"INSERT INTO photo_queue ({self._COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        item_id,
                        photo.project_id,
                        photo.organization_id,
                        photo.uploaded_by,
                        sqlite3.Binary(photo.file),
                        photo.file_name,
                        photo.file_size,
                        photo.mime_type,
                        photo.caption,
                        photo.notes,
                        int(photo.is_before_photo),
                        int(photo.is_after_photo),
                        photo.room_type,
                        photo.location_lat,
                        photo.location_lng,
                        timestamp,
                    ),
                )
            except sqlite3.IntegrityError:
                # Same millisecond and same random suffix
                attempts += 1
                if attempts >= 3:
                    raise
                continue
            self._conn.commit()
            log_photo_queued(sync_logger(), item_id, photo.project_id, photo.file_size)
            return item_id

    def get(self, item_id: str) -> QueuedUpload | None:
        """Load a single queued record, or None if it has been removed."""
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM photo_queue WHERE id = ?",
            (item_id,),
        ).fetchone()
        return self._row_to_item(row) if row else None

    def list_queued(self) -> QueueSnapshot:
        """Snapshot the queue, oldest record first.

        Returns:
            A lazily loaded, re-iterable QueueSnapshot
        """
        cursor = self._conn.execute("SELECT id FROM photo_queue ORDER BY timestamp ASC, rowid ASC")
        return QueueSnapshot(self, tuple(row["id"] for row in cursor.fetchall()))

    def dequeue(self, item_id: str) -> None:
        """Remove a record. Removing an unknown id is a no-op.

        Args:
            item_id: Queue item ID
        """
        self._conn.execute("DELETE FROM photo_queue WHERE id = ?", (item_id,))
        self._conn.commit()

    def count(self) -> int:
        """Number of queued records."""
        row = self._conn.execute("SELECT COUNT(*) AS count FROM photo_queue").fetchone()
        return row["count"]

    def clear(self) -> int:
        """Drop every queued record.

        Returns:
            Number of records removed
        """
        cursor = self._conn.execute("DELETE FROM photo_queue")
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> QueuedUpload:
        return QueuedUpload(
            id=row["id"],
            project_id=row["project_id"],
            organization_id=row["organization_id"],
            uploaded_by=row["uploaded_by"],
            file=bytes(row["file"]),
            file_name=row["file_name"],
            file_size=row["file_size"],
            mime_type=row["mime_type"],
            caption=row["caption"],
            notes=row["notes"],
            is_before_photo=bool(row["is_before_photo"]),
            is_after_photo=bool(row["is_after_photo"]),
            room_type=row["room_type"],
            location_lat=row["location_lat"],
            location_lng=row["location_lng"],
            timestamp=row["timestamp"],
        )
