"""Structured JSON logging for fieldsync.

Provides audit-friendly logging with contextual fields for queue, upload
and drain events. Photo payloads and credentials are never logged.

Usage:
    from fieldsync.logging import setup_logging, get_logger

    setup_logging("INFO")
    log = get_logger("fieldsync.sync")
    log.info("photo_queued", extra={"queue_id": "...", "file_size": 50000})
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from fieldsync import __version__

# Device identifier attached to every record once set
_device_id: str | None = None


class FieldSyncJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds client context to all log records."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        """Add standard fields to every log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        log_record["client_version"] = __version__
        if _device_id:
            log_record["device_id"] = _device_id

        if "message" not in log_record and record.getMessage():
            log_record["message"] = record.getMessage()

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format time as ISO 8601."""
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat()


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    device_id: str | None = None,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure root logger with JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for rotating file handler
        device_id: Identifier of this field device
        max_bytes: Max size per log file for rotation
        backup_count: Number of backup files to keep
    """
    global _device_id
    _device_id = device_id

    formatter = FieldSyncJsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # JSON to stderr so stdout stays clean for CLI output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


@lru_cache(maxsize=32)
def get_logger(name: str) -> logging.Logger:
    """Get a named logger.

    Args:
        name: Logger name (e.g., 'fieldsync.sync', 'fieldsync.schedule')
    """
    return logging.getLogger(name)


def sync_logger() -> logging.Logger:
    """Get logger for queue and upload events."""
    return get_logger("fieldsync.sync")


def connectivity_logger() -> logging.Logger:
    """Get logger for online/offline transitions."""
    return get_logger("fieldsync.connectivity")


# --- Audit Event Functions ---


def log_photo_queued(
    logger: logging.Logger,
    queue_id: str,
    project_id: str,
    file_size: int,
) -> None:
    """Log a photo being persisted to the offline queue."""
    logger.info(
        "Photo queued",
        extra={
            "event": "photo_queued",
            "queue_id": queue_id,
            "project_id": project_id,
            "file_size": file_size,
        },
    )


def log_upload_success(
    logger: logging.Logger,
    queue_id: str,
    file_path: str,
    elapsed_ms: float,
) -> None:
    """Log a queued photo fully committed to the backend."""
    logger.info(
        "Upload successful",
        extra={
            "event": "upload_success",
            "queue_id": queue_id,
            "file_path": file_path,
            "elapsed_ms": elapsed_ms,
        },
    )


def log_upload_failed(
    logger: logging.Logger,
    queue_id: str,
    stage: str,
    error: str,
) -> None:
    """Log a failed upload attempt.

    Args:
        logger: Logger instance
        queue_id: Queue record identifier
        stage: Which step failed (transfer, persist, unexpected)
        error: Error message (sanitized - no credentials)
    """
    logger.warning(
        "Upload failed",
        extra={
            "event": "upload_failed",
            "queue_id": queue_id,
            "stage": stage,
            "error": error,
        },
    )


def log_drain_summary(
    logger: logging.Logger,
    succeeded: int,
    failed: int,
) -> None:
    """Log the outcome of a drain pass."""
    logger.info(
        "Drain finished",
        extra={
            "event": "drain_finished",
            "succeeded": succeeded,
            "failed": failed,
        },
    )


def log_connectivity_change(logger: logging.Logger, online: bool) -> None:
    """Log an online/offline transition."""
    logger.info(
        "Connectivity changed",
        extra={
            "event": "connectivity_change",
            "online": online,
        },
    )
