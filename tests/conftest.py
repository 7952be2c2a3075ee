"""Shared fixtures for fieldsync tests."""

import logging
from pathlib import Path

import pytest

from fieldsync.config import get_settings
from fieldsync.sync.queue import PhotoCapture, PhotoQueue


def make_capture(n: int = 0, **overrides) -> PhotoCapture:
    """Build a small photo capture for tests."""
    fields = {
        "project_id": "proj-1",
        "organization_id": "org-1",
        "uploaded_by": "user-1",
        "file": f"jpeg-bytes-{n}".encode(),
        "file_name": f"photo_{n}.jpg",
        "mime_type": "image/jpeg",
    }
    fields.update(overrides)
    return PhotoCapture(**fields)


@pytest.fixture
def queue(tmp_path: Path):
    """A photo queue backed by a temporary SQLite file."""
    q = PhotoQueue(tmp_path / "queue.db")
    yield q
    q.close()


@pytest.fixture
def settings_env(tmp_path: Path, monkeypatch):
    """Point settings at a temporary data dir and reset the cache."""
    monkeypatch.setenv("FIELDSYNC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("FIELDSYNC_LOG_LEVEL", "ERROR")
    get_settings.cache_clear()
    yield tmp_path / "data"
    get_settings.cache_clear()
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
