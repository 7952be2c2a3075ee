"""Sync module for offline photo queueing and upload."""

from fieldsync.sync.backend import BackendClient
from fieldsync.sync.connectivity import ConnectivityMonitor
from fieldsync.sync.drainer import DrainSummary, PhotoSync
from fieldsync.sync.queue import PhotoCapture, PhotoQueue, QueuedUpload, QueueSnapshot
from fieldsync.sync.records import PhotoAnalysis, PhotoRecord

__all__ = [
    "BackendClient",
    "ConnectivityMonitor",
    "DrainSummary",
    "PhotoAnalysis",
    "PhotoCapture",
    "PhotoQueue",
    "PhotoRecord",
    "PhotoSync",
    "QueueSnapshot",
    "QueuedUpload",
]
