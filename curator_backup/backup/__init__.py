"""Snapshot, archive and import engine."""

from .codec import SnapshotCodec, SNAPSHOT_FORMAT_VERSION
from .archive import ArchiveStore
from .manager import BackupService
from .reconciler import ImportReconciler
from .lifecycle import DataLifecycle

__all__ = [
    "SnapshotCodec",
    "SNAPSHOT_FORMAT_VERSION",
    "ArchiveStore",
    "BackupService",
    "ImportReconciler",
    "DataLifecycle",
]
