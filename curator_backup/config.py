"""Configuration management for curator-backup."""

import os
from dataclasses import dataclass


ARCHIVE_POLICIES = {"latest", "first"}
LIVE_BACKENDS = {"memory", "json"}


@dataclass(frozen=True)
class BackupConfig:
    """Snapshot and archive storage configuration.

    archive_policy decides what happens when an already archived key is
    archived again: "latest" overwrites the record (latest deletion wins),
    "first" keeps the original entity and only adds newly deleted related rows.
    """
    backup_dir: str = "./data/backups"
    archive_dir: str = "./data/archives"
    archive_policy: str = "latest"  # latest, first
    archive_write_attempts: int = 3
    archive_retry_wait: float = 0.05  # seconds, base of exponential backoff
    snapshot_indent: int = 2

    @classmethod
    def from_env(cls) -> 'BackupConfig':
        """Create config from environment variables."""
        return cls(
            backup_dir=os.getenv("CURATOR_BACKUP_DIR", "./data/backups"),
            archive_dir=os.getenv("CURATOR_ARCHIVE_DIR", "./data/archives"),
            archive_policy=os.getenv("CURATOR_ARCHIVE_POLICY", "latest").lower(),
            archive_write_attempts=int(os.getenv("CURATOR_ARCHIVE_WRITE_ATTEMPTS", "3")),
            archive_retry_wait=float(os.getenv("CURATOR_ARCHIVE_RETRY_WAIT", "0.05")),
            snapshot_indent=int(os.getenv("CURATOR_SNAPSHOT_INDENT", "2")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.archive_policy not in ARCHIVE_POLICIES:
            raise ValueError(f"Unknown archive policy: {self.archive_policy}. Available: {ARCHIVE_POLICIES}")
        if self.archive_write_attempts <= 0:
            raise ValueError(f"archive_write_attempts must be positive, got {self.archive_write_attempts}")
        if self.archive_retry_wait < 0:
            raise ValueError(f"archive_retry_wait must be non-negative, got {self.archive_retry_wait}")
        if self.snapshot_indent < 0:
            raise ValueError(f"snapshot_indent must be non-negative, got {self.snapshot_indent}")
        if os.path.abspath(self.backup_dir) == os.path.abspath(self.archive_dir):
            raise ValueError("backup_dir and archive_dir must be different directories")


@dataclass(frozen=True)
class LiveStoreConfig:
    """Live store backend configuration."""
    backend: str = "memory"  # memory, json
    path: str = "./data/live_store.json"

    @classmethod
    def from_env(cls) -> 'LiveStoreConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("CURATOR_LIVE_BACKEND", "memory").lower(),
            path=os.getenv("CURATOR_LIVE_PATH", "./data/live_store.json"),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.backend not in LIVE_BACKENDS:
            raise ValueError(f"Unknown live store backend: {self.backend}. Available: {LIVE_BACKENDS}")
