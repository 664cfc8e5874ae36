"""Error taxonomy for the backup / archive / import engine."""

from typing import Optional


class CuratorBackupError(Exception):
    """Base exception for curator-backup errors."""
    pass


class MalformedSnapshot(CuratorBackupError):
    """Snapshot payload could not be parsed as a structured document."""

    def __init__(self, reason: str, source: Optional[str] = None):
        self.reason = reason
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(f"Malformed snapshot{where}: {reason}")


class ArchiveWriteFailed(CuratorBackupError):
    def __init__(self, entity_type: str, natural_key: str, reason: str):
        self.entity_type = entity_type
        self.natural_key = natural_key
        super().__init__(f"Failed to archive {entity_type}/{natural_key}: {reason}")


class PerEntityRejected(CuratorBackupError):
    """A single import candidate failed validation.

    Raised during reconciliation and recorded in the import report; it never
    aborts the batch.
    """

    def __init__(
        self,
        entity_type: str,
        index: int,
        reason: str,
        natural_key: Optional[str] = None,
    ):
        self.entity_type = entity_type
        self.index = index
        self.reason = reason
        self.natural_key = natural_key
        super().__init__(f"Rejected {entity_type}[{index}]: {reason}")


class BackupIOError(CuratorBackupError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Cannot write snapshot {path}: {reason}")


class EntityNotFoundError(CuratorBackupError, KeyError):
    def __init__(self, entity_type: str, natural_key: str, where: str = "live store"):
        self.entity_type = entity_type
        self.natural_key = natural_key
        super().__init__(f"{entity_type}/{natural_key} not found in {where}")

    def __str__(self) -> str:
        return self.args[0]


class SnapshotNotFoundError(CuratorBackupError):
    def __init__(self, snapshot: str):
        self.snapshot = snapshot
        super().__init__(f"Snapshot not found: {snapshot}")
