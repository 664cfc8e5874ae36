"""Data models for snapshot, archive and import operations."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SnapshotDocument(BaseModel):
    """Full-dataset snapshot.

    entities maps entity type name -> ordered list of raw entity dicts.
    Elements are kept as-is (unknown fields included); validating them is the
    importer's job.
    """

    model_config = ConfigDict(frozen=True)

    version: int = Field(..., description="Snapshot format version")
    captured_at: datetime = Field(..., description="Capture timestamp (UTC)")
    entities: Dict[str, List[Any]] = Field(default_factory=dict)
    checksum: Optional[str] = Field(None, description="SHA-256 of the canonical entity body")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Unknown top-level fields")

    def counts(self) -> Dict[str, int]:
        return {name: len(items) for name, items in self.entities.items()}


class SnapshotHeader(BaseModel):
    """Version, capture time and counts of a snapshot, without its bodies."""

    version: int
    captured_at: datetime
    counts: Dict[str, int]


class SnapshotMetadata(BaseModel):
    """Snapshot file listing entry."""

    snapshot_id: str
    captured_at: datetime
    size_bytes: int
    version: int
    counts: Dict[str, int]
    checksum: str


class ArchiveRecord(BaseModel):
    """Soft-delete record of one entity, keyed by (entity_type, natural_key)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    entity_type: str = Field(..., alias="entityType")
    natural_key: str = Field(..., alias="naturalKey")
    reason: str
    archived_at: datetime = Field(..., alias="archivedAt")
    sequence: int = Field(0, description="Archive insertion order")
    entity: Dict[str, Any] = Field(..., description="Last known full field set")
    related: Dict[str, List[Dict[str, Any]]] = Field(
        default_factory=dict, description="Rows of other types that referenced the entity, by type"
    )
    stats: Dict[str, int] = Field(default_factory=dict, description="Number of related rows per type")


class ArchiveSummary(BaseModel):
    """Archive listing entry."""

    entity_type: str
    natural_key: str
    entity_name: Optional[str] = None
    reason: str
    archived_at: datetime
    size_bytes: int
    stats: Dict[str, int] = Field(default_factory=dict)


class BackupStats(BaseModel):
    """Backup directory statistics, recomputed on every call."""

    total_snapshots: int = 0
    corrupt: int = 0
    entity_counts: Dict[str, int] = Field(
        default_factory=dict, description="Per-type counts of the most recent valid snapshot"
    )
    latest_export_at: Optional[datetime] = None
    latest_snapshot_id: Optional[str] = None
    total_bytes: int = 0


class TypeImportCounts(BaseModel):
    imported: int = 0
    skipped_existing: int = 0
    excluded_archived: int = 0
    rejected: int = 0
    unsupported: int = 0  # entities of a type this store does not know

    @property
    def total(self) -> int:
        return (
            self.imported + self.skipped_existing + self.excluded_archived + self.rejected + self.unsupported
        )


class RejectedEntity(BaseModel):
    entity_type: str
    index: int
    natural_key: Optional[str] = None
    reason: str


class ImportReport(BaseModel):
    """Outcome of reconciling one snapshot into the live store."""

    captured_at: Optional[datetime] = None
    counts: Dict[str, TypeImportCounts] = Field(default_factory=dict)
    rejections: List[RejectedEntity] = Field(default_factory=list)

    def for_type(self, entity_type: str) -> TypeImportCounts:
        return self.counts.setdefault(entity_type, TypeImportCounts())

    def _sum(self, attr: str) -> int:
        return sum(getattr(c, attr) for c in self.counts.values())

    @property
    def imported(self) -> int:
        return self._sum("imported")

    @property
    def skipped_existing(self) -> int:
        return self._sum("skipped_existing")

    @property
    def excluded_archived(self) -> int:
        return self._sum("excluded_archived")

    @property
    def rejected(self) -> int:
        return self._sum("rejected")

    @property
    def unsupported(self) -> int:
        return self._sum("unsupported")


class RestoreReport(BaseModel):
    """Outcome of restoring one archive record into the live store."""

    record: ArchiveRecord
    entity_restored: bool = Field(..., description="False when the key was already live")
    counts: Dict[str, TypeImportCounts] = Field(
        default_factory=dict, description="Per-type outcome of re-inserting related rows"
    )

    @property
    def entity_type(self) -> str:
        return self.record.entity_type

    @property
    def natural_key(self) -> str:
        return self.record.natural_key
