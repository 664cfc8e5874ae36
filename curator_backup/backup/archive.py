"""Archive of deleted entities.

Every entity removed from the live store is first written here, one JSON file
per (entity type, natural key):

    <archive_dir>/<entity type>_<sanitized key>_<hash>.json

    {"entityType": "curators", "naturalKey": "111", "reason": "deleted-curator",
     "archivedAt": "...", "sequence": 3, "entity": {...},
     "related": {"activities": [...], "taskReports": [...], "responseTracking": [...]},
     "stats": {"activities": 12, "taskReports": 1, "responseTracking": 0}}

Invariants:
    - A key present here is excluded from every import
    - Records are immutable; re-archiving a key replaces the record ("latest"
      policy) or keeps the first one ("first" policy). Either way related rows
      already bundled for the key are kept, newer rows win on the same key
    - The archive directory is never part of a snapshot
    - A failed write leaves the previous state (file and index) untouched
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .._utils import logger, utc_now, write_bytes_atomic, dump_json
from ..config import BackupConfig
from ..exceptions import ArchiveWriteFailed, EntityNotFoundError
from ..schemas import ENTITY_TYPES, EntityType, get_entity_type
from .models import ArchiveRecord, ArchiveSummary
from .utils import archive_filename

ArchiveKey = Tuple[str, str]


class ArchiveStore:
    """Append-only keyed store of archived entities."""

    def __init__(self, config: BackupConfig, entity_types: Optional[Dict[str, EntityType]] = None):
        self.config = config
        self.entity_types = entity_types if entity_types is not None else dict(ENTITY_TYPES)
        self.archive_dir = Path(config.archive_dir)
        self.archive_dir.mkdir(parents=True, exist_ok=True)

        # Insertion-ordered index; doubles as the O(1) exclusion oracle
        self._records: Dict[ArchiveKey, ArchiveRecord] = {}
        self._next_sequence = 1
        self._load()

    def _load(self) -> None:
        loaded = []
        for path in self.archive_dir.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    loaded.append(ArchiveRecord.model_validate(json.load(f)))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                # Refuse to start with an unreadable record: ignoring it would
                # silently re-enable imports of that key
                logger.error(f"Unreadable archive record {path.name}: {e}")
                raise

        for record in sorted(loaded, key=lambda r: (r.sequence, r.archived_at)):
            self._records[(record.entity_type, record.natural_key)] = record
        if loaded:
            self._next_sequence = max(r.sequence for r in loaded) + 1
        logger.info(f"Archive loaded: {len(self._records)} records from {self.archive_dir}")

    def _entity_type(self, name: str) -> EntityType:
        return self.entity_types[name] if name in self.entity_types else get_entity_type(name)

    async def put(
        self,
        entity_type: str,
        entity: Dict[str, Any],
        reason: Optional[str] = None,
        related: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> ArchiveRecord:
        """Archive an entity under its natural key.

        Args:
            entity_type: Entity type name
            entity: Full field set of the entity being deleted
            reason: Reason code, defaults to the type's deletion reason
            related: Rows of other types referencing the entity, by type name

        Returns:
            The record now stored for the key

        Raises:
            ArchiveWriteFailed: persistence failed after all retry attempts
        """
        etype = self._entity_type(entity_type)
        natural_key = etype.key_of(entity)
        if natural_key is None:
            raise ValueError(f"Cannot archive {entity_type} entity without '{etype.key_label}'")
        reason = reason or etype.archive_reason
        if reason is None:
            raise ValueError(f"Entity type {entity_type} is not archivable")

        existing = self._records.get((entity_type, natural_key))
        if existing is not None and self.config.archive_policy == "first":
            if related:
                # Keep the first entity but do not lose rows deleted since
                return await self.add_related(entity_type, natural_key, related)
            logger.info(f"{entity_type}/{natural_key} already archived, keeping first record")
            return existing

        merged = self._merge_related(existing.related if existing else {}, related or {})
        record = ArchiveRecord(
            entity_type=entity_type,
            natural_key=natural_key,
            reason=reason,
            archived_at=utc_now(),
            sequence=self._next_sequence,
            entity=dict(entity),
            related=merged,
            stats=self._stats(merged),
        )
        await self.write_record(record)
        self._next_sequence += 1

        if existing is not None:
            logger.info(f"Re-archived {entity_type}/{natural_key} ({reason}), previous record replaced")
        else:
            logger.info(
                f"Archived {entity_type}/{natural_key} ({reason})"
                + "".join(f", {n} {name}" for name, n in record.stats.items() if n)
            )
        return record

    async def add_related(
        self, entity_type: str, natural_key: str, related: Dict[str, List[Dict[str, Any]]]
    ) -> ArchiveRecord:
        """Bundle more related rows into an existing record, keeping its place.

        Raises:
            EntityNotFoundError: the key is not archived
            ArchiveWriteFailed: persistence failed after all retry attempts
        """
        existing = self._records.get((entity_type, natural_key))
        if existing is None:
            raise EntityNotFoundError(entity_type, natural_key, where="archive")
        merged = self._merge_related(existing.related, related)
        if merged == existing.related:
            return existing
        record = existing.model_copy(update={"related": merged, "stats": self._stats(merged)})
        await self.write_record(record)
        logger.info(
            f"Added related rows to archived {entity_type}/{natural_key}: "
            + ", ".join(f"{name}={len(rows)}" for name, rows in related.items())
        )
        return record

    def _merge_related(
        self, old: Dict[str, List[Dict[str, Any]]], new: Dict[str, List[Dict[str, Any]]]
    ) -> Dict[str, List[Dict[str, Any]]]:
        merged: Dict[str, List[Dict[str, Any]]] = {}
        for name in list(old) + [n for n in new if n not in old]:
            etype = self.entity_types.get(name)
            rows: Dict[Any, Dict[str, Any]] = {}
            for i, row in enumerate(old.get(name, []) + new.get(name, [])):
                key = etype.key_of(row) if etype is not None else None
                # Rows without a usable key are never merged with each other
                rows[key if key is not None else ("#", i)] = dict(row)
            merged[name] = list(rows.values())
        return merged

    @staticmethod
    def _stats(related: Dict[str, List[Dict[str, Any]]]) -> Dict[str, int]:
        return {name: len(rows) for name, rows in related.items()}

    async def write_record(self, record: ArchiveRecord) -> None:
        """Persist a record and make it the current one for its key.

        The index is only touched after the file write succeeded.
        """
        key = (record.entity_type, record.natural_key)
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.config.archive_write_attempts),
                wait=wait_exponential(multiplier=self.config.archive_retry_wait, max=1),
                retry=retry_if_exception_type(OSError),
                reraise=True,
            ):
                with attempt:
                    self._write_file(record)
        except OSError as e:
            logger.error(f"Archive write failed for {key[0]}/{key[1]}: {e}")
            raise ArchiveWriteFailed(key[0], key[1], str(e)) from e

        current = self._records.get(key)
        if current is None or current.sequence != record.sequence:
            # Re-insert so an overwritten key moves to the end of insertion order
            self._records.pop(key, None)
        self._records[key] = record

    def _write_file(self, record: ArchiveRecord) -> None:
        path = self.archive_dir / archive_filename(record.entity_type, record.natural_key)
        payload = dump_json(record.model_dump(mode="json", by_alias=True))
        write_bytes_atomic(path, payload)

    async def remove(self, entity_type: str, natural_key: str) -> Optional[ArchiveRecord]:
        """Un-archive a key. Returns the removed record, or None if absent."""
        key = (entity_type, natural_key)
        record = self._records.get(key)
        if record is None:
            return None
        path = self.archive_dir / archive_filename(entity_type, natural_key)
        path.unlink(missing_ok=True)
        del self._records[key]
        logger.info(f"Removed {entity_type}/{natural_key} from archive")
        return record

    def get(self, entity_type: str, natural_key: str) -> Optional[ArchiveRecord]:
        return self._records.get((entity_type, natural_key))

    def contains_key(self, entity_type: str, natural_key: str) -> bool:
        return (entity_type, natural_key) in self._records

    def get_all(self) -> Iterator[ArchiveRecord]:
        """Iterate archived records in insertion order.

        Each call starts a fresh pass over the records present at that moment.
        """
        for record in list(self._records.values()):
            yield record

    def __len__(self) -> int:
        return len(self._records)

    async def list_archives(self) -> List[ArchiveSummary]:
        """Archive listing, newest first."""
        summaries = []
        for record in self._records.values():
            path = self.archive_dir / archive_filename(record.entity_type, record.natural_key)
            try:
                size = path.stat().st_size
            except OSError as e:
                logger.warning(f"Cannot stat archive file {path.name}: {e}")
                size = 0
            name = record.entity.get("name")
            summaries.append(
                ArchiveSummary(
                    entity_type=record.entity_type,
                    natural_key=record.natural_key,
                    entity_name=name if isinstance(name, str) else None,
                    reason=record.reason,
                    archived_at=record.archived_at,
                    size_bytes=size,
                    stats=dict(record.stats),
                )
            )
        # Index order is sequence order; reversing first makes ties newest first
        summaries.reverse()
        summaries.sort(key=lambda s: s.archived_at, reverse=True)
        return summaries
