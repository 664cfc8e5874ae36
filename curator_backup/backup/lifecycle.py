"""Orchestration over the live store, the archive and the backup directory.

This is the only place that deletes archivable entities: deletion and
archiving are one operation here, so callers cannot delete without archiving.
Deleting a curator or server also archives, then deletes, the activities,
task reports and response tracking rows that reference it. Restoring puts
them back, remapped to the id the restored entity gets.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .._utils import KeyLocks, logger
from ..base import BaseLiveStore
from ..config import BackupConfig
from ..exceptions import EntityNotFoundError, SnapshotNotFoundError
from ..schemas import INTERNAL_ID_FIELD, EntityType, referencing_types
from .archive import ArchiveStore
from .codec import RawSnapshot
from .manager import BackupService
from .models import (
    ArchiveRecord,
    ArchiveSummary,
    BackupStats,
    ImportReport,
    RestoreReport,
    SnapshotDocument,
    TypeImportCounts,
)
from .reconciler import ImportReconciler

Slot = Tuple[str, str]
# id -> (natural key, whether the row is live rather than archived)
ParentIndex = Dict[int, Tuple[str, bool]]


class DataLifecycle:
    """Explicit handle over one live store and its archive and backups.

    Construct once at process start and pass it to whatever needs it.
    """

    def __init__(
        self,
        live_store: BaseLiveStore,
        config: BackupConfig,
        archive: Optional[ArchiveStore] = None,
        backups: Optional[BackupService] = None,
    ):
        self.live_store = live_store
        self.config = config
        self.locks = KeyLocks()
        self.archive = archive or ArchiveStore(config, live_store.entity_types)
        self.backups = backups or BackupService(live_store, config)
        self.reconciler = ImportReconciler(live_store, self.archive, self.locks)

    async def delete_and_archive(self, entity_type: str, natural_key: str) -> ArchiveRecord:
        """Archive an entity with its related rows, then remove them from the live store.

        Raises:
            EntityNotFoundError: the key is not live
            ArchiveWriteFailed: archiving failed; the entity stays live
        """
        etype = self.live_store.resolve_type(entity_type)
        if not etype.archivable:
            raise ValueError(f"Entity type {entity_type} is not archivable")

        async with self.locks.hold(entity_type, natural_key):
            entity = await self.live_store.get(entity_type, natural_key)
            if entity is None:
                raise EntityNotFoundError(entity_type, natural_key)

            related = await self._collect_related(entity_type, entity)
            previous = self.archive.get(entity_type, natural_key)
            record = await self.archive.put(entity_type, entity, related=related)

            try:
                deleted = await self.live_store.delete(entity_type, natural_key)
            except Exception as delete_error:
                logger.error(f"Live delete of {entity_type}/{natural_key} failed, reverting archive")
                try:
                    await self._revert_archive(entity_type, natural_key, previous)
                except Exception as revert_error:
                    logger.error(f"Reverting archive of {entity_type}/{natural_key} failed: {revert_error}")
                    raise delete_error from revert_error
                raise

            if not deleted:
                # Gone between get and delete: only possible if another writer
                # bypassed this handle
                logger.warning(f"{entity_type}/{natural_key} vanished before delete")

            # Rows are already in the record; a failure here leaves live copies behind
            await self._delete_related(related)

        logger.info(
            f"Deleted and archived {entity_type}/{natural_key}"
            + "".join(f", {n} {name}" for name, n in record.stats.items() if n)
        )
        return record

    async def _collect_related(self, entity_type: str, entity: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
        entity_id = entity.get(INTERNAL_ID_FIELD)
        related: Dict[str, List[Dict[str, Any]]] = {}
        for child, field in referencing_types(entity_type, self.live_store.entity_types):
            rows = related.setdefault(child.name, [])
            if not isinstance(entity_id, int) or isinstance(entity_id, bool):
                continue
            seen = {child.key_of(row) for row in rows}
            for row in await self.live_store.list(child.name):
                if row.get(field) == entity_id and child.key_of(row) not in seen:
                    rows.append(row)
        return related

    async def _delete_related(self, related: Dict[str, List[Dict[str, Any]]]) -> None:
        for name, rows in related.items():
            child = self.live_store.resolve_type(name)
            for row in rows:
                key = child.key_of(row)
                if key is None:
                    logger.warning(f"Related {name} row without '{child.key_label}' left in live store")
                    continue
                try:
                    await self.live_store.delete(name, key)
                except Exception as e:
                    logger.error(f"Deleting related {name}/{key} failed: {e}")
                    raise

    async def _revert_archive(
        self, entity_type: str, natural_key: str, previous: Optional[ArchiveRecord]
    ) -> None:
        if previous is None:
            await self.archive.remove(entity_type, natural_key)
        elif self.archive.get(entity_type, natural_key) is not previous:
            await self.archive.write_record(previous)

    async def _parent_index(self, parent: str) -> ParentIndex:
        """Internal id -> natural key of every live or archived row of a type."""
        etype = self.live_store.resolve_type(parent)
        index: ParentIndex = {}
        for record in self.archive.get_all():
            entity_id = record.entity.get(INTERNAL_ID_FIELD)
            if record.entity_type == parent and isinstance(entity_id, int):
                index[entity_id] = (record.natural_key, False)
        for row in await self.live_store.list(parent):
            key = etype.key_of(row)
            if key is not None and isinstance(row.get(INTERNAL_ID_FIELD), int):
                index[row[INTERNAL_ID_FIELD]] = (key, True)
        return index

    async def _other_parents(self, record: ArchiveRecord) -> Dict[str, ParentIndex]:
        """Indexes of the parent types that the record's related rows point at."""
        parents = set()
        for name in record.related:
            child = self.live_store.entity_types.get(name)
            if child is not None:
                parents.update(p for _, p in child.references)
        return {p: await self._parent_index(p) for p in sorted(parents) if p in self.live_store.entity_types}

    def _restore_slots(self, record: ArchiveRecord, indexes: Dict[str, ParentIndex]) -> List[Slot]:
        old_id = record.entity.get(INTERNAL_ID_FIELD)
        slots = [(record.entity_type, record.natural_key)]
        for name, rows in record.related.items():
            child = self.live_store.entity_types.get(name)
            if child is None:
                continue
            for row in rows:
                for field, parent in child.references:
                    value = row.get(field)
                    if parent == record.entity_type and value == old_id:
                        continue
                    found = indexes.get(parent, {}).get(value) if isinstance(value, int) else None
                    if found is not None:
                        slots.append((parent, found[0]))
        return slots

    async def restore_from_archive(self, entity_type: str, natural_key: str) -> RestoreReport:
        """Put an archived entity and its related rows back, then un-archive it.

        If the key was re-created live in the meantime, the live record is
        kept and the related rows are attached to it. A related row that also
        references another archived entity is handed over to that entity's
        archive record; one whose other parent is gone is reported rejected.

        Raises:
            EntityNotFoundError: the key is not archived
        """
        record = self.archive.get(entity_type, natural_key)
        if record is None:
            raise EntityNotFoundError(entity_type, natural_key, where="archive")
        slots = self._restore_slots(record, await self._other_parents(record))

        async with self.locks.hold_many(slots):
            record = self.archive.get(entity_type, natural_key)
            if record is None:
                raise EntityNotFoundError(entity_type, natural_key, where="archive")
            indexes = await self._other_parents(record)
            locked = set(slots)

            inserted: List[Slot] = []
            handed_over: List[ArchiveRecord] = []
            report = RestoreReport(record=record, entity_restored=False)
            try:
                live = await self.live_store.get(entity_type, natural_key)
                if live is None:
                    live = await self.live_store.insert(entity_type, record.entity)
                    inserted.append((entity_type, natural_key))
                    report.entity_restored = True
                else:
                    logger.warning(f"{entity_type}/{natural_key} is live again, keeping live record")

                for name, rows in record.related.items():
                    counts = report.counts.setdefault(name, TypeImportCounts())
                    child = self.live_store.entity_types.get(name)
                    if child is None:
                        counts.unsupported += len(rows)
                        logger.error(f"Cannot restore {len(rows)} {name} rows: unsupported entity type")
                        continue
                    for row in rows:
                        await self._restore_related_row(
                            record, live, child, row, indexes, locked, counts, inserted, handed_over
                        )

                await self.archive.remove(entity_type, natural_key)
            except Exception:
                logger.error(f"Restoring {entity_type}/{natural_key} failed, rolling back")
                await self._rollback_restore(inserted, handed_over)
                raise

        logger.info(
            f"Restored {entity_type}/{natural_key} from archive"
            + "".join(f", {c.imported} {name}" for name, c in report.counts.items() if c.imported)
        )
        return report

    async def _restore_related_row(
        self,
        record: ArchiveRecord,
        live: Dict[str, Any],
        child: EntityType,
        row: Dict[str, Any],
        indexes: Dict[str, ParentIndex],
        locked: set,
        counts: TypeImportCounts,
        inserted: List[Slot],
        handed_over: List[ArchiveRecord],
    ) -> None:
        key = child.key_of(row)
        if key is None:
            counts.rejected += 1
            logger.error(f"Dropped archived {child.name} row without '{child.key_label}': {row}")
            return
        if await self.live_store.get(child.name, key) is not None:
            counts.skipped_existing += 1
            return

        old_id = record.entity.get(INTERNAL_ID_FIELD)
        fresh = {k: v for k, v in row.items() if k != INTERNAL_ID_FIELD}
        archived_parent: Optional[Slot] = None
        for field, parent in child.references:
            value = row.get(field)
            if value is None:
                continue
            if parent == record.entity_type and value == old_id:
                fresh[field] = live[INTERNAL_ID_FIELD]
                continue
            found = indexes.get(parent, {}).get(value) if isinstance(value, int) else None
            if found is None or (parent, found[0]) not in locked:
                counts.rejected += 1
                logger.error(f"Dropped archived {child.name}/{key}: {field}={value!r} references no {parent}")
                return
            if not found[1]:
                archived_parent = (parent, found[0])

        if archived_parent is not None:
            previous = self.archive.get(*archived_parent)
            await self.archive.add_related(*archived_parent, {child.name: [fresh]})
            handed_over.append(previous)
            counts.excluded_archived += 1
            logger.info(f"Moved {child.name}/{key} to archived {archived_parent[0]}/{archived_parent[1]}")
            return

        await self.live_store.insert(child.name, fresh)
        inserted.append((child.name, key))
        counts.imported += 1

    async def _rollback_restore(self, inserted: List[Slot], handed_over: List[ArchiveRecord]) -> None:
        for previous in reversed(handed_over):
            try:
                await self.archive.write_record(previous)
            except Exception as e:
                logger.error(f"Rollback of archived {previous.entity_type}/{previous.natural_key} failed: {e}")
        for name, key in reversed(inserted):
            try:
                await self.live_store.delete(name, key)
            except Exception as e:
                logger.error(f"Rollback of restored {name}/{key} failed: {e}")

    async def list_archives(self) -> List[ArchiveSummary]:
        return await self.archive.list_archives()

    async def export_all_data(self) -> SnapshotDocument:
        return await self.backups.export_all_data()

    async def get_backup_stats(self) -> BackupStats:
        return await self.backups.get_backup_stats()

    async def import_backup(self, snapshot: SnapshotDocument) -> ImportReport:
        return await self.reconciler.import_backup(snapshot)

    async def import_from_bytes(self, raw: RawSnapshot, source: Optional[str] = None) -> ImportReport:
        """Import an uploaded snapshot document.

        Raises:
            MalformedSnapshot: the payload could not be parsed
        """
        snapshot = self.backups.codec.deserialize(raw, source=source)
        return await self.import_backup(snapshot)

    async def import_from_path(self, snapshot: Union[str, Path]) -> ImportReport:
        """Import a snapshot by id (a str, from the backup directory) or by file path (a Path)."""
        document = await self.backups.load_snapshot(snapshot)
        return await self.import_backup(document)

    async def import_latest(self) -> ImportReport:
        """Import the most recent readable snapshot in the backup directory.

        Raises:
            SnapshotNotFoundError: no readable snapshot exists
        """
        snapshot_id = await self.backups.latest_snapshot_id()
        if snapshot_id is None:
            raise SnapshotNotFoundError(str(self.backups.backup_dir))
        logger.info(f"Importing latest snapshot {snapshot_id}")
        return await self.import_from_path(snapshot_id)
