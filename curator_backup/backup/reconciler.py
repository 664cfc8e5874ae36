"""Merge a snapshot into a live store that has moved on since it was taken.

Types are processed in registry order (parents first), then any type the
live store does not know, which is only counted as unsupported.

Per candidate entity, in this order:
    1. no usable natural key                      -> rejected (batch continues)
    2. natural key is archived                    -> excluded_archived
    3. a referenced curator/server is archived    -> excluded_archived
    4. validate against the type schema           -> rejected
    5. natural key already live                   -> skipped_existing
    6. a reference does not resolve to a live row -> rejected
    7. otherwise insert, internal id dropped and references remapped to the
       live ids of the parents                    -> imported

References are snapshot-internal ids. They are translated through the
parent's natural key, taken from the parent rows of the same snapshot.

Invariants:
    - An archived key is never inserted by an import (no resurrection), even
      when its stale snapshot body no longer passes the schema
    - A live record is never modified by an import (no overwrite)
    - Steps 2-7 run under the locks of the key and of its parents, shared
      with delete-and-archive
"""

from typing import Any, Dict, List, Optional, Tuple

from .._utils import KeyLocks, logger
from ..base import BaseLiveStore
from ..exceptions import PerEntityRejected
from ..schemas import INTERNAL_ID_FIELD, EntityType, parent_type_names
from .archive import ArchiveStore
from .models import ImportReport, RejectedEntity, SnapshotDocument

IdMaps = Dict[str, Dict[int, str]]


def _is_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ImportReconciler:
    def __init__(
        self,
        live_store: BaseLiveStore,
        archive: ArchiveStore,
        locks: Optional[KeyLocks] = None,
    ):
        self.live_store = live_store
        self.archive = archive
        self.locks = locks or KeyLocks()

    async def import_backup(self, snapshot: SnapshotDocument) -> ImportReport:
        """Backfill the live store from a snapshot.

        Returns:
            ImportReport with per-type counts and every rejection
        """
        report = ImportReport(captured_at=snapshot.captured_at)
        logger.info(f"Importing snapshot captured at {snapshot.captured_at.isoformat()}")

        known = self.live_store.entity_types
        id_maps = self._snapshot_id_maps(snapshot)
        ordered = [name for name in known if name in snapshot.entities]
        ordered += [name for name in snapshot.entities if name not in known]

        for name in ordered:
            candidates = snapshot.entities[name]
            counts = report.for_type(name)
            etype = known.get(name)
            if etype is None:
                counts.unsupported += len(candidates)
                logger.warning(f"Unsupported entity type '{name}', {len(candidates)} items not imported")
                continue

            for index, candidate in enumerate(candidates):
                try:
                    outcome = await self._reconcile(etype, index, candidate, id_maps)
                except PerEntityRejected as e:
                    counts.rejected += 1
                    report.rejections.append(RejectedEntity(
                        entity_type=e.entity_type,
                        index=e.index,
                        natural_key=e.natural_key,
                        reason=e.reason,
                    ))
                    logger.warning(str(e))
                    continue
                setattr(counts, outcome, getattr(counts, outcome) + 1)

            logger.info(
                f"Import {name}: {counts.imported} imported, {counts.skipped_existing} existing, "
                f"{counts.excluded_archived} archived, {counts.rejected} rejected"
            )

        logger.info(
            f"Import complete: {report.imported} imported, {report.skipped_existing} existing, "
            f"{report.excluded_archived} archived, {report.rejected} rejected, "
            f"{report.unsupported} unsupported"
        )
        return report

    def _snapshot_id_maps(self, snapshot: SnapshotDocument) -> IdMaps:
        """Snapshot id -> natural key for every referenced type; first row wins."""
        id_maps: IdMaps = {}
        for name in parent_type_names(self.live_store.entity_types):
            etype = self.live_store.entity_types[name]
            mapping = id_maps.setdefault(name, {})
            for row in snapshot.entities.get(name, []):
                key = etype.key_of(row)
                if key is not None and _is_id(row.get(INTERNAL_ID_FIELD)):
                    mapping.setdefault(row[INTERNAL_ID_FIELD], key)
        return id_maps

    def _resolve_references(
        self, etype: EntityType, candidate: Dict[str, Any], id_maps: IdMaps
    ) -> Tuple[Dict[str, Tuple[str, str]], List[str]]:
        """Split references into resolved (field -> parent slot) and dangling fields."""
        resolved: Dict[str, Tuple[str, str]] = {}
        dangling: List[str] = []
        for field, parent in etype.references:
            value = candidate.get(field)
            if value is None:
                continue
            parent_key = id_maps.get(parent, {}).get(value) if _is_id(value) else None
            if parent_key is None:
                dangling.append(field)
            else:
                resolved[field] = (parent, parent_key)
        return resolved, dangling

    async def _reconcile(
        self, etype: EntityType, index: int, candidate: Any, id_maps: IdMaps
    ) -> str:
        """Decide and apply the outcome for one candidate; returns the counter name.

        Raises:
            PerEntityRejected: the candidate cannot be imported
        """
        key = etype.key_of(candidate)
        if key is None:
            reason = f"no usable natural key '{etype.key_label}'"
            try:
                etype.validate(candidate)
            except ValueError as e:
                reason = str(e)
            raise PerEntityRejected(etype.name, index, reason)

        resolved, dangling = self._resolve_references(etype, candidate, id_maps)
        slots = [(etype.name, key)] + list(resolved.values())

        async with self.locks.hold_many(slots):
            if self.archive.contains_key(etype.name, key):
                logger.warning(f"Excluded archived {etype.name}/{key}")
                return "excluded_archived"

            for parent, parent_key in resolved.values():
                if self.archive.contains_key(parent, parent_key):
                    logger.warning(f"Excluded {etype.name}/{key}: {parent}/{parent_key} is archived")
                    return "excluded_archived"

            try:
                entity = etype.validate(candidate)
            except ValueError as e:
                raise PerEntityRejected(etype.name, index, str(e), natural_key=key) from e

            if await self.live_store.get(etype.name, key) is not None:
                logger.debug(f"Kept live {etype.name}/{key}")
                return "skipped_existing"

            if dangling:
                refs = ", ".join(f"{f}={candidate.get(f)!r}" for f in dangling)
                raise PerEntityRejected(
                    etype.name, index, f"dangling reference {refs} not in snapshot", natural_key=key
                )

            fresh = {k: v for k, v in entity.items() if k != INTERNAL_ID_FIELD}
            for field, (parent, parent_key) in resolved.items():
                parent_row = await self.live_store.get(parent, parent_key)
                if parent_row is None or not _is_id(parent_row.get(INTERNAL_ID_FIELD)):
                    raise PerEntityRejected(
                        etype.name, index, f"{field} references {parent}/{parent_key} which is not live",
                        natural_key=key,
                    )
                fresh[field] = parent_row[INTERNAL_ID_FIELD]

            await self.live_store.insert(etype.name, fresh)
            logger.debug(f"Imported {etype.name}/{key}")
            return "imported"
