"""In-memory live store."""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..base import BaseLiveStore
from ..schemas import INTERNAL_ID_FIELD
from .._utils import logger


@dataclass
class InMemoryLiveStore(BaseLiveStore):
    """Dict-of-dicts live store.

    Each entity type maps natural key -> entity, in insertion order. Every
    read hands out a deep copy, every write stores one. Mutations are staged
    on a copy of the table and only swapped in by _commit, so a failed
    commit leaves the store as it was.
    """

    _data: Dict[str, Dict[str, Dict[str, Any]]] = field(init=False, default_factory=dict)
    _next_id: Dict[str, int] = field(init=False, default_factory=dict)

    def __post_init__(self):
        for name in self.entity_types:
            self._data.setdefault(name, {})
            self._next_id.setdefault(name, 1)

    def _table(self, entity_type: str) -> Dict[str, Dict[str, Any]]:
        self.resolve_type(entity_type)
        return self._data.setdefault(entity_type, {})

    async def _commit(self, entity_type: str, table: Dict[str, Dict[str, Any]]) -> None:
        self._data[entity_type] = table
        await self.index_done_callback()

    async def get(self, entity_type: str, natural_key: str) -> Optional[Dict[str, Any]]:
        entity = self._table(entity_type).get(natural_key)
        return copy.deepcopy(entity) if entity is not None else None

    async def list(self, entity_type: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(list(self._table(entity_type).values()))

    async def insert(self, entity_type: str, entity: Dict[str, Any]) -> Dict[str, Any]:
        etype = self.resolve_type(entity_type)
        key = etype.key_of(entity)
        if key is None:
            raise ValueError(f"{entity_type} entity has no usable '{etype.key_label}'")
        table = dict(self._table(entity_type))
        if key in table:
            raise ValueError(f"{entity_type}/{key} already exists")

        new_id = self._next_id.get(entity_type, 1)
        stored = {INTERNAL_ID_FIELD: new_id}
        stored.update((k, copy.deepcopy(v)) for k, v in entity.items() if k != INTERNAL_ID_FIELD)
        table[key] = stored
        await self._commit(entity_type, table)
        self._next_id[entity_type] = new_id + 1
        logger.debug(f"Inserted {entity_type}/{key} (id={new_id})")
        return copy.deepcopy(stored)

    async def update(self, entity_type: str, natural_key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        etype = self.resolve_type(entity_type)
        table = dict(self._table(entity_type))
        if natural_key not in table:
            raise KeyError(f"{entity_type}/{natural_key} not found")

        updated = dict(table[natural_key])
        updated.update((k, copy.deepcopy(v)) for k, v in fields.items() if k != INTERNAL_ID_FIELD)
        if etype.key_of(updated) != natural_key:
            raise ValueError(f"Cannot change natural key of {entity_type}/{natural_key}")
        table[natural_key] = updated
        await self._commit(entity_type, table)
        return copy.deepcopy(updated)

    async def delete(self, entity_type: str, natural_key: str) -> bool:
        table = dict(self._table(entity_type))
        if natural_key not in table:
            return False
        del table[natural_key]
        await self._commit(entity_type, table)
        logger.debug(f"Deleted {entity_type}/{natural_key}")
        return True
