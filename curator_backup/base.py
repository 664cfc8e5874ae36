from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .schemas import ENTITY_TYPES, EntityType, get_entity_type


@dataclass
class BaseLiveStore:
    """Authoritative current dataset, addressed by entity type and natural key.

    Implementations must return copies from get/list so that callers (the
    exporter in particular) never observe a record while it is being mutated.
    list() returns entities in insertion order.
    """

    entity_types: Dict[str, EntityType] = field(default_factory=lambda: dict(ENTITY_TYPES))

    def resolve_type(self, entity_type: str) -> EntityType:
        if entity_type in self.entity_types:
            return self.entity_types[entity_type]
        return get_entity_type(entity_type)

    async def get(self, entity_type: str, natural_key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def list(self, entity_type: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, entity_type: str, entity: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new entity and return the stored copy (with its internal id).

        Raises ValueError if the natural key is missing or already present.
        """
        raise NotImplementedError

    async def update(self, entity_type: str, natural_key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def delete(self, entity_type: str, natural_key: str) -> bool:
        """Remove an entity. Returns False if the key was not present."""
        raise NotImplementedError

    async def index_done_callback(self):
        """Flush pending state to durable storage, if the backend has any."""
        pass
