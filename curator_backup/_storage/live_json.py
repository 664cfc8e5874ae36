"""JSON-file backed live store."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from .live_memory import InMemoryLiveStore
from ..schemas import INTERNAL_ID_FIELD
from .._utils import logger, write_bytes_atomic, dump_json


@dataclass
class JsonLiveStore(InMemoryLiveStore):
    """In-memory store persisted to a single JSON file after every mutation.

    File layout: {"<entity type>": [entity, ...], ...} in insertion order.
    The staged table is written to disk before it replaces the in-memory one.
    """

    file_path: str = "./data/live_store.json"

    def __post_init__(self):
        super().__post_init__()
        self._path = Path(self.file_path)
        if self._path.exists():
            self._load()
        else:
            logger.info(f"Live store file {self._path} not found, starting empty")

    def _load(self) -> None:
        with open(self._path, "r", encoding="utf-8") as f:
            raw: Dict[str, Any] = json.load(f)

        for entity_type, entities in raw.items():
            etype = self.resolve_type(entity_type)
            table = self._data.setdefault(entity_type, {})
            max_id = 0
            for entity in entities:
                key = etype.key_of(entity)
                if key is None:
                    logger.warning(f"Skipping {entity_type} row without '{etype.key_label}' in {self._path}")
                    continue
                table[key] = entity
                if isinstance(entity.get(INTERNAL_ID_FIELD), int):
                    max_id = max(max_id, entity[INTERNAL_ID_FIELD])
            self._next_id[entity_type] = max_id + 1

        logger.info(
            f"Loaded live store from {self._path}: "
            + ", ".join(f"{name}={len(table)}" for name, table in self._data.items())
        )

    def _write(self, data: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        payload = {name: list(table.values()) for name, table in data.items()}
        write_bytes_atomic(self._path, dump_json(payload))

    async def _commit(self, entity_type: str, table: Dict[str, Dict[str, Any]]) -> None:
        self._write({**self._data, entity_type: table})
        self._data[entity_type] = table

    async def index_done_callback(self):
        self._write(self._data)
