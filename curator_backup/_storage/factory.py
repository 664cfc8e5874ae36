from ..base import BaseLiveStore
from ..config import LiveStoreConfig
from .live_json import JsonLiveStore
from .live_memory import InMemoryLiveStore


def create_live_store(config: LiveStoreConfig) -> BaseLiveStore:
    """Build the live store backend named by config."""
    if config.backend == "json":
        return JsonLiveStore(file_path=config.path)
    return InMemoryLiveStore()
