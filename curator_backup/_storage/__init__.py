"""Live store backends."""

from .live_memory import InMemoryLiveStore
from .live_json import JsonLiveStore
from .factory import create_live_store

__all__ = ["InMemoryLiveStore", "JsonLiveStore", "create_live_store"]
