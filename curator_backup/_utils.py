import asyncio
import json
import os
import logging
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Tuple

logger = logging.getLogger("curator-backup")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyLocks:
    """One asyncio.Lock per (entity_type, natural_key).

    Shared by every component that must check-then-act on a single key, so a
    delete-and-archive and an import decision for the same key never
    interleave.
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._holders: Dict[Tuple[str, str], int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, entity_type: str, natural_key: str) -> AsyncIterator[None]:
        slot = (entity_type, natural_key)
        self._holders[slot] += 1
        try:
            async with self._locks[slot]:
                yield
        finally:
            self._holders[slot] -= 1
            # Drop idle locks so the table does not grow with every key ever seen
            if self._holders[slot] == 0:
                del self._holders[slot]
                self._locks.pop(slot, None)

    @asynccontextmanager
    async def hold_many(self, slots: Iterable[Tuple[str, str]]) -> AsyncIterator[None]:
        """Hold several slots at once, always acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for entity_type, natural_key in sorted(set(slots)):
                await stack.enter_async_context(self.hold(entity_type, natural_key))
            yield

    def __len__(self) -> int:
        return len(self._locks)


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    """Write payload to path via a hidden sibling temp file and os.replace.

    Readers see either the old file or the complete new one. The temp file is
    removed if anything fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def dump_json(data: Any, indent: Optional[int] = 2) -> bytes:
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str).encode("utf-8")
