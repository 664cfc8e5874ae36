"""Utility functions for snapshot and archive files."""

import hashlib
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .._utils import utc_now

SNAPSHOT_PREFIX = "snapshot_"
SNAPSHOT_SUFFIX = ".json"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def compute_checksum(file_path: Path) -> str:
    """Compute SHA-256 checksum of file.

    Returns:
        SHA-256 checksum as hex string with 'sha256:' prefix
    """
    sha256 = hashlib.sha256()

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)

    return f"sha256:{sha256.hexdigest()}"


def compute_entities_checksum(entities: Dict[str, List[Any]]) -> str:
    """Compute SHA-256 checksum of a snapshot's entity body.

    Hashes a canonical JSON form (sorted keys, no whitespace) so the value
    does not depend on indentation or on the order fields were written in.
    """
    canonical = json.dumps(entities, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


def generate_snapshot_id(captured_at: Optional[datetime] = None) -> str:
    """Generate snapshot ID with timestamp.

    Returns:
        Snapshot ID in format: snapshot_YYYY-MM-DDTHH-MM-SS-ffffffZ, which
        sorts lexicographically in capture order
    """
    captured_at = captured_at or utc_now()
    timestamp = captured_at.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return f"{SNAPSHOT_PREFIX}{timestamp}"


def snapshot_filename(snapshot_id: str) -> str:
    return f"{snapshot_id}{SNAPSHOT_SUFFIX}"


def is_snapshot_file(path: Path) -> bool:
    return (
        path.is_file()
        and path.name.startswith(SNAPSHOT_PREFIX)
        and path.name.endswith(SNAPSHOT_SUFFIX)
    )


def archive_filename(entity_type: str, natural_key: str) -> str:
    """Filesystem-safe archive file name for one key.

    Unsafe characters are replaced and a short hash of the raw key is appended
    so two keys that sanitize to the same text still get distinct files.
    """
    safe_key = _UNSAFE_CHARS.sub("_", natural_key)[:64]
    digest = hashlib.sha256(f"{entity_type}\0{natural_key}".encode("utf-8")).hexdigest()[:12]
    return f"{entity_type}_{safe_key}_{digest}.json"
