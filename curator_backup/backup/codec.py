"""Snapshot document codec.

Wire format (JSON object, fields in this order):
    {
      "version": 1,
      "capturedAt": "2024-05-01T12:00:00.000000Z",   # ISO-8601; epoch millis accepted on read
      "counts": {"curators": 2, "servers": 1, ...},  # header for cheap stats
      "checksum": "sha256:...",                      # canonical entity body hash
      "curators": [{...}, ...],
      "servers": [{...}, ...],
      "botSettings": [{...}, ...],
      ...                                            # unknown sequences round-trip
    }

Invariants:
    - serialize() never drops or reorders entity fields
    - Known entity types are written in registry order, unknown ones sorted by name
    - deserialize() checks structure only, never cross-entity references
"""

import copy
import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from .._utils import logger, utc_now, dump_json
from ..exceptions import MalformedSnapshot
from ..schemas import ENTITY_TYPES, EntityType
from .models import SnapshotDocument, SnapshotHeader
from .utils import compute_entities_checksum

SNAPSHOT_FORMAT_VERSION = 1
RESERVED_FIELDS = ("version", "capturedAt", "counts", "checksum")

RawSnapshot = Union[bytes, bytearray, str]


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    raise ValueError(f"unsupported timestamp type {type(value).__name__}")


class SnapshotCodec:
    """Serialize the full dataset to and from versioned snapshot documents."""

    def __init__(self, entity_types: Optional[Dict[str, EntityType]] = None, indent: Optional[int] = 2):
        self.entity_types = entity_types if entity_types is not None else dict(ENTITY_TYPES)
        self.indent = indent

    def serialize(
        self,
        entities: Mapping[str, Sequence[Mapping[str, Any]]],
        captured_at: Optional[datetime] = None,
    ) -> SnapshotDocument:
        """Build a snapshot document from entity sequences.

        Args:
            entities: entity type name -> sequence of entity mappings
            captured_at: capture time, defaults to now (UTC)
        """
        ordered: Dict[str, list] = {}
        for name in self.entity_types:
            ordered[name] = [copy.deepcopy(dict(e)) for e in entities.get(name, ())]
        for name in sorted(set(entities) - set(self.entity_types)):
            if name in RESERVED_FIELDS:
                raise ValueError(f"'{name}' is reserved and cannot be an entity type")
            ordered[name] = [copy.deepcopy(dict(e)) for e in entities[name]]

        captured_at = parse_timestamp(format_timestamp(captured_at or utc_now()))
        return SnapshotDocument(
            version=SNAPSHOT_FORMAT_VERSION,
            captured_at=captured_at,
            entities=ordered,
            checksum=compute_entities_checksum(ordered),
        )

    def encode(self, document: SnapshotDocument) -> bytes:
        payload: Dict[str, Any] = {
            "version": document.version,
            "capturedAt": format_timestamp(document.captured_at),
            "counts": document.counts(),
        }
        if document.checksum:
            payload["checksum"] = document.checksum
        payload.update(document.entities)
        for key, value in document.extra.items():
            payload.setdefault(key, value)
        return dump_json(payload, indent=self.indent)

    def deserialize(self, raw: RawSnapshot, source: Optional[str] = None) -> SnapshotDocument:
        """Parse and structurally validate a snapshot.

        Raises:
            MalformedSnapshot: payload is not a JSON object, or lacks version,
                capture time or a required entity sequence, or its checksum
                does not match
        """
        data, version, captured_at = self._parse_envelope(raw, source)

        present: Dict[str, list] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            if key in RESERVED_FIELDS:
                continue
            if isinstance(value, list):
                present[key] = value
            elif key in self.entity_types:
                raise MalformedSnapshot(f"'{key}' must be a list, got {type(value).__name__}", source)
            else:
                extra[key] = value
        self._check_required(present, source)

        checksum = data.get("checksum")
        if checksum is not None:
            if not isinstance(checksum, str):
                raise MalformedSnapshot("'checksum' must be a string", source)
            actual = compute_entities_checksum(present)
            if actual != checksum:
                raise MalformedSnapshot(f"checksum mismatch (expected {checksum}, got {actual})", source)

        entities: Dict[str, list] = {}
        for name in self.entity_types:
            entities[name] = present.get(name, [])
        for name in sorted(set(present) - set(self.entity_types)):
            entities[name] = present[name]
            logger.debug(f"Snapshot carries unknown entity type '{name}' ({len(present[name])} items)")

        return SnapshotDocument(
            version=version,
            captured_at=captured_at,
            entities=entities,
            checksum=checksum,
            extra=extra,
        )

    def read_header(self, raw: RawSnapshot, source: Optional[str] = None) -> SnapshotHeader:
        """Read version, capture time and per-type counts.

        Uses the "counts" header when it is well formed and falls back to the
        sequence lengths otherwise. Entity bodies are not validated.
        """
        data, version, captured_at = self._parse_envelope(raw, source)
        sequences = {k: v for k, v in data.items() if k not in RESERVED_FIELDS and isinstance(v, list)}
        self._check_required(sequences, source)

        counts = data.get("counts")
        valid_counts = isinstance(counts, dict) and all(
            isinstance(v, int) and not isinstance(v, bool) for v in counts.values()
        )
        if not valid_counts:
            counts = {name: len(items) for name, items in sequences.items()}

        return SnapshotHeader(version=version, captured_at=captured_at, counts=counts)

    def _parse_envelope(self, raw: RawSnapshot, source: Optional[str]) -> Tuple[Dict[str, Any], int, datetime]:
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedSnapshot(f"not UTF-8 text: {e}", source) from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedSnapshot(f"invalid JSON: {e}", source) from e
        if not isinstance(data, dict):
            raise MalformedSnapshot(f"expected a JSON object, got {type(data).__name__}", source)

        version = data.get("version")
        if isinstance(version, bool) or not isinstance(version, int):
            raise MalformedSnapshot("missing or non-integer 'version'", source)
        if version < 1:
            raise MalformedSnapshot(f"unsupported version {version}", source)
        if version > SNAPSHOT_FORMAT_VERSION:
            logger.warning(
                f"Snapshot version {version} is newer than supported {SNAPSHOT_FORMAT_VERSION}; "
                "reading known fields only"
            )

        if "capturedAt" not in data:
            raise MalformedSnapshot("missing 'capturedAt'", source)
        try:
            captured_at = parse_timestamp(data["capturedAt"])
        except (ValueError, OverflowError, OSError) as e:
            raise MalformedSnapshot(f"invalid 'capturedAt': {e}", source) from e

        return data, version, captured_at

    def _check_required(self, sequences: Mapping[str, Any], source: Optional[str]) -> None:
        missing = [t.name for t in self.entity_types.values() if t.required and t.name not in sequences]
        if missing:
            raise MalformedSnapshot(f"missing required sequences: {', '.join(missing)}", source)
