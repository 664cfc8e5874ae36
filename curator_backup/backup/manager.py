"""Snapshot export and backup directory bookkeeping."""

from pathlib import Path
from typing import List, Optional, Union

from .._utils import logger, write_bytes_atomic
from ..base import BaseLiveStore
from ..config import BackupConfig
from ..exceptions import BackupIOError, MalformedSnapshot, SnapshotNotFoundError
from .codec import SnapshotCodec
from .models import BackupStats, SnapshotDocument, SnapshotHeader, SnapshotMetadata
from .utils import (
    SNAPSHOT_PREFIX,
    compute_checksum,
    generate_snapshot_id,
    is_snapshot_file,
    snapshot_filename,
)


class BackupService:
    """Export the live store to timestamped snapshot files and report on them."""

    def __init__(
        self,
        live_store: BaseLiveStore,
        config: BackupConfig,
        codec: Optional[SnapshotCodec] = None,
    ):
        """Initialize backup service.

        Args:
            live_store: Live store to export from
            config: Backup configuration (backup_dir is created if missing)
            codec: Snapshot codec, defaults to one over the live store's entity types
        """
        self.live_store = live_store
        self.config = config
        self.codec = codec or SnapshotCodec(live_store.entity_types, indent=config.snapshot_indent)
        self.backup_dir = Path(config.backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    async def export_all_data(self) -> SnapshotDocument:
        """Write the whole live store to a new snapshot file.

        Earlier snapshot files are never touched. The file only becomes
        visible once completely written.

        Returns:
            The snapshot document that was written

        Raises:
            BackupIOError: the snapshot could not be written
        """
        entities = {}
        for name in self.codec.entity_types:
            entities[name] = await self.live_store.list(name)

        document = self.codec.serialize(entities)
        payload = self.codec.encode(document)
        path = self._new_snapshot_path(document)

        try:
            write_bytes_atomic(path, payload)
        except OSError as e:
            logger.error(f"Snapshot export to {path} failed: {e}")
            raise BackupIOError(str(path), str(e)) from e

        counts = ", ".join(f"{k}={v}" for k, v in document.counts().items())
        logger.info(f"Snapshot exported: {path.name} ({len(payload):,} bytes; {counts})")
        return document

    def _new_snapshot_path(self, document: SnapshotDocument) -> Path:
        base_id = generate_snapshot_id(document.captured_at)
        path = self.backup_dir / snapshot_filename(base_id)
        suffix = 1
        while path.exists():
            path = self.backup_dir / snapshot_filename(f"{base_id}-{suffix}")
            suffix += 1
        return path

    def _snapshot_files(self) -> List[Path]:
        # Name order is capture order
        return sorted(p for p in self.backup_dir.glob(f"{SNAPSHOT_PREFIX}*.json") if is_snapshot_file(p))

    def _read_header(self, path: Path) -> SnapshotHeader:
        with open(path, "rb") as f:
            raw = f.read()
        return self.codec.read_header(raw, source=path.name)

    async def get_backup_stats(self) -> BackupStats:
        """Aggregate statistics over the backup directory.

        Unreadable or partial files are counted as corrupt instead of failing
        the call; files that disappear mid-scan are ignored.
        """
        stats = BackupStats()
        latest: Optional[SnapshotHeader] = None

        for path in self._snapshot_files():
            try:
                size = path.stat().st_size
                header = self._read_header(path)
            except FileNotFoundError:
                continue
            except (OSError, MalformedSnapshot) as e:
                logger.warning(f"Corrupt snapshot {path.name}: {e}")
                stats.corrupt += 1
                stats.total_bytes += self._size_or_zero(path)
                continue

            stats.total_snapshots += 1
            stats.total_bytes += size
            if latest is None or header.captured_at >= latest.captured_at:
                latest = header
                stats.latest_snapshot_id = path.stem

        if latest is not None:
            stats.latest_export_at = latest.captured_at
            stats.entity_counts = dict(latest.counts)

        logger.debug(
            f"Backup stats: {stats.total_snapshots} snapshots, {stats.corrupt} corrupt, "
            f"{stats.total_bytes:,} bytes"
        )
        return stats

    @staticmethod
    def _size_or_zero(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0

    async def list_snapshots(self) -> List[SnapshotMetadata]:
        """List readable snapshots, newest first."""
        snapshots = []

        for path in self._snapshot_files():
            try:
                header = self._read_header(path)
                snapshots.append(SnapshotMetadata(
                    snapshot_id=path.stem,
                    captured_at=header.captured_at,
                    size_bytes=path.stat().st_size,
                    version=header.version,
                    counts=header.counts,
                    checksum=compute_checksum(path),
                ))
            except (OSError, MalformedSnapshot) as e:
                logger.warning(f"Failed to read snapshot {path.name}: {e}")

        snapshots.sort(key=lambda s: (s.captured_at, s.snapshot_id), reverse=True)
        return snapshots

    async def latest_snapshot_id(self) -> Optional[str]:
        snapshots = await self.list_snapshots()
        return snapshots[0].snapshot_id if snapshots else None

    async def get_snapshot_path(self, snapshot_id: str) -> Optional[Path]:
        """Get path to a snapshot file, or None if not found."""
        path = self.backup_dir / snapshot_filename(snapshot_id)
        if path.parent != self.backup_dir or not is_snapshot_file(path):
            return None
        return path

    async def load_snapshot(self, snapshot: Union[str, Path]) -> SnapshotDocument:
        """Load and parse a snapshot by id (a str) or by file path (a Path).

        Raises:
            SnapshotNotFoundError: no such snapshot
            MalformedSnapshot: the file is not a valid snapshot
        """
        path = snapshot if isinstance(snapshot, Path) else await self.get_snapshot_path(snapshot)
        if path is None or not path.is_file():
            raise SnapshotNotFoundError(str(snapshot))

        with open(path, "rb") as f:
            raw = f.read()
        return self.codec.deserialize(raw, source=path.name)

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        """Delete a snapshot file.

        Returns:
            True if deleted, False if not found
        """
        path = await self.get_snapshot_path(snapshot_id)
        if path is None:
            return False

        path.unlink()
        logger.info(f"Deleted snapshot: {snapshot_id}")
        return True

