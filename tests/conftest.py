"""Global pytest configuration and fixtures."""

import pytest
import sys
import tempfile
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from curator_backup.config import BackupConfig
from curator_backup._storage import InMemoryLiveStore
from curator_backup.backup import DataLifecycle


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def backup_config(temp_data_dir):
    """Backup config rooted in the temp directory, without retry delays."""
    return BackupConfig(
        backup_dir=str(temp_data_dir / "backups"),
        archive_dir=str(temp_data_dir / "archives"),
        archive_write_attempts=1,
        archive_retry_wait=0,
    )


@pytest.fixture
def live_store():
    return InMemoryLiveStore()


@pytest.fixture
def lifecycle(live_store, backup_config):
    return DataLifecycle(live_store, backup_config)
