from .base import BaseLiveStore
from .config import BackupConfig, LiveStoreConfig
from .exceptions import (
    CuratorBackupError,
    MalformedSnapshot,
    ArchiveWriteFailed,
    PerEntityRejected,
    BackupIOError,
    EntityNotFoundError,
    SnapshotNotFoundError,
)
from .schemas import (
    CURATORS,
    SERVERS,
    BOT_SETTINGS,
    NOTIFICATION_SETTINGS,
    RATING_SETTINGS,
    ACTIVITIES,
    TASK_REPORTS,
    RESPONSE_TRACKING,
    ENTITY_TYPES,
    EntityType,
)
from ._storage import InMemoryLiveStore, JsonLiveStore, create_live_store
from .backup import (
    ArchiveStore,
    BackupService,
    DataLifecycle,
    ImportReconciler,
    SnapshotCodec,
)

__version__ = "0.1.0"
__author__ = "curator-tracker"
__url__ = "https://github.com/curator-tracker/curator-backup"
