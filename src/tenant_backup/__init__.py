"""tenant-backup: tenant-scoped backup, restore and progress tracking.

Builds flat JSON snapshots of a multi-tenant datastore, restores them in
dependency order with bounded retries, and publishes restore progress that
other processes can poll.

Usage:
    from tenant_backup import AsyncPostgresAdapter, BackupService, get_adapter
    from tenant_backup import BackupSchema, TableDef, ForeignKey, DEFAULT_SCHEMA
    from tenant_backup import build_snapshot, restore_snapshot, SnapshotOptions
    from tenant_backup import ProgressStore, FileProgressStorage
"""

__version__ = "0.1.0"

# Adapters
from tenant_backup.adapters.base import DatabaseClient, Transaction
from tenant_backup.adapters.postgres import AsyncPostgresAdapter
from tenant_backup.adapters.memory import InMemoryAdapter

# Config
from tenant_backup.config.loader import load_config
from tenant_backup.config.models import BackupConfig, DatabaseProfile

# Factory
from tenant_backup.factory import (
    ProfileNotFoundError,
    connect_and_check,
    get_adapter,
    get_progress_store,
    resolve_url,
)

# Backup
from tenant_backup.backup.catalog import DEFAULT_SCHEMA
from tenant_backup.backup.errors import (
    BackupError,
    DependencyViolation,
    PermanentRecordError,
    PersistenceWarning,
    RestoreTimeoutError,
    StructuralError,
)
from tenant_backup.backup.models import (
    BackupSchema,
    ForeignKey,
    RestoreResult,
    Snapshot,
    SnapshotOptions,
    TableDef,
)
from tenant_backup.backup.restore import restore_snapshot
from tenant_backup.backup.service import BackupService
from tenant_backup.backup.snapshot import build_snapshot

# Progress
from tenant_backup.progress.models import ProgressEntry, ProgressUpdate
from tenant_backup.progress.storage import FileProgressStorage
from tenant_backup.progress.store import ProgressStore

__all__ = [
    # Adapters
    "DatabaseClient",
    "Transaction",
    "AsyncPostgresAdapter",
    "InMemoryAdapter",
    # Config
    "load_config",
    "BackupConfig",
    "DatabaseProfile",
    # Factory
    "get_adapter",
    "get_progress_store",
    "connect_and_check",
    "ProfileNotFoundError",
    "resolve_url",
    # Backup
    "DEFAULT_SCHEMA",
    "BackupSchema",
    "TableDef",
    "ForeignKey",
    "Snapshot",
    "SnapshotOptions",
    "RestoreResult",
    "BackupService",
    "build_snapshot",
    "restore_snapshot",
    "BackupError",
    "StructuralError",
    "DependencyViolation",
    "PermanentRecordError",
    "RestoreTimeoutError",
    "PersistenceWarning",
    # Progress
    "ProgressStore",
    "ProgressEntry",
    "ProgressUpdate",
    "FileProgressStorage",
]
