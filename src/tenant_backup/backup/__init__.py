"""Tenant-scoped backup and restore with a declarative table catalog.

The table structure, tenant scoping and dependency order are declared by
a ``BackupSchema``; ``DEFAULT_SCHEMA`` covers the multi-tenant business
datastore.

Usage:
    from tenant_backup.backup import DEFAULT_SCHEMA, SnapshotOptions
    from tenant_backup.backup import build_snapshot, restore_snapshot
    from tenant_backup.backup import backup_database, restore_database, validate_backup
"""

from tenant_backup.backup.backup_restore import (
    backup_database,
    read_snapshot,
    restore_database,
    validate_backup,
    validate_snapshot,
    write_snapshot,
)
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
    SnapshotMetadata,
    SnapshotOptions,
    TableDef,
)
from tenant_backup.backup.restore import restore_snapshot
from tenant_backup.backup.service import BackupService
from tenant_backup.backup.snapshot import build_snapshot

__all__ = [
    "BackupSchema",
    "TableDef",
    "ForeignKey",
    "DEFAULT_SCHEMA",
    "Snapshot",
    "SnapshotMetadata",
    "SnapshotOptions",
    "RestoreResult",
    "BackupService",
    "build_snapshot",
    "restore_snapshot",
    "backup_database",
    "restore_database",
    "validate_backup",
    "validate_snapshot",
    "read_snapshot",
    "write_snapshot",
    "BackupError",
    "StructuralError",
    "DependencyViolation",
    "PermanentRecordError",
    "RestoreTimeoutError",
    "PersistenceWarning",
]
