"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from tenant_backup.config import load_config, DatabaseProfile, BackupConfig
"""

from tenant_backup.config.loader import load_config
from tenant_backup.config.models import (
    BackupConfig,
    ConnectionResult,
    DatabaseProfile,
    ProgressSettings,
    RestoreSettings,
    SnapshotSettings,
)

__all__ = [
    "load_config",
    "BackupConfig",
    "DatabaseProfile",
    "ConnectionResult",
    "SnapshotSettings",
    "RestoreSettings",
    "ProgressSettings",
]
