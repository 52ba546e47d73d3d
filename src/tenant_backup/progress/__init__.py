"""Cross-process restore progress tracking.

Usage:
    from tenant_backup.progress import ProgressStore, FileProgressStorage, ProgressUpdate

    store = ProgressStore(FileProgressStorage("/var/lib/tenant-backup/progress"))
    progress_id = store.create_id()
    store.update(progress_id, ProgressUpdate(table="businesses", processed=10))
    store.get(progress_id)  # from any process sharing the directory
"""

from tenant_backup.progress.models import (
    ProgressEntry,
    ProgressStatus,
    ProgressUpdate,
    TableProgress,
)
from tenant_backup.progress.storage import FileProgressStorage, ProgressStorage
from tenant_backup.progress.store import PersistenceWarning, ProgressStore

__all__ = [
    "ProgressEntry",
    "ProgressStatus",
    "ProgressUpdate",
    "TableProgress",
    "ProgressStorage",
    "FileProgressStorage",
    "ProgressStore",
    "PersistenceWarning",
]
