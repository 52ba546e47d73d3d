"""Backup/restore service used by the CLI and embedding applications.

Wires an adapter, a schema, a progress store and the configured settings
so callers only pass what changes per request.

Usage:
    service = BackupService(adapter, DEFAULT_SCHEMA, progress_store, config)

    snapshot = await service.create_backup(SnapshotOptions(tenant_id="b1"))

    # Wait for the result
    result = await service.restore_backup(snapshot)

    # Or return immediately and poll
    progress_id = service.start_restore(snapshot)
    service.get_progress(progress_id)
"""

import asyncio
import logging
from typing import Any

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.models import BackupSchema, RestoreResult, Snapshot, SnapshotOptions
from tenant_backup.backup.restore import restore_snapshot
from tenant_backup.backup.snapshot import build_snapshot
from tenant_backup.config.models import BackupConfig
from tenant_backup.progress.models import ProgressEntry, ProgressUpdate
from tenant_backup.progress.store import ProgressStore

logger = logging.getLogger(__name__)


class BackupService:
    """Snapshot and restore entry points sharing one progress store.

    Args:
        adapter: Database used for both snapshots and restores.
        schema: Table catalog.
        progress_store: Shared store; pollable from other processes when
            it has durable storage.
        config: Loaded configuration.  Defaults apply when omitted.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        schema: BackupSchema,
        progress_store: ProgressStore | None = None,
        config: BackupConfig | None = None,
    ) -> None:
        self.adapter = adapter
        self.schema = schema
        self.progress_store = progress_store or ProgressStore()
        self.config = config or BackupConfig()
        self._tasks: set[asyncio.Task] = set()

    def _snapshot_options(self, options: SnapshotOptions | None) -> SnapshotOptions:
        if options is not None:
            return options
        settings = self.config.snapshot
        return SnapshotOptions(
            audit_log_limit=settings.audit_log_limit,
            max_workers=settings.max_workers,
            demo_prefixes=settings.demo_prefixes,
            demo_suffixes=settings.demo_suffixes,
        )

    def _restore_kwargs(self) -> dict[str, Any]:
        settings = self.config.restore
        return {
            "batch_size": settings.batch_size,
            "timeout_ms": settings.timeout_ms or None,
            "max_error_log": settings.max_error_log,
        }

    async def create_backup(self, options: SnapshotOptions | None = None) -> Snapshot:
        """Build a snapshot.  ``options`` defaults to the ``[snapshot]`` settings."""
        return await build_snapshot(self.adapter, self.schema, self._snapshot_options(options))

    async def restore_backup(
        self,
        snapshot: Snapshot | dict,
        progress_id: str | None = None,
        **overrides: Any,
    ) -> RestoreResult:
        """Restore and wait for the result.

        ``overrides`` replace configured restore settings (``batch_size``,
        ``timeout_ms``, ``on_progress``, ...).  The result carries the
        ``progress_id`` under which progress was published.
        """
        kwargs = {**self._restore_kwargs(), **overrides}
        return await restore_snapshot(
            self.adapter,
            snapshot,
            self.schema,
            progress=self.progress_store,
            progress_id=progress_id,
            **kwargs,
        )

    def start_restore(self, snapshot: Snapshot | dict, **overrides: Any) -> str:
        """Start a restore in the background and return its progress id.

        Must be called from a running event loop.  Structural errors and
        crashes surface as a ``failed`` progress entry.
        """
        progress_id = self.progress_store.create_id()
        task = asyncio.get_running_loop().create_task(
            self._run_restore(snapshot, progress_id, overrides)
        )
        # Keep a reference so the task is not garbage collected mid-run
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return progress_id

    async def _run_restore(
        self, snapshot: Snapshot | dict, progress_id: str, overrides: dict[str, Any]
    ) -> RestoreResult | None:
        try:
            return await self.restore_backup(snapshot, progress_id=progress_id, **overrides)
        except Exception as e:
            logger.error(f"Background restore {progress_id} failed: {e}")
            await asyncio.to_thread(
                self.progress_store.update,
                progress_id,
                ProgressUpdate(status="failed", errors=[str(e)]),
            )
            return None

    def get_progress(self, progress_id: str) -> ProgressEntry | None:
        return self.progress_store.get(progress_id)

    async def wait(self) -> None:
        """Wait for every background restore started by this service."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
