"""Restore orchestrator.

Writes a ``Snapshot`` into a target database in dependency order:

1. Validate the snapshot shape (``StructuralError``, nothing written).
2. Seed progress with every table's record count.
3. Walk ``schema.restore_order()``; skip snapshot tables the schema does
   not know, and device-specific tables captured on another host.
4. Upsert each table in batches, one transaction per batch and one
   savepoint per record.  Dependency violations are deferred, anything
   else is a permanent record error.
5. Retry deferred records once, after every table has had its pass.

Progress writes run in a worker thread so a slow durable store never
stalls the event loop.

Every write is an upsert keyed by the table's declared identity, so
running the same restore twice converges to the same state.  A timeout
stops the restore between batches without rolling back committed work;
re-running is the recovery path.

Usage:
    from tenant_backup.backup.restore import restore_snapshot

    result = await restore_snapshot(adapter, snapshot, schema, batch_size=200)
    if not result.success:
        for entry in result.error_log:
            print(entry.table, entry.record_id, entry.message)
"""

import asyncio
import logging
import socket
import time
from collections.abc import Callable, Mapping
from typing import Any

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.deferral import MAX_ATTEMPTS, DeferralQueue, DeferredRecord
from tenant_backup.backup.errors import StructuralError, is_dependency_violation
from tenant_backup.backup.models import (
    BackupSchema,
    ErrorKind,
    ErrorLogEntry,
    RestoreResult,
    Snapshot,
    TableCounts,
    TableDef,
)
from tenant_backup.progress.models import ProgressUpdate, TableProgress
from tenant_backup.progress.store import ProgressStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]
ErrorCallback = Callable[[str, str | None, str], None]


def _record_id(table_def: TableDef, record: Mapping[str, Any]) -> str | None:
    if record.get(table_def.pk) is not None:
        return str(record[table_def.pk])
    values = [record.get(c) for c in table_def.identity]
    if all(v is not None for v in values):
        return ":".join(str(v) for v in values)
    return None


def _record_problem(table_def: TableDef, record: Mapping[str, Any]) -> str | None:
    """Reason the record can never be upserted, or None."""
    missing = [c for c in table_def.identity if record.get(c) is None]
    if missing:
        return f"missing identity field(s): {', '.join(missing)}"
    nested = [
        k for k, v in record.items()
        if isinstance(v, dict)
        or (isinstance(v, list) and any(isinstance(i, (dict, list)) for i in v))
    ]
    if nested:
        return f"nested value in field(s): {', '.join(sorted(nested))}"
    return None


class _RestoreRun:
    """Mutable state of one ``restore_snapshot`` call."""

    def __init__(
        self,
        adapter: DatabaseClient,
        schema: BackupSchema,
        batch_size: int,
        timeout_ms: int | None,
        on_progress: ProgressCallback | None,
        on_error: ErrorCallback | None,
        progress: ProgressStore | None,
        progress_id: str | None,
        max_error_log: int,
        monotonic: Callable[[], float],
    ) -> None:
        self.adapter = adapter
        self.schema = schema
        self.batch_size = batch_size
        self.timeout_ms = timeout_ms
        self.on_progress = on_progress
        self.on_error = on_error
        self.progress = progress
        self.progress_id = progress_id
        self.max_error_log = max_error_log
        self.monotonic = monotonic
        self.deadline = monotonic() + timeout_ms / 1000 if timeout_ms else None
        self.queue = DeferralQueue()
        self.result = RestoreResult(progress_id=progress_id)
        self._pending_progress_errors: list[str] = []
        self._retry_attempts = 0

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def expired(self) -> bool:
        return self.deadline is not None and self.monotonic() >= self.deadline

    def counts(self, table: str) -> TableCounts:
        return self.result.table_counts.setdefault(table, TableCounts())

    def record_error(
        self,
        table: str | None,
        record_id: str | None,
        message: str,
        kind: ErrorKind,
    ) -> None:
        self.result.errors += 1
        if len(self.result.error_log) < self.max_error_log:
            self.result.error_log.append(
                ErrorLogEntry(table=table, record_id=record_id, message=message, kind=kind)
            )
        self._pending_progress_errors.append(f"{table}[{record_id}]: {message}")
        logger.debug(f"Restore error ({kind}) {table}[{record_id}]: {message}")

        if self.on_error is not None:
            try:
                self.on_error(table or "", record_id, message)
            except Exception:
                logger.exception("on_error callback failed")

    async def report(self, **fields: Any) -> None:
        """Publish to the progress store without blocking the event loop."""
        if self.progress is None or self.progress_id is None:
            return
        errors, self._pending_progress_errors = self._pending_progress_errors, []
        update = ProgressUpdate(errors=errors, **fields)
        await asyncio.to_thread(self.progress.update, self.progress_id, update)

    def notify(self, table: str, processed: int, total: int) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(table, processed, total)
        except Exception:
            logger.exception(f"on_progress callback failed for {table}")

    def mark_timed_out(self, table: str | None, detail: str) -> None:
        self.result.timed_out = True
        message = f"Restore timed out after {self.timeout_ms} ms; {detail}"
        logger.warning(message)
        self.record_error(table, None, message, "timeout")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def restore_batch(self, table_def: TableDef, batch: list[dict]) -> None:
        """Upsert one batch inside one transaction."""
        name = table_def.name
        counts = self.counts(name)
        outcome: list[str | None] = [None] * len(batch)

        try:
            async with self.adapter.transaction() as tx:
                for i, record in enumerate(batch):
                    counts.attempted += 1
                    record_id = _record_id(table_def, record)
                    problem = _record_problem(table_def, record)
                    if problem is not None:
                        outcome[i] = "failed"
                        counts.failed += 1
                        self.record_error(name, record_id, problem, "validation")
                        continue

                    data = dict(record)
                    try:
                        await tx.upsert(name, data, table_def.identity)
                    except Exception as e:
                        if is_dependency_violation(e):
                            outcome[i] = "deferred"
                            counts.deferred += 1
                            self.queue.enqueue(name, data, e)
                        else:
                            outcome[i] = "failed"
                            counts.failed += 1
                            self.record_error(name, record_id, str(e), "database")
                    else:
                        outcome[i] = "ok"
        except Exception as e:
            # Nothing from this batch reached the database
            logger.warning(f"Batch commit failed for {name}: {e}")
            for i, record in enumerate(batch):
                if outcome[i] in ("failed", "deferred"):
                    continue
                if outcome[i] is None:
                    counts.attempted += 1
                counts.failed += 1
                self.record_error(
                    name, _record_id(table_def, record), f"batch commit failed: {e}", "commit"
                )
            return

        succeeded = outcome.count("ok")
        counts.succeeded += succeeded
        self.result.processed += succeeded

    async def restore_table(self, table_def: TableDef, records: list[dict]) -> bool:
        """First pass over one table.  Returns False if the restore timed out."""
        name = table_def.name
        total = len(records)
        counts = self.counts(name)
        await self.report(current_table=name)

        for start in range(0, total, self.batch_size):
            if self.expired():
                self.mark_timed_out(name, f"{total - start} record(s) of {name} not attempted")
                await self.report(table=name, processed=counts.attempted)
                self.notify(name, counts.attempted, total)
                return False
            await self.restore_batch(table_def, records[start:start + self.batch_size])
            await self.report(table=name, processed=counts.attempted)

        logger.info(
            f"Restored {name}: {counts.succeeded}/{total} "
            f"(deferred {counts.deferred}, failed {counts.failed})"
        )
        self.notify(name, counts.attempted, total)
        return True

    async def retry(self, item: DeferredRecord) -> None:
        # Heartbeat once per batch of retries
        if self._retry_attempts % self.batch_size == 0:
            await self.report(current_table=item.table)
        self._retry_attempts += 1
        table_def = self.schema.get(item.table)
        async with self.adapter.transaction() as tx:
            await tx.upsert(item.table, item.record, table_def.identity)

    async def retry_deferred(self) -> None:
        if not len(self.queue):
            return
        logger.info(f"Retrying {len(self.queue)} deferred record(s)")
        drained = await self.queue.drain(self.retry, should_stop=self.expired)

        skipped = [i for i in drained.permanently_failed if i.attempts < MAX_ATTEMPTS]
        if skipped:
            self.mark_timed_out(None, f"{len(skipped)} deferred record(s) not retried")

        self.result.retried = len(drained.succeeded) + len(drained.permanently_failed) - len(skipped)
        for item in drained.succeeded:
            self.counts(item.table).succeeded += 1
            self.result.processed += 1
        for item in drained.permanently_failed:
            self.fail_deferred(item, retried=item.attempts >= MAX_ATTEMPTS)

        logger.info(
            f"Retry pass: {len(drained.succeeded)} succeeded, "
            f"{len(drained.permanently_failed)} failed"
        )

    def fail_deferred(self, item: DeferredRecord, retried: bool) -> None:
        table_def = self.schema.get(item.table)
        self.counts(item.table).failed += 1
        if retried:
            message = f"dependency still missing after retry: {item.last_error}"
        else:
            message = f"not retried before timeout: {item.last_error}"
        self.record_error(item.table, _record_id(table_def, item.record), message, "dependency")


async def restore_snapshot(
    adapter: DatabaseClient,
    snapshot: Snapshot | Mapping[str, Any],
    schema: BackupSchema,
    *,
    batch_size: int = 100,
    timeout_ms: int | None = 600_000,
    on_progress: ProgressCallback | None = None,
    on_error: ErrorCallback | None = None,
    progress: ProgressStore | None = None,
    progress_id: str | None = None,
    target_host: str | None = None,
    max_error_log: int = 500,
    monotonic: Callable[[], float] = time.monotonic,
) -> RestoreResult:
    """Restore ``snapshot`` into ``adapter``.

    Args:
        adapter: Target database.
        snapshot: ``Snapshot`` or its parsed JSON document.
        schema: Table catalog providing order and record identities.
        batch_size: Records per transaction.
        timeout_ms: Budget for the whole restore; ``None`` disables it.
        on_progress: ``(table, processed_so_far, total)`` after each table.
            Deferred and failed records count as processed.
        on_error: ``(table, record_id, message)`` per permanent error.
        progress: Store receiving per-batch updates.
        progress_id: Entry to update; created when ``progress`` is given
            without one.
        target_host: Host being restored onto (default: this host).
            Device-specific tables are skipped unless the snapshot was
            taken on the same host.
        max_error_log: Entries kept in ``error_log`` (``errors`` keeps the
            full count).
        monotonic: Clock for the timeout.

    Returns:
        ``RestoreResult``.  ``table_counts[t].attempted`` is the first-pass
        count; ``succeeded``/``failed`` include retry outcomes.

    Raises:
        StructuralError: If the snapshot shape is invalid.  Nothing is written.
        ValueError: If ``batch_size`` is not positive.

    Example:
        result = await restore_snapshot(
            adapter,
            snapshot,
            DEFAULT_SCHEMA,
            on_progress=lambda t, n, total: print(f"{t}: {n}/{total}"),
        )
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    if isinstance(snapshot, Snapshot):
        if not snapshot.tables:
            raise StructuralError("Backup contains no data tables")
        if not any(schema.get(name) for name in snapshot.tables):
            raise StructuralError(
                "Backup contains no recognized tables: " + ", ".join(sorted(snapshot.tables))
            )
    else:
        snapshot = Snapshot.from_document(snapshot, schema)

    if progress is not None and progress_id is None:
        progress_id = await asyncio.to_thread(progress.create_id)

    run = _RestoreRun(
        adapter,
        schema,
        batch_size,
        timeout_ms,
        on_progress,
        on_error,
        progress,
        progress_id,
        max_error_log,
        monotonic,
    )
    result = run.result

    await run.report(
        tables={
            name: TableProgress(processed=0, total=len(records))
            for name, records in snapshot.tables.items()
        },
        status="running",
    )
    logger.info(
        f"Restore started: {snapshot.total_records} records in "
        f"{len(snapshot.tables)} tables (batch size {batch_size})"
    )

    target_host = target_host or socket.gethostname()
    source_host = snapshot.metadata.source_host
    for name, records in snapshot.tables.items():
        table_def = schema.get(name)
        if table_def is None:
            logger.warning(f"Skipping unknown table {name} ({len(records)} records)")
        elif table_def.device_specific and source_host != target_host:
            logger.warning(
                f"Skipping device table {name} ({len(records)} records): "
                f"snapshot from host {source_host!r}, restoring onto {target_host!r}"
            )
        else:
            continue
        result.skipped_tables.append(name)
        await run.report(table=name, processed=len(records))

    for name in schema.restore_order():
        if name not in snapshot.tables or name in result.skipped_tables:
            continue
        if not await run.restore_table(schema.get(name), snapshot.tables[name]):
            break

    if result.timed_out:
        for item in run.queue.take_all():
            run.fail_deferred(item, retried=False)
    else:
        await run.retry_deferred()

    result.deferred = sum(c.deferred for c in result.table_counts.values())
    result.success = result.errors == 0 and not result.timed_out
    await run.report(status="failed" if result.timed_out else "completed")

    logger.info(
        f"Restore finished: processed {result.processed}, errors {result.errors}, "
        f"deferred {result.deferred}, retried {result.retried}"
        + (" (timed out)" if result.timed_out else "")
    )
    return result
