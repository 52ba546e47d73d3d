"""Snapshot builder.

Reads every table of a ``BackupSchema`` with one scoped query per table
(chunked for large id lists) and returns an immutable, flat ``Snapshot``.

Scoping:
    - The tenant table is read first (optionally a single tenant, optionally
      without demo tenants).
    - Directly scoped tables filter ``scope.field IN <tenant ids>``.
    - Transitively scoped tables filter ``scope.field IN <parent pks>``
      using the parent rows captured in an earlier wave.
    - In tenant backups, unscoped tables declaring ``member_of`` keep rows
      whose pk appears in the captured member table (users through
      memberships); ``owned_by`` tables keep rows referencing a captured
      owner row (accounts through users).
    - Other unscoped tables are read whole.  Device-specific tables are
      skipped unless ``include_device_data`` is set.

Reads inside a wave run concurrently, bounded by ``options.max_workers``.
A failing read degrades to an empty table plus a metadata warning.

Usage:
    from tenant_backup.backup.snapshot import build_snapshot
    from tenant_backup.backup.models import SnapshotOptions

    snapshot = await build_snapshot(adapter, schema, SnapshotOptions(tenant_id="b1"))
"""

import asyncio
import hashlib
import json
import logging
import socket
from collections.abc import Callable
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.models import (
    BackupSchema,
    Snapshot,
    SnapshotFlags,
    SnapshotMetadata,
    SnapshotOptions,
    SnapshotStats,
    SourceScope,
    TableDef,
)

logger = logging.getLogger(__name__)

# Maximum ids per IN (...) list
CHUNK_SIZE = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------
# Record flattening
# ------------------------------------------------------------------


def _scalar(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _is_nested(value: Any) -> bool:
    if isinstance(value, dict):
        return True
    if isinstance(value, (list, tuple)):
        return any(isinstance(v, (dict, list, tuple)) for v in value)
    return False


def flatten_record(record: dict, dropped: set[str] | None = None) -> dict:
    """Return a copy of ``record`` holding only scalars and scalar arrays.

    Nested objects and arrays of objects are removed; their field names are
    added to ``dropped``.
    """
    flat: dict[str, Any] = {}
    for field, value in record.items():
        if _is_nested(value):
            if dropped is not None:
                dropped.add(field)
            continue
        if isinstance(value, (list, tuple)):
            flat[field] = [_scalar(v) for v in value]
        else:
            flat[field] = _scalar(value)
    return flat


def _identity_sort_key(identity: list[str]) -> Callable[[dict], tuple]:
    def key(record: dict) -> tuple:
        return tuple(
            (record.get(c) is None, str(record.get(c))) for c in identity
        )
    return key


def compute_checksum(tables: dict[str, list[dict]]) -> str:
    """SHA-256 over the canonical JSON form of ``tables``."""
    canonical = json.dumps(tables, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def is_demo_tenant(tenant_id: Any, options: SnapshotOptions) -> bool:
    """True if ``tenant_id`` matches a reserved demo prefix or suffix."""
    if not isinstance(tenant_id, str):
        return False
    return any(tenant_id.startswith(p) for p in options.demo_prefixes) or any(
        tenant_id.endswith(s) for s in options.demo_suffixes
    )


# ------------------------------------------------------------------
# Table reads
# ------------------------------------------------------------------


async def _select(
    adapter: DatabaseClient,
    semaphore: asyncio.Semaphore,
    table: str,
    **kwargs: Any,
) -> list[dict]:
    async with semaphore:
        return await adapter.select(table, "*", **kwargs)


async def _read_table(
    adapter: DatabaseClient,
    table_def: TableDef,
    field: str | None,
    ids: list | None,
    options: SnapshotOptions,
    semaphore: asyncio.Semaphore,
) -> list[dict]:
    """Read one table, keeping rows whose ``field`` is in ``ids``.

    ``field`` is None for tables read whole.
    """
    order_by = f"-{table_def.order_by}" if table_def.audit and table_def.order_by else None
    limit = options.audit_log_limit if table_def.audit else None

    if field is None:
        return await _select(
            adapter, semaphore, table_def.name, order_by=order_by, limit=limit
        )

    ids = ids or []
    filters: list[dict[str, Any]] = [
        {field: ids[i:i + CHUNK_SIZE]} for i in range(0, len(ids), CHUNK_SIZE)
    ]
    if table_def.include_unscoped and table_def.scope is not None:
        filters.append({field: None})

    # A single query can sort and cap in the database
    capped = {"order_by": order_by, "limit": limit} if len(filters) == 1 else {}
    queries = [
        _select(adapter, semaphore, table_def.name, filters=f, **capped) for f in filters
    ]

    rows: list[dict] = []
    for chunk in await asyncio.gather(*queries):
        rows.extend(chunk)

    if table_def.audit and table_def.order_by and len(filters) > 1:
        rows.sort(key=lambda r: str(r.get(table_def.order_by)), reverse=True)
        rows = rows[:limit]
    return rows


def _narrowing(
    schema: BackupSchema,
    table_def: TableDef,
    raw: dict[str, list[dict]],
    narrowed: bool,
) -> tuple[str | None, list | None]:
    """Filter column and allowed values for ``table_def``, or (None, None)."""
    if table_def.scope is not None:
        parent = schema.get(table_def.scope.table)
        ids = [r[parent.pk] for r in raw.get(parent.name, []) if r.get(parent.pk) is not None]
        return table_def.scope.field, ids
    if not narrowed:
        return None, None
    if table_def.member_of is not None:
        ref = table_def.member_of
        values = [r[ref.field] for r in raw.get(ref.table, []) if r.get(ref.field) is not None]
        return table_def.pk, list(dict.fromkeys(values))
    if table_def.owned_by is not None:
        owner = schema.get(table_def.owned_by.table)
        ids = [r[owner.pk] for r in raw.get(owner.name, []) if r.get(owner.pk) is not None]
        return table_def.owned_by.field, ids
    return None, None


# ------------------------------------------------------------------
# Builder
# ------------------------------------------------------------------


async def build_snapshot(
    adapter: DatabaseClient,
    schema: BackupSchema,
    options: SnapshotOptions | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> Snapshot:
    """Build a flat, deterministic snapshot of ``schema``'s tables.

    Args:
        adapter: Source database.
        schema: Table catalog with scope declarations.
        options: Tenant scope, demo/audit toggles and concurrency.
        clock: Supplies the metadata timestamp (the only wall-clock value).

    Returns:
        Frozen ``Snapshot``.  Record selection and ordering depend only on
        the source data, so unchanged data yields an identical checksum.
    """
    options = options or SnapshotOptions()
    semaphore = asyncio.Semaphore(options.max_workers)
    warnings: list[str] = []
    raw: dict[str, list[dict]] = {}

    # 1. Tenants
    tenant_def = schema.get(schema.tenant_table)
    tenant_filters = {tenant_def.pk: options.tenant_id} if options.tenant_id else None
    try:
        tenants = await _select(adapter, semaphore, tenant_def.name, filters=tenant_filters)
    except Exception as e:
        logger.warning(f"Failed to read {tenant_def.name}: {e}")
        warnings.append(f"{tenant_def.name}: read failed ({e})")
        tenants = []

    if options.tenant_id is None and not options.include_demo:
        kept = [t for t in tenants if not is_demo_tenant(t.get(tenant_def.pk), options)]
        if len(kept) != len(tenants):
            logger.info(f"Excluded {len(tenants) - len(kept)} demo tenant(s)")
        tenants = kept
    raw[tenant_def.name] = tenants

    # 2. Remaining tables in waves; a table is read after whatever narrows it
    narrowed = options.tenant_id is not None
    waves: dict[int, list[TableDef]] = {}
    for table_def in schema.tables:
        if table_def.name == tenant_def.name:
            continue
        if table_def.audit and not options.include_audit_logs:
            continue
        if table_def.device_specific and not options.include_device_data:
            continue
        depth = max(schema.read_depth(table_def.name, narrowed=narrowed), 1)
        waves.setdefault(depth, []).append(table_def)

    for depth in sorted(waves):
        wave = waves[depth]
        reads = []
        for table_def in wave:
            field, ids = _narrowing(schema, table_def, raw, narrowed)
            reads.append(_read_table(adapter, table_def, field, ids, options, semaphore))

        results = await asyncio.gather(*reads, return_exceptions=True)
        for table_def, result in zip(wave, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Failed to read {table_def.name}: {result}")
                warnings.append(f"{table_def.name}: read failed ({result})")
                raw[table_def.name] = []
            else:
                raw[table_def.name] = result
        logger.debug(f"Snapshot wave {depth}: {len(wave)} table(s)")

    # 3. Flatten and order deterministically
    tables: dict[str, list[dict]] = {}
    for name in schema.restore_order():
        if name not in raw:
            continue
        dropped: set[str] = set()
        records = [flatten_record(r, dropped) for r in raw[name]]
        for field in sorted(dropped):
            warnings.append(f"{name}.{field}: nested value removed")
        table_def = schema.get(name)
        records.sort(key=_identity_sort_key(table_def.identity))
        tables[name] = records

    table_counts = {name: len(records) for name, records in tables.items()}
    metadata = SnapshotMetadata(
        backup_type="tenant" if options.tenant_id else "full",
        timestamp=clock().isoformat(),
        schema_version=schema.version,
        source_scope=SourceScope(
            tenant_id=options.tenant_id,
            tenant_ids=sorted(str(t[tenant_def.pk]) for t in tenants if tenant_def.pk in t),
        ),
        flags=SnapshotFlags(
            include_demo_data=options.include_demo,
            include_audit_logs=options.include_audit_logs,
            audit_log_limit=options.audit_log_limit if options.include_audit_logs else None,
            include_device_data=options.include_device_data,
        ),
        warnings=warnings,
        stats=SnapshotStats(
            total_records=sum(table_counts.values()),
            total_tables=len(tables),
            table_counts=table_counts,
        ),
        checksum=compute_checksum(tables),
        created_by=options.created_by,
        source_host=socket.gethostname(),
    )

    logger.info(
        f"Snapshot built: {metadata.stats.total_records} records in "
        f"{metadata.stats.total_tables} tables ({len(warnings)} warnings)"
    )
    return Snapshot(metadata=metadata, tables=tables)
