"""Snapshot files: backup to JSON, restore from JSON, validate JSON.

Backups are stored as one JSON object: a ``metadata`` key plus one key per
table.  The table structure and scoping are driven by a caller-provided
``BackupSchema``.

Usage:
    from tenant_backup.backup.backup_restore import (
        backup_database,
        restore_database,
        validate_backup,
    )
    from tenant_backup.backup.catalog import DEFAULT_SCHEMA

    # Backup
    path = await backup_database(adapter, DEFAULT_SCHEMA, SnapshotOptions(tenant_id="b1"))

    # Restore
    result = await restore_database(adapter, DEFAULT_SCHEMA, path)

    # Validate (sync -- local file read only)
    report = validate_backup(path, DEFAULT_SCHEMA)
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from tenant_backup.adapters.base import DatabaseClient
from tenant_backup.backup.errors import StructuralError
from tenant_backup.backup.models import (
    BackupSchema,
    RestoreResult,
    Snapshot,
    SnapshotMetadata,
    SnapshotOptions,
    TableDef,
)
from tenant_backup.backup.restore import restore_snapshot
from tenant_backup.backup.snapshot import build_snapshot, compute_checksum

logger = logging.getLogger(__name__)


def write_snapshot(snapshot: Snapshot, output_path: str | Path) -> str:
    """Write ``snapshot`` as JSON and return the path."""
    output_path_obj = Path(output_path)
    output_path_obj.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path_obj, "w") as f:
        json.dump(snapshot.to_document(), f, indent=2, default=str)

    return str(output_path_obj)


def _load_document(backup_path: str | Path) -> Any:
    with open(backup_path, "r") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise StructuralError(f"Invalid JSON: {e}") from e


def read_snapshot(backup_path: str | Path, schema: BackupSchema | None = None) -> Snapshot:
    """Load and shape-check a snapshot file.

    Raises:
        FileNotFoundError: If the file does not exist.
        StructuralError: If the file is not valid JSON or not a snapshot.
    """
    return Snapshot.from_document(_load_document(backup_path), schema)


async def backup_database(
    adapter: DatabaseClient,
    schema: BackupSchema,
    options: SnapshotOptions | None = None,
    output_path: str | None = None,
    output_dir: str | Path | None = None,
    metadata: dict | None = None,
) -> str:
    """Export database rows to a JSON backup file.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        schema: Declarative backup schema describing tables and scopes.
        options: Snapshot options (tenant scope, demo/audit toggles).
        output_path: Path to save backup file.  When ``None``, generates a
            timestamped path under ``output_dir`` (default ``./backups/``).
        output_dir: Directory for generated paths.
        metadata: Optional extra metadata merged into the backup's
            ``metadata`` section.

    Returns:
        Path to the created backup file.

    Example:
        path = await backup_database(
            adapter,
            schema,
            SnapshotOptions(tenant_id="b1", include_audit_logs=True),
            metadata={"environment": "staging"},
        )
    """
    snapshot = await build_snapshot(adapter, schema, options)

    if metadata:
        merged = SnapshotMetadata.model_validate(
            {**snapshot.metadata.model_dump(by_alias=True), **metadata}
        )
        snapshot = snapshot.model_copy(update={"metadata": merged})

    # Generate output path if not provided
    if output_path is None:
        backups_dir = Path(output_dir) if output_dir else Path.cwd() / "backups"
        backups_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
        output_path = str(backups_dir / f"backup-{timestamp}.json")

    path = write_snapshot(snapshot, output_path)
    logger.info(f"Backup written to {path}")
    return path


async def restore_database(
    adapter: DatabaseClient | None,
    schema: BackupSchema,
    backup_path: str,
    dry_run: bool = False,
    **restore_kwargs: Any,
) -> RestoreResult:
    """Restore database rows from a JSON backup file.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
            May be ``None`` when ``dry_run`` is set.
        schema: Declarative backup schema describing tables and identities.
        backup_path: Path to backup JSON file.
        dry_run: When ``True``, restore into an empty in-memory database
            enforcing the schema's scope references instead of ``adapter``.
            Reports records whose parents are missing from the backup.
        **restore_kwargs: Forwarded to ``restore_snapshot`` (``batch_size``,
            ``timeout_ms``, ``progress``, ...).

    Returns:
        ``RestoreResult``.

    Raises:
        FileNotFoundError: If the backup file does not exist.
        StructuralError: If the file is not a valid snapshot.
    """
    snapshot = read_snapshot(backup_path, schema)

    # Record-level problems are reported per record by the restore itself
    validation = validate_snapshot(snapshot, schema)
    for problem in validation["errors"] + validation["warnings"]:
        logger.warning(f"{backup_path}: {problem}")

    if dry_run:
        from tenant_backup.adapters.memory import InMemoryAdapter

        adapter = InMemoryAdapter.from_schema(schema)
    elif adapter is None:
        raise ValueError("adapter is required unless dry_run is set")

    return await restore_snapshot(adapter, snapshot, schema, **restore_kwargs)


def validate_backup(backup_path: str, schema: BackupSchema) -> dict:
    """Validate backup file format and data integrity.

    This function is **sync** -- it only reads a local JSON file with
    no database I/O.

    Args:
        backup_path: Path to backup JSON file.
        schema: Declarative backup schema to validate against.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        and ``warnings`` (list[str]).

    Example:
        report = validate_backup("backups/backup.json", schema)
        if report["errors"]:
            raise ValueError("Backup is invalid")
    """
    try:
        snapshot = read_snapshot(backup_path, schema)
    except FileNotFoundError:
        errors = [f"Backup file not found: {backup_path}"]
        return {"valid": False, "errors": errors, "warnings": []}
    except StructuralError as e:
        return {"valid": False, "errors": [str(e)], "warnings": []}
    return validate_snapshot(snapshot, schema)


# Metadata keys a complete snapshot carries, by field name
_EXPECTED_METADATA = {
    "version": "version",
    "backupType": "backup_type",
    "timestamp": "timestamp",
    "schemaVersion": "schema_version",
}


def validate_snapshot(snapshot: Snapshot, schema: BackupSchema) -> dict:
    """Check a parsed snapshot against ``schema``.

    Every record of a known table must carry its identity fields and no
    nested values.  Missing metadata, orphaned scope references and
    checksum mismatches are reported as warnings.

    Returns:
        Same shape as ``validate_backup``.
    """
    errors: list[str] = []
    warnings: list[str] = []

    # Check metadata
    present = snapshot.metadata.model_fields_set
    for key, field in _EXPECTED_METADATA.items():
        if field not in present:
            warnings.append(f"Missing metadata field: {key}")

    if snapshot.metadata.schema_version and snapshot.metadata.schema_version != schema.version:
        warnings.append(
            f"Schema version '{snapshot.metadata.schema_version}' differs from "
            f"'{schema.version}'"
        )
    for warning in snapshot.metadata.warnings:
        warnings.append(f"Backup warning: {warning}")

    checksum = snapshot.metadata.checksum
    if checksum and checksum != compute_checksum(snapshot.tables):
        warnings.append("Checksum mismatch: table data changed since backup")

    # Validate each table's rows against schema
    for name, rows in snapshot.tables.items():
        table_def = schema.get(name)
        if table_def is None:
            warnings.append(f"Unknown table '{name}' will be skipped")
            continue

        for index, row in enumerate(rows):
            missing = [c for c in table_def.identity if row.get(c) in (None, "")]
            if missing:
                errors.append(
                    f"{name} row {index} missing identity field(s): {', '.join(missing)}"
                )
            nested = [k for k, v in row.items() if isinstance(v, dict) or (
                isinstance(v, list) and any(isinstance(i, (dict, list)) for i in v)
            )]
            if nested:
                errors.append(
                    f"{name} row {index} has nested value(s): {', '.join(sorted(nested))}"
                )

        warnings.extend(_orphan_warnings(schema, snapshot, table_def))

    valid = len(errors) == 0
    return {"valid": valid, "errors": errors, "warnings": warnings}


def _orphan_warnings(schema: BackupSchema, snapshot: Snapshot, table_def: TableDef) -> list[str]:
    """Rows whose scope reference is not present in the backup."""
    if table_def.scope is None:
        return []
    parent_def = schema.get(table_def.scope.table)
    if parent_def is None or parent_def.name not in snapshot.tables:
        return []

    parent_pks = {
        r[parent_def.pk] for r in snapshot.tables[parent_def.name] if parent_def.pk in r
    }
    field = table_def.scope.field
    orphans = [
        r for r in snapshot.tables[table_def.name]
        if r.get(field) is not None and r.get(field) not in parent_pks
    ]
    if not orphans:
        return []
    return [
        f"Orphaned {table_def.name}: {len(orphans)} row(s) with {field} not in backup"
    ]
