"""Backup, restore, validate and progress commands.

Registered on the ``tenant-backup`` parser by ``register()``.  Every
command uses ``DEFAULT_SCHEMA``.

Usage:
    TB_DB_PROFILE=prod tenant-backup --env-prefix TB_ backup --tenant b1
    tenant-backup restore backups/backup-2025-12-30-101500.json --yes
    tenant-backup restore backups/backup.json --dry-run
    tenant-backup validate backups/backup.json
    tenant-backup progress <id>
"""

import argparse
import asyncio
from pathlib import Path

from rich.console import Console
from rich.table import Table

from tenant_backup.backup.backup_restore import backup_database, restore_database, validate_backup
from tenant_backup.backup.catalog import DEFAULT_SCHEMA
from tenant_backup.backup.errors import StructuralError
from tenant_backup.backup.models import RestoreResult, SnapshotOptions
from tenant_backup.config.loader import load_config
from tenant_backup.config.models import BackupConfig
from tenant_backup.factory import ProfileNotFoundError, get_adapter, get_progress_store

console = Console()

# Error log lines printed after a restore
MAX_PRINTED_ERRORS = 20


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


def _load_config_or_defaults(args: argparse.Namespace) -> BackupConfig:
    """backup.toml if present, built-in defaults otherwise."""
    try:
        return load_config(_config_path(args), env_prefix=getattr(args, "env_prefix", ""))
    except FileNotFoundError:
        return BackupConfig()


def _print_restore_result(result: RestoreResult) -> None:
    table = Table(title="Restore Summary", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Attempted", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Deferred", justify="right")
    table.add_column("Failed", justify="right")
    for name, counts in result.table_counts.items():
        failed = f"[red]{counts.failed}[/red]" if counts.failed else "0"
        table.add_row(
            name,
            str(counts.attempted),
            str(counts.succeeded),
            str(counts.deferred),
            failed,
        )
    console.print(table)

    if result.skipped_tables:
        console.print(
            f"[yellow]Skipped unknown tables:[/yellow] {', '.join(result.skipped_tables)}"
        )
    for entry in result.error_log[:MAX_PRINTED_ERRORS]:
        where = entry.table or "-"
        if entry.record_id:
            where += f"[{entry.record_id}]"
        console.print(f"  [red]{entry.kind}[/red] {where}: {entry.message}")
    if result.errors > MAX_PRINTED_ERRORS:
        console.print(f"  [dim]... {result.errors - MAX_PRINTED_ERRORS} more[/dim]")

    console.print()
    if result.success:
        console.print(
            f"[bold green]v[/bold green] Restored {result.processed} records "
            f"({result.retried} after retry)"
        )
    elif result.timed_out:
        console.print(
            f"[bold red]x[/bold red] Restore timed out after {result.processed} records. "
            "Re-run the restore to continue."
        )
    else:
        console.print(
            f"[bold red]x[/bold red] Restore finished with {result.errors} errors"
        )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    try:
        config = load_config(_config_path(args), env_prefix=env_prefix)
        adapter = await get_adapter(
            args.profile, env_prefix=env_prefix, config_path=_config_path(args)
        )
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    settings = config.snapshot
    options = SnapshotOptions(
        tenant_id=args.tenant,
        include_demo=args.include_demo,
        include_audit_logs=args.include_audit_logs,
        include_device_data=args.include_device_data,
        audit_log_limit=settings.audit_log_limit,
        max_workers=settings.max_workers,
        demo_prefixes=settings.demo_prefixes,
        demo_suffixes=settings.demo_suffixes,
        created_by=args.created_by,
    )

    scope = f"tenant [bold cyan]{args.tenant}[/bold cyan]" if args.tenant else "all tenants"
    console.print(f"Creating backup of {scope}...", style="dim")
    try:
        path = await backup_database(
            adapter,
            DEFAULT_SCHEMA,
            options,
            output_path=args.output,
            output_dir=settings.output_dir,
        )
    except Exception as e:
        console.print(f"[bold red]x[/bold red] Backup failed: {e}")
        return 1
    finally:
        await adapter.close()

    console.print(f"[bold green]v[/bold green] Backup written to [cyan]{path}[/cyan]")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Returns:
        0 when every record was restored, 1 otherwise.
    """
    env_prefix = getattr(args, "env_prefix", "")
    config = _load_config_or_defaults(args)

    adapter = None
    if not args.dry_run:
        try:
            adapter = await get_adapter(
                args.profile, env_prefix=env_prefix, config_path=_config_path(args)
            )
        except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

    store = get_progress_store(config)
    progress_id = store.create_id()
    console.print(f"Progress id: [bold cyan]{progress_id}[/bold cyan]")

    def on_progress(table: str, processed: int, total: int) -> None:
        console.print(f"  {table}: {processed}/{total}", style="dim")

    settings = config.restore
    timeout_ms = args.timeout_ms if args.timeout_ms is not None else settings.timeout_ms
    try:
        result = await restore_database(
            adapter,
            DEFAULT_SCHEMA,
            args.backup_path,
            dry_run=args.dry_run,
            batch_size=args.batch_size or settings.batch_size,
            timeout_ms=timeout_ms or None,
            max_error_log=settings.max_error_log,
            on_progress=on_progress,
            progress=store,
            progress_id=progress_id,
        )
    except (FileNotFoundError, StructuralError) as e:
        console.print(f"[bold red]x[/bold red] Cannot restore: {e}")
        return 1
    finally:
        if adapter is not None:
            await adapter.close()

    _print_restore_result(result)
    return 0 if result.success else 1


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a backup file.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_backup(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup file, asking for confirmation unless ``--yes``."""
    if not args.yes and not args.dry_run:
        console.print(f"[yellow]This will restore data from:[/yellow] {args.backup_path}")
        console.print("  Existing records with the same identity will be overwritten.")
        response = input("Continue? [y/N] ")
        if response.lower() not in ["y", "yes"]:
            console.print("Cancelled.")
            return 0

    return asyncio.run(_async_restore(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a backup file.

    Reads only the local file -- no database calls.
    """
    console.print(f"Validating: [cyan]{args.backup_path}[/cyan]")
    result = validate_backup(args.backup_path, DEFAULT_SCHEMA)

    if result["errors"]:
        console.print(f"\n[bold red]Found {len(result['errors'])} errors:[/bold red]")
        for error in result["errors"]:
            console.print(f"  - {error}")

    if result["warnings"]:
        console.print(f"\n[yellow]Found {len(result['warnings'])} warnings:[/yellow]")
        for warning in result["warnings"]:
            console.print(f"  - {warning}")

    console.print()
    if result["valid"]:
        suffix = " (with warnings)" if result["warnings"] else ""
        console.print(f"[bold green]v[/bold green] Backup is valid{suffix}")
        return 0
    console.print("[bold red]x[/bold red] Backup is invalid")
    return 1


def cmd_progress(args: argparse.Namespace) -> int:
    """Show a progress entry from the shared progress directory.

    Returns:
        0 if the entry exists, 1 if unknown or expired.
    """
    store = get_progress_store(_load_config_or_defaults(args))
    entry = store.get(args.progress_id)
    if entry is None:
        console.print(f"[yellow]No progress entry for '{args.progress_id}'.[/yellow]")
        console.print("[dim]Unknown id, or the entry expired after completion.[/dim]")
        return 1

    table = Table(title=f"Progress {entry.id}", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Processed", justify="right")
    table.add_column("Total", justify="right")
    for name, counts in entry.per_table.items():
        style = "bold cyan" if name == entry.current_table else ""
        table.add_row(
            f"[{style}]{name}[/{style}]" if style else name,
            str(counts.processed),
            str(counts.total),
        )
    console.print(table)

    status_style = {"running": "cyan", "completed": "green", "failed": "red"}[entry.status]
    console.print(
        f"Status: [{status_style}]{entry.status}[/{status_style}]  "
        f"{entry.processed}/{entry.total} records"
    )
    for error in entry.errors[-MAX_PRINTED_ERRORS:]:
        console.print(f"  [red]-[/red] {error}")
    return 0


# ============================================================================
# Parser registration
# ============================================================================


def register(subparsers: argparse._SubParsersAction) -> None:
    """Add the backup commands to the ``tenant-backup`` parser."""
    p_backup = subparsers.add_parser("backup", help="Create a backup file")
    p_backup.add_argument("--profile", "-p", help="Profile from backup.toml")
    p_backup.add_argument("--tenant", "-t", help="Back up a single tenant by id")
    p_backup.add_argument(
        "--output", "-o",
        help="Output file path (default: <output_dir>/backup-{timestamp}.json)",
    )
    p_backup.add_argument(
        "--include-demo", action="store_true", help="Include demo tenants"
    )
    p_backup.add_argument(
        "--include-audit-logs", action="store_true", help="Include recent audit log entries"
    )
    p_backup.add_argument(
        "--include-device-data", action="store_true",
        help="Include host-local sync tables (restored only on this host)",
    )
    p_backup.add_argument("--created-by", help="Recorded in the backup metadata")
    p_backup.set_defaults(func=cmd_backup)

    p_restore = subparsers.add_parser("restore", help="Restore from a backup file")
    p_restore.add_argument("backup_path", help="Path to backup JSON file")
    p_restore.add_argument("--profile", "-p", help="Profile from backup.toml")
    p_restore.add_argument(
        "--dry-run",
        action="store_true",
        help="Restore into an empty in-memory database to find missing references",
    )
    p_restore.add_argument("--batch-size", type=int, help="Records per transaction")
    p_restore.add_argument(
        "--timeout-ms", type=int, help="Overall restore timeout (0 disables)"
    )
    p_restore.add_argument(
        "--yes", "-y", action="store_true", help="Skip confirmation prompt"
    )
    p_restore.set_defaults(func=cmd_restore)

    p_validate = subparsers.add_parser("validate", help="Validate a backup file")
    p_validate.add_argument("backup_path", help="Path to backup JSON file")
    p_validate.set_defaults(func=cmd_validate)

    p_progress = subparsers.add_parser("progress", help="Show restore progress")
    p_progress.add_argument("progress_id", help="Id printed when the restore started")
    p_progress.set_defaults(func=cmd_progress)
