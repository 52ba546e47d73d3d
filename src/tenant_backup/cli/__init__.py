"""CLI for tenant backups, restores and progress polling.

Usage:
    tenant-backup profiles
    TB_DB_PROFILE=prod tenant-backup --env-prefix TB_ connect
    tenant-backup backup --profile prod --tenant b1
    tenant-backup restore backups/backup.json --profile staging --yes
    tenant-backup validate backups/backup.json
    tenant-backup progress <id>

Commands:
    profiles  - List profiles from backup.toml
    connect   - Check that a profile's database is reachable
    backup    - Write a backup file
    restore   - Restore a backup file
    validate  - Check a backup file without touching a database
    progress  - Show progress of a running or recently finished restore
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tenant_backup.cli.backup import register as register_backup_commands
from tenant_backup.config.loader import load_config
from tenant_backup.factory import connect_and_check

console = Console()


# ============================================================================
# Command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")
    config_path = Path(args.config) if getattr(args, "config", None) else None

    console.print("Connecting to database...", style="dim")
    result = await connect_and_check(
        args.profile, env_prefix=env_prefix, config_path=config_path
    )

    console.print()
    if result.success:
        console.print(
            f"[bold green]v[/bold green] Connected to profile: "
            f"[bold cyan]{result.profile_name}[/bold cyan]"
        )
        return 0

    console.print(f"[bold red]x[/bold red] {result.error}")
    return 1


def cmd_connect(args: argparse.Namespace) -> int:
    """Check database connectivity.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_connect(args))


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from backup.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if backup.toml is missing or invalid.
    """
    env_prefix = getattr(args, "env_prefix", "")
    config_path = Path(args.config) if getattr(args, "config", None) else None
    try:
        config = load_config(config_path, env_prefix=env_prefix)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = os.environ.get(f"{env_prefix}DB_PROFILE")

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print(f"\n[bold green]*[/bold green] = {env_prefix}DB_PROFILE")

    return 0


# ============================================================================
# Main entry point
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # Engine and driver chatter drowns out restore progress
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="tenant-backup",
        description="Tenant-scoped backup, restore and progress tracking",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix TB_ reads TB_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--config",
        help="Path to backup.toml (default: ./backup.toml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # connect command
    p_connect = subparsers.add_parser(
        "connect",
        help="Check that a profile's database is reachable",
    )
    p_connect.add_argument("--profile", "-p", help="Profile from backup.toml")
    p_connect.set_defaults(func=cmd_connect)

    register_backup_commands(subparsers)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
