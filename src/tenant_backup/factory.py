"""Adapter and progress store factory.

Profiles live in ``backup.toml``; the active profile comes from the
``{prefix}DB_PROFILE`` environment variable or an explicit argument.  A
direct ``database_url`` bypasses profiles entirely.
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from tenant_backup.adapters.postgres import AsyncPostgresAdapter
from tenant_backup.config.loader import load_config
from tenant_backup.config.models import BackupConfig, ConnectionResult, DatabaseProfile
from tenant_backup.progress.storage import FileProgressStorage
from tenant_backup.progress.store import ProgressStore

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("postgres",)


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the ``{env_prefix}DB_PROFILE`` env var.

    Args:
        env_prefix: Prefix for the environment variable (e.g. ``"TB_"``
            reads ``TB_DB_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_var}=<name> or pass --profile to tenant-backup.\n"
        "List profiles with: tenant-backup profiles"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: BackupConfig | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If no profile configured or the name is not
            declared in backup.toml
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    if config is None:
        config = load_config(env_prefix=env_prefix)

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in backup.toml.\n"
            f"Available profiles: {available}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Factories
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    jsonb_columns: list[str] | None = None,
    config_path: Path | None = None,
) -> AsyncPostgresAdapter:
    """Create a database adapter.

    Each call returns a new adapter; the caller owns it and should
    ``await adapter.close()`` when done.

    Args:
        profile_name: Profile from backup.toml.  Defaults to the
            ``{env_prefix}DB_PROFILE`` env var.
        env_prefix: Prefix for environment variables.
        database_url: Direct connection URL; skips profile lookup.
        jsonb_columns: Columns that need JSONB casts.  Defaults to the
            profile's ``jsonb_columns``.
        config_path: Path to backup.toml.

    Raises:
        ProfileNotFoundError: If no profile is configured.
        FileNotFoundError: If backup.toml is missing.
        ValueError: If the profile's provider is not supported.

    Example:
        >>> adapter = await get_adapter("staging", env_prefix="TB_")
        >>> rows = await adapter.select("businesses", "*")
    """
    if database_url is not None:
        return AsyncPostgresAdapter(database_url=database_url, jsonb_columns=jsonb_columns)

    config = load_config(config_path, env_prefix=env_prefix)
    name, profile = get_active_profile(profile_name, env_prefix, config)
    if profile.provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Profile '{name}' uses unsupported provider '{profile.provider}'. "
            f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    logger.debug(f"Creating adapter for profile '{name}'")
    return AsyncPostgresAdapter(
        database_url=resolve_url(profile),
        jsonb_columns=jsonb_columns if jsonb_columns is not None else profile.jsonb_columns,
    )


async def connect_and_check(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> ConnectionResult:
    """Open a connection for ``profile_name`` and run ``SELECT 1``.

    Never raises; failures are reported on the result.

    Example:
        >>> result = await connect_and_check("local")
        >>> if not result.success:
        ...     print(result.error)
    """
    try:
        if profile_name is None:
            profile_name = get_active_profile_name(env_prefix)
        adapter = await get_adapter(profile_name, env_prefix, config_path=config_path)
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        return ConnectionResult(success=False, profile_name=profile_name, error=str(e))

    try:
        ok = await adapter.test_connection()
    except Exception as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )
    finally:
        await adapter.close()

    return ConnectionResult(
        success=ok,
        profile_name=profile_name,
        error=None if ok else "SELECT 1 returned an unexpected result",
    )


def get_progress_store(config: BackupConfig) -> ProgressStore:
    """Build a file-backed ``ProgressStore`` from ``[progress]`` settings."""
    settings = config.progress
    return ProgressStore(
        FileProgressStorage(settings.directory),
        grace_seconds=settings.grace_seconds,
        max_errors=settings.max_errors,
    )
