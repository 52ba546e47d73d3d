"""TOML configuration loader for backup profiles and engine settings."""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from tenant_backup.config.models import BackupConfig

CONFIG_FILENAME = "backup.toml"

# env var suffix -> (section, field)
_ENV_OVERRIDES = {
    "RESTORE_BATCH_SIZE": ("restore", "batch_size"),
    "RESTORE_TIMEOUT_MS": ("restore", "timeout_ms"),
    "PROGRESS_DIR": ("progress", "directory"),
}


def load_config(config_path: Path | None = None, env_prefix: str = "") -> BackupConfig:
    """Load backup configuration from TOML file.

    Values from ``{env_prefix}RESTORE_BATCH_SIZE``,
    ``{env_prefix}RESTORE_TIMEOUT_MS`` and ``{env_prefix}PROGRESS_DIR``
    override the file.

    Args:
        config_path: Path to backup.toml (default: ``./backup.toml`` in the
            current working directory)
        env_prefix: Prefix for environment overrides (e.g. ``"TB_"``)

    Returns:
        BackupConfig with all profiles and settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create {CONFIG_FILENAME} with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    for suffix, (section, field) in _ENV_OVERRIDES.items():
        value = os.environ.get(f"{env_prefix}{suffix}")
        if value:
            data.setdefault(section, {})[field] = value

    try:
        return BackupConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e
