"""Pydantic models for backup.toml configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from backup.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres
    jsonb_columns: list[str] = Field(default_factory=list)


class SnapshotSettings(BaseModel):
    """``[snapshot]`` section."""

    max_workers: int = Field(default=4, ge=1)
    audit_log_limit: int = Field(default=1000, ge=0)
    demo_prefixes: list[str] = Field(default_factory=lambda: ["demo-"])
    demo_suffixes: list[str] = Field(default_factory=lambda: ["-demo"])
    output_dir: str = "backups"


class RestoreSettings(BaseModel):
    """``[restore]`` section."""

    batch_size: int = Field(default=100, ge=1)
    timeout_ms: int = Field(default=600_000, ge=0)  # 0 disables the timeout
    max_error_log: int = Field(default=500, ge=0)


class ProgressSettings(BaseModel):
    """``[progress]`` section."""

    directory: str = ".backup-progress"
    grace_seconds: float = Field(default=300, ge=0)
    max_errors: int = Field(default=200, ge=0)


class BackupConfig(BaseModel):
    """Complete configuration from backup.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)


class ConnectionResult(BaseModel):
    """Result of connect_and_check().

    Example:
        >>> result = ConnectionResult(success=True, profile_name="dev")
        >>> result.success
        True
    """

    success: bool
    profile_name: str | None = None
    error: str | None = None
