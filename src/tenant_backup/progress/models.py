"""Pydantic models for progress entries and partial updates."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

ProgressStatus = Literal["running", "completed", "failed"]


class TableProgress(BaseModel):
    """Processed/total counts for one table."""

    processed: int = 0
    total: int = 0


class ProgressEntry(BaseModel):
    """Observable state of one tracked operation.

    Serialized with camelCase keys (``startedAt``, ``perTable``) so the
    durable copy can be handed to a polling client unchanged.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    started_at: datetime
    updated_at: datetime
    status: ProgressStatus = "running"
    current_table: str | None = None
    per_table: dict[str, TableProgress] = Field(default_factory=dict)
    aggregate_processed: int = 0                    # running maximum
    aggregate_total: int = 0
    errors: list[str] = Field(default_factory=list)
    completed_at: datetime | None = None
    expires_at: datetime | None = None

    @computed_field
    @property
    def processed(self) -> int:
        """Externally visible processed count. Never decreases."""
        current = sum(t.processed for t in self.per_table.values())
        return max(current, self.aggregate_processed)

    @computed_field
    @property
    def total(self) -> int:
        return max(sum(t.total for t in self.per_table.values()), self.aggregate_total)

    @property
    def is_complete(self) -> bool:
        """Terminal status only; counts reaching the total do not end a run."""
        return self.status in ("completed", "failed")


class ProgressUpdate(BaseModel):
    """Partial update merged into a ``ProgressEntry``.

    All fields are optional.  ``tables`` seeds or replaces per-table counts;
    ``table`` with ``processed``/``total`` updates a single table; ``errors``
    are appended.
    """

    tables: dict[str, TableProgress] | None = None
    table: str | None = None
    processed: int | None = Field(default=None, ge=0)
    total: int | None = Field(default=None, ge=0)
    current_table: str | None = None
    status: ProgressStatus | None = None
    errors: list[str] = Field(default_factory=list)
