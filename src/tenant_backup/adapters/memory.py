"""In-memory database adapter.

A dict-backed ``DatabaseClient`` for:
- Unit tests
- Dry-run restores
- Local development without a PostgreSQL server

Invariants:
    - All data is lost when the adapter is discarded
    - Declared foreign keys are enforced on every write and raise
      ``DependencyViolation`` like a real database would
    - A failed upsert leaves no partial state (savepoint semantics)
    - Leaving ``transaction()`` with an exception restores the state seen
      on entry
"""

import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from tenant_backup.backup.errors import DependencyViolation
from tenant_backup.backup.models import BackupSchema

logger = logging.getLogger(__name__)


def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    for column, expected in filters.items():
        value = row.get(column)
        if expected is None:
            if value is not None:
                return False
        elif isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class _MemoryTransaction:
    def __init__(self, adapter: "InMemoryAdapter") -> None:
        self._adapter = adapter

    async def upsert(self, table: str, data: dict, conflict_keys: list[str]) -> dict:
        return self._adapter._upsert_row(table, data, conflict_keys)


class InMemoryAdapter:
    """Dict-backed implementation of the ``DatabaseClient`` protocol.

    Args:
        foreign_keys: ``{table: {column: referenced_table}}``.  A non-null
            ``column`` value must match the referenced table's primary key.
        primary_keys: ``{table: pk_column}``; tables default to ``"id"``.
        tables: Optional initial rows per table.

    Example:
        >>> db = InMemoryAdapter(foreign_keys={"businessProducts": {"businessId": "businesses"}})
        >>> await db.upsert("businesses", {"id": "b1"}, ["id"])
        >>> await db.select("businesses", "*")
        [{'id': 'b1'}]
    """

    def __init__(
        self,
        foreign_keys: dict[str, dict[str, str]] | None = None,
        primary_keys: dict[str, str] | None = None,
        tables: dict[str, list[dict]] | None = None,
    ) -> None:
        self.foreign_keys = foreign_keys or {}
        self.primary_keys = primary_keys or {}
        self.tables: dict[str, list[dict]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.commits = 0
        self.rollbacks = 0

    @classmethod
    def from_schema(cls, schema: BackupSchema, **kwargs: Any) -> "InMemoryAdapter":
        """Build an adapter enforcing every scope and owner reference of ``schema``."""
        foreign_keys: dict[str, dict[str, str]] = {}
        primary_keys: dict[str, str] = {}
        for t in schema.tables:
            primary_keys[t.name] = t.pk
            if t.scope is not None:
                foreign_keys.setdefault(t.name, {})[t.scope.field] = t.scope.table
            if t.owned_by is not None:
                foreign_keys.setdefault(t.name, {})[t.owned_by.field] = t.owned_by.table
        return cls(foreign_keys=foreign_keys, primary_keys=primary_keys, **kwargs)

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _pk(self, table: str) -> str:
        return self.primary_keys.get(table, "id")

    def _check_references(self, table: str, row: dict) -> None:
        for column, parent in self.foreign_keys.get(table, {}).items():
            value = row.get(column)
            if value is None:
                continue
            parent_pk = self._pk(parent)
            if not any(r.get(parent_pk) == value for r in self.tables.get(parent, [])):
                raise DependencyViolation(table, column, value)

    def _upsert_row(self, table: str, data: dict, conflict_keys: list[str]) -> dict:
        clean = {k: v for k, v in data.items() if not k.startswith("_")}
        missing = [k for k in conflict_keys if k not in clean]
        if missing:
            raise ValueError(
                f"Upsert into {table} missing conflict key(s): {', '.join(missing)}"
            )
        for column, value in clean.items():
            if isinstance(value, dict) or (
                isinstance(value, list) and any(isinstance(v, dict) for v in value)
            ):
                raise TypeError(f"Column {table}.{column} cannot store a nested object")

        rows = self.tables.setdefault(table, [])
        identity = {k: clean[k] for k in conflict_keys}
        existing = next((r for r in rows if _matches(r, identity)), None)
        merged = {**existing, **clean} if existing is not None else dict(clean)

        # Validate before mutating so a failure leaves no trace
        self._check_references(table, merged)

        if existing is not None:
            existing.update(clean)
            return dict(existing)
        rows.append(merged)
        return dict(merged)

    # ------------------------------------------------------------------
    # DatabaseClient
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        rows = [r for r in self.tables.get(table, []) if _matches(r, filters)]
        if order_by:
            column = order_by.lstrip("-")
            rows = sorted(
                rows,
                key=lambda r: (r.get(column) is None, r.get(column)),
                reverse=order_by.startswith("-"),
            )
        if limit is not None:
            rows = rows[:limit]
        if columns.strip() != "*":
            wanted = [c.strip() for c in columns.split(",") if c.strip()]
            return [{c: r.get(c) for c in wanted} for r in rows]
        return [copy.deepcopy(r) for r in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryTransaction]:
        saved = copy.deepcopy(self.tables)
        try:
            yield _MemoryTransaction(self)
        except BaseException:
            self.tables = saved
            self.rollbacks += 1
            raise
        self.commits += 1

    async def upsert(self, table: str, data: dict, conflict_keys: list[str]) -> dict:
        async with self.transaction() as tx:
            return await tx.upsert(table, data, conflict_keys)

    async def close(self) -> None:
        logger.debug("InMemoryAdapter closed")

    def count(self, table: str) -> int:
        """Number of rows currently stored in ``table``."""
        return len(self.tables.get(table, []))
