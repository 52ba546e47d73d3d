"""Backup schema and snapshot models.

Projects declare their tables, how each table is scoped to a tenant, and
which tables it depends on.  The restore order is computed from that graph
rather than maintained by hand.

Usage:
    from tenant_backup.backup.models import BackupSchema, TableDef, ForeignKey

    schema = BackupSchema(tables=[
        TableDef(name="businesses"),
        TableDef(name="users"),
        TableDef(name="businessProducts", key=["businessId", "sku"],
                 scope=ForeignKey(table="businesses", field="businessId")),
        TableDef(name="productVariants",
                 scope=ForeignKey(table="businessProducts", field="productId")),
    ])
    schema.restore_order()
    # ['businesses', 'users', 'businessProducts', 'productVariants']
"""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from tenant_backup.backup.errors import StructuralError

SNAPSHOT_VERSION = "3.0"


class ForeignKey(BaseModel):
    """Foreign key reference to a parent table."""

    table: str          # parent table name
    field: str          # FK column in this table


class TableDef(BaseModel):
    """Definition of a table for backup/restore operations."""

    name: str                                       # table name
    pk: str = "id"                                  # primary key column
    key: list[str] | None = None                    # natural identity (upsert conflict target)
    scope: ForeignKey | None = None                 # tenant scope, direct or via a scoped parent
    include_unscoped: bool = False                  # also capture rows whose scope field is null
    depends_on: list[str] = Field(default_factory=list)  # extra restore-order dependencies
    audit: bool = False                             # audit log table (opt-in, capped)
    order_by: str | None = None                     # audit sort column, newest first
    member_of: ForeignKey | None = None             # tenant backups: pk must appear in member_of.table.field
    owned_by: ForeignKey | None = None              # tenant backups: owned_by.field must reference a captured row
    device_specific: bool = False                   # host-local sync state, restored only on the source host

    @property
    def identity(self) -> list[str]:
        """Columns that identify a record across databases."""
        return list(self.key) if self.key else [self.pk]

    @property
    def narrowed_by(self) -> ForeignKey | None:
        """Reference that narrows an unscoped table in tenant backups."""
        return self.member_of or self.owned_by


class BackupSchema(BaseModel):
    """Declarative backup schema.

    ``tables`` may be declared in any order; ``restore_order()`` puts
    parents first.  Every scope chain must end at ``tenant_table``.
    """

    tables: list[TableDef]
    tenant_table: str = "businesses"
    version: str = "1"

    @model_validator(mode="after")
    def _check_scopes(self) -> "BackupSchema":
        names = [t.name for t in self.tables]
        if len(set(names)) != len(names):
            raise ValueError("Duplicate table names in backup schema")
        if self.tenant_table not in names:
            raise ValueError(f"Tenant table '{self.tenant_table}' is not declared")
        for table in self.tables:
            if table.scope is not None and table.narrowed_by is not None:
                raise ValueError(
                    f"Table '{table.name}' cannot be both scoped and narrowed"
                )
            if table.member_of is not None and table.owned_by is not None:
                raise ValueError(
                    f"Table '{table.name}' declares both member_of and owned_by"
                )
            self.scope_depth(table.name)
            self.read_depth(table.name)
        return self

    def get(self, name: str) -> TableDef | None:
        """Find a TableDef by name."""
        for t in self.tables:
            if t.name == name:
                return t
        return None

    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]

    def dependencies(self) -> dict[str, set[str]]:
        """Dependency graph: table -> tables that must be restored first."""
        deps: dict[str, set[str]] = {}
        for t in self.tables:
            parents = set(t.depends_on)
            if t.scope is not None:
                parents.add(t.scope.table)
            if t.owned_by is not None:
                parents.add(t.owned_by.table)
            # Self references are resolved by the retry pass
            parents.discard(t.name)
            deps[t.name] = parents
        return deps

    def restore_order(self) -> list[str]:
        """Table names with parents before children."""
        return _topological_sort(self.dependencies(), self.table_names())

    def scope_depth(self, name: str) -> int:
        """Number of scope hops from ``name`` to the tenant table.

        The tenant table and unscoped tables have depth 0.

        Raises:
            ValueError: If the scope chain is cyclic, references an
                undeclared table, or ends at an unscoped table.
        """
        depth = 0
        seen: set[str] = set()
        current = self.get(name)
        if current is None:
            raise ValueError(f"Unknown table '{name}'")
        if current.scope is None:
            return 0
        while current is not None and current.name != self.tenant_table:
            if current.name in seen:
                raise ValueError(f"Cyclic scope chain at table '{name}'")
            seen.add(current.name)
            if current.scope is None:
                raise ValueError(
                    f"Scope chain of '{name}' ends at unscoped table '{current.name}'"
                )
            parent = self.get(current.scope.table)
            if parent is None:
                raise ValueError(
                    f"Table '{current.name}' scoped by undeclared table "
                    f"'{current.scope.table}'"
                )
            depth += 1
            current = parent
        return depth

    def read_depth(self, name: str, narrowed: bool = True) -> int:
        """Snapshot wave in which ``name`` is read.

        Scoped tables follow their scope chain.  With ``narrowed`` (tenant
        backups), a table declaring ``member_of`` or ``owned_by`` is read
        one wave after the table that narrows it.  Other unscoped tables
        are read in the first wave; the tenant table has depth 0.

        Raises:
            ValueError: If a narrowing chain is cyclic or references an
                undeclared table.
        """
        seen: set[str] = set()
        hops = 0
        current = self.get(name)
        if current is None:
            raise ValueError(f"Unknown table '{name}'")
        while True:
            if current.name == self.tenant_table:
                return hops
            if current.scope is not None:
                return hops + self.scope_depth(current.name)
            ref = current.narrowed_by if narrowed else None
            if ref is None:
                return hops + 1
            if current.name in seen:
                raise ValueError(f"Cyclic narrowing chain at table '{name}'")
            seen.add(current.name)
            parent = self.get(ref.table)
            if parent is None:
                raise ValueError(
                    f"Table '{current.name}' narrowed by undeclared table '{ref.table}'"
                )
            hops += 1
            current = parent


def _topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Independent tables keep their declaration order.  Cycles are broken
    rather than rejected.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: List of table names to sort.

    Returns:
        Tables sorted so that parent tables come before child tables.
    """
    # Filter dependencies to only include relevant tables
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}
    position = {t: i for i, t in enumerate(tables)}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()  # For cycle detection

    def visit(table: str) -> None:
        if table in visited:
            return
        if table in visiting:
            # Cycle detected -- break it by just adding the table
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set()), key=position.__getitem__):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


# ------------------------------------------------------------------
# Snapshot document
# ------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceScope(_CamelModel):
    tenant_id: str | None = None
    tenant_ids: list[str] = Field(default_factory=list)


class SnapshotFlags(_CamelModel):
    include_demo_data: bool = False
    include_audit_logs: bool = False
    audit_log_limit: int | None = None
    include_device_data: bool = False


class SnapshotStats(_CamelModel):
    total_records: int = 0
    total_tables: int = 0
    table_counts: dict[str, int] = Field(default_factory=dict)


class SnapshotMetadata(_CamelModel):
    """Snapshot ``metadata`` section.

    Unknown keys are preserved so snapshots written by newer versions
    survive a read/write cycle.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    version: str = SNAPSHOT_VERSION
    backup_type: Literal["full", "tenant"] = "full"
    timestamp: str | None = None
    schema_version: str | None = None
    source_scope: SourceScope = Field(default_factory=SourceScope)
    flags: SnapshotFlags = Field(default_factory=SnapshotFlags)
    warnings: list[str] = Field(default_factory=list)
    stats: SnapshotStats = Field(default_factory=SnapshotStats)
    checksum: str | None = None
    created_by: str | None = None
    source_host: str | None = None


class Snapshot(BaseModel):
    """Immutable flat export: metadata plus one record list per table."""

    model_config = ConfigDict(frozen=True)

    metadata: SnapshotMetadata
    tables: dict[str, list[dict[str, Any]]]

    @classmethod
    def from_document(cls, document: Any, schema: BackupSchema | None = None) -> "Snapshot":
        """Validate a wire document and build a Snapshot.

        Args:
            document: Parsed JSON object (``metadata`` key plus table keys).
            schema: When given, at least one table key must be declared in it.

        Raises:
            StructuralError: If the document shape is invalid.
        """
        if not isinstance(document, Mapping):
            raise StructuralError("Snapshot must be a JSON object")
        if "metadata" not in document:
            raise StructuralError("Snapshot is missing 'metadata'")
        raw_metadata = document["metadata"]
        if not isinstance(raw_metadata, Mapping):
            raise StructuralError("Snapshot 'metadata' must be an object")

        tables: dict[str, list[dict[str, Any]]] = {}
        for name, records in document.items():
            if name == "metadata":
                continue
            if not isinstance(records, list):
                raise StructuralError(f"Table '{name}' must be a list of records")
            for index, record in enumerate(records):
                if not isinstance(record, Mapping):
                    raise StructuralError(
                        f"Table '{name}' record {index} is not an object"
                    )
            tables[name] = [dict(r) for r in records]

        if not tables:
            raise StructuralError("Backup contains no data tables")
        if schema is not None and not any(schema.get(name) for name in tables):
            raise StructuralError(
                "Backup contains no recognized tables: " + ", ".join(sorted(tables))
            )

        try:
            metadata = SnapshotMetadata.model_validate(dict(raw_metadata))
        except ValidationError as e:
            raise StructuralError(f"Invalid snapshot metadata: {e}") from e

        if metadata.version.split(".")[0] != SNAPSHOT_VERSION.split(".")[0]:
            raise StructuralError(
                f"Unsupported backup version '{metadata.version}' "
                f"(expected '{SNAPSHOT_VERSION}')"
            )

        return cls(metadata=metadata, tables=tables)

    def to_document(self) -> dict[str, Any]:
        """Wire form: ``{"metadata": {...}, "<table>": [...], ...}``."""
        document: dict[str, Any] = {
            "metadata": self.metadata.model_dump(by_alias=True, mode="json"),
        }
        for name, records in self.tables.items():
            document[name] = records
        return document

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.tables.values())


class SnapshotOptions(BaseModel):
    """Options for ``build_snapshot``. All composable."""

    tenant_id: str | None = None                    # single tenant; None = all tenants
    include_demo: bool = False
    include_audit_logs: bool = False
    audit_log_limit: int = 1000
    include_device_data: bool = False               # host-local sync tables
    max_workers: int = Field(default=4, ge=1)
    demo_prefixes: list[str] = Field(default_factory=lambda: ["demo-"])
    demo_suffixes: list[str] = Field(default_factory=lambda: ["-demo"])
    created_by: str | None = None


# ------------------------------------------------------------------
# Restore result
# ------------------------------------------------------------------


ErrorKind = Literal["dependency", "validation", "database", "commit", "timeout"]


class ErrorLogEntry(_CamelModel):
    """One failed record (or the timeout marker)."""

    table: str | None
    record_id: str | None
    message: str
    kind: ErrorKind


class TableCounts(_CamelModel):
    attempted: int = 0
    succeeded: int = 0
    deferred: int = 0
    failed: int = 0


class RestoreResult(_CamelModel):
    """Outcome of ``restore_snapshot``.

    ``errors`` is the full failure count; ``error_log`` may be truncated.
    """

    success: bool = False
    processed: int = 0
    errors: int = 0
    error_log: list[ErrorLogEntry] = Field(default_factory=list)
    deferred: int = 0
    retried: int = 0
    timed_out: bool = False
    skipped_tables: list[str] = Field(default_factory=list)
    table_counts: dict[str, TableCounts] = Field(default_factory=dict)
    progress_id: str | None = None
