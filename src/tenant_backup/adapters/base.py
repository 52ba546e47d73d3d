"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that all adapters must implement,
plus the ``Transaction`` Protocol handed out by ``DatabaseClient.transaction()``.
All methods are ``async def`` -- the library is async-first.

Filter semantics shared by every adapter:

- ``{"status": "active"}`` -- equality.
- ``{"businessId": ["b1", "b2"]}`` -- membership (``IN``).
- ``{"businessId": None}`` -- ``IS NULL``.

Usage:
    from tenant_backup.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("businesses", "*", filters={"id": ["b1"]})
        async with client.transaction() as tx:
            await tx.upsert("businesses", {"id": "b1", "name": "Shop"}, ["id"])
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class Transaction(Protocol):
    """Write handle scoped to one open transaction.

    Every ``upsert`` runs under its own savepoint: a failing statement is
    rolled back on its own and the surrounding transaction stays usable.
    """

    async def upsert(
        self,
        table: str,
        data: dict,
        conflict_keys: list[str],
    ) -> dict:
        """Create the row if absent, otherwise update all non-key fields.

        Args:
            table: Table name.
            data: Dict of field=value pairs (must include ``conflict_keys``).
            conflict_keys: Columns forming the row's stable identity.

        Returns:
            Dict representing the written row.

        Raises:
            Exception: Driver error (e.g. foreign key violation).
        """
        ...


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    This Protocol ensures type safety and consistent behavior across
    different database backends (PostgreSQL, in-memory, etc.).

    All methods are async -- callers must ``await`` every operation.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: ``"*"`` or comma-separated column names.
            filters: Optional dict of field filters (all must match via AND).
                List values mean ``IN``, ``None`` means ``IS NULL``.
            order_by: Optional column name to sort by.  A leading ``-``
                sorts descending (``"-timestamp"``).
            limit: Optional maximum number of rows.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "auditLogs",
                "*",
                order_by="-timestamp",
                limit=1000,
            )
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction.

        Commits when the ``async with`` block exits normally, rolls back
        when it raises.

        Example:
            async with client.transaction() as tx:
                await tx.upsert("businessProducts", row, ["businessId", "sku"])
        """
        ...

    async def upsert(self, table: str, data: dict, conflict_keys: list[str]) -> dict:
        """Upsert a single row in its own transaction.

        Equivalent to opening ``transaction()`` and calling ``upsert`` once.
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
