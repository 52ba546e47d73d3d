"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and concrete async adapter
implementations for PostgreSQL and an in-memory store.

Usage:
    from tenant_backup.adapters import DatabaseClient, AsyncPostgresAdapter
    from tenant_backup.adapters import InMemoryAdapter
"""

from tenant_backup.adapters.base import DatabaseClient, Transaction
from tenant_backup.adapters.postgres import AsyncPostgresAdapter
from tenant_backup.adapters.memory import InMemoryAdapter

__all__ = [
    "DatabaseClient",
    "Transaction",
    "AsyncPostgresAdapter",
    "InMemoryAdapter",
]
