"""Tests for the in-memory adapter."""

import pytest

from tenant_backup.adapters.memory import InMemoryAdapter
from tenant_backup.backup.errors import DependencyViolation
from tenant_backup.backup.models import BackupSchema, ForeignKey, TableDef


def _db() -> InMemoryAdapter:
    return InMemoryAdapter(
        foreign_keys={"businessProducts": {"businessId": "businesses"}},
        tables={
            "businesses": [{"id": "b1", "name": "One"}, {"id": "b2", "name": "Two"}],
            "businessProducts": [
                {"id": "p1", "businessId": "b1", "price": 3},
                {"id": "p2", "businessId": "b2", "price": 1},
                {"id": "p3", "businessId": None, "price": None},
            ],
        },
    )


class TestSelect:
    """Verify filter, order and projection semantics."""

    async def test_filters(self) -> None:
        db = _db()
        assert len(await db.select("businessProducts", "*", filters={"businessId": "b1"})) == 1
        assert len(await db.select("businessProducts", "*", filters={"businessId": ["b1", "b2"]})) == 2
        rows = await db.select("businessProducts", "*", filters={"businessId": None})
        assert [r["id"] for r in rows] == ["p3"]

    async def test_order_and_limit(self) -> None:
        rows = await _db().select("businessProducts", "id", order_by="-price", limit=2)
        assert rows == [{"id": "p3"}, {"id": "p1"}]

    async def test_unknown_table_is_empty(self) -> None:
        assert await _db().select("nope", "*") == []

    async def test_returns_copies(self) -> None:
        db = _db()
        rows = await db.select("businesses", "*")
        rows[0]["name"] = "Changed"
        assert db.tables["businesses"][0]["name"] == "One"


class TestUpsert:
    """Verify idempotent upserts and reference checks."""

    async def test_insert_then_update(self) -> None:
        db = _db()
        await db.upsert("businesses", {"id": "b3", "name": "Three"}, ["id"])
        await db.upsert("businesses", {"id": "b3", "name": "Third"}, ["id"])
        assert db.count("businesses") == 3
        assert db.tables["businesses"][-1] == {"id": "b3", "name": "Third"}

    async def test_missing_parent_raises(self) -> None:
        db = _db()
        with pytest.raises(DependencyViolation) as exc_info:
            await db.upsert("businessProducts", {"id": "p9", "businessId": "b9"}, ["id"])
        assert exc_info.value.value == "b9"
        assert db.count("businessProducts") == 3

    async def test_missing_conflict_key(self) -> None:
        with pytest.raises(ValueError, match="missing conflict key"):
            await _db().upsert("businesses", {"name": "x"}, ["id"])

    async def test_nested_value_rejected(self) -> None:
        with pytest.raises(TypeError, match="nested object"):
            await _db().upsert("businesses", {"id": "b1", "settings": {"a": 1}}, ["id"])


class TestTransaction:
    """Verify commit and rollback."""

    async def test_commit(self) -> None:
        db = _db()
        async with db.transaction() as tx:
            await tx.upsert("businesses", {"id": "b3"}, ["id"])
        assert db.commits == 1
        assert db.count("businesses") == 3

    async def test_rollback_restores_state(self) -> None:
        db = _db()
        with pytest.raises(RuntimeError):
            async with db.transaction() as tx:
                await tx.upsert("businesses", {"id": "b3"}, ["id"])
                raise RuntimeError("boom")
        assert db.rollbacks == 1
        assert db.count("businesses") == 2

    async def test_failed_upsert_keeps_transaction_usable(self) -> None:
        db = _db()
        async with db.transaction() as tx:
            with pytest.raises(DependencyViolation):
                await tx.upsert("businessProducts", {"id": "p9", "businessId": "b9"}, ["id"])
            await tx.upsert("businessProducts", {"id": "p9", "businessId": "b1"}, ["id"])
        assert db.count("businessProducts") == 4


class TestFromSchema:
    def test_from_schema_uses_scope_references(self) -> None:
        schema = BackupSchema(tables=[
            TableDef(name="businesses"),
            TableDef(name="systemSettings", pk="key"),
            TableDef(name="businessProducts",
                     scope=ForeignKey(table="businesses", field="businessId")),
        ])
        db = InMemoryAdapter.from_schema(schema)
        assert db.foreign_keys == {"businessProducts": {"businessId": "businesses"}}
        assert db.primary_keys["systemSettings"] == "key"

    def test_owner_references_enforced(self) -> None:
        schema = BackupSchema(tables=[
            TableDef(name="businesses"),
            TableDef(name="users"),
            TableDef(name="accounts", owned_by=ForeignKey(table="users", field="userId")),
        ])
        db = InMemoryAdapter.from_schema(schema)
        assert db.foreign_keys == {"accounts": {"userId": "users"}}
