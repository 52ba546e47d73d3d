"""Tests for snapshot files: backup_database, restore_database, validate_backup."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from tenant_backup.adapters.memory import InMemoryAdapter
from tenant_backup.backup import backup_restore
from tenant_backup.backup.backup_restore import (
    backup_database,
    read_snapshot,
    restore_database,
    validate_backup,
    validate_snapshot,
)
from tenant_backup.backup.errors import StructuralError
from tenant_backup.backup.models import (
    BackupSchema,
    ForeignKey,
    Snapshot,
    SnapshotOptions,
    TableDef,
)

SCHEMA = BackupSchema(tables=[
    TableDef(name="businesses"),
    TableDef(name="businessProducts",
             scope=ForeignKey(table="businesses", field="businessId")),
])


def _source() -> InMemoryAdapter:
    return InMemoryAdapter(tables={
        "businesses": [{"id": "b1", "name": "Shop"}],
        "businessProducts": [{"id": "p1", "businessId": "b1", "sku": "SKU-1"}],
    })


def _write(tmp_path: Path, document: object, name: str = "backup.json") -> str:
    path = tmp_path / name
    path.write_text(json.dumps(document))
    return str(path)


# ============================================================================
# Test: backup_database
# ============================================================================


class TestBackupDatabase:
    async def test_writes_snapshot_file(self, tmp_path: Path) -> None:
        path = await backup_database(
            _source(), SCHEMA, SnapshotOptions(tenant_id="b1"),
            output_path=str(tmp_path / "out" / "b1.json"),
        )
        document = json.loads(Path(path).read_text())
        assert document["metadata"]["backupType"] == "tenant"
        assert document["businessProducts"] == [{"id": "p1", "businessId": "b1", "sku": "SKU-1"}]

    async def test_generated_path_under_output_dir(self, tmp_path: Path) -> None:
        path = await backup_database(_source(), SCHEMA, output_dir=tmp_path / "backups")
        assert Path(path).parent == tmp_path / "backups"
        assert Path(path).name.startswith("backup-")

    async def test_extra_metadata_merged(self, tmp_path: Path) -> None:
        path = await backup_database(
            _source(), SCHEMA,
            output_path=str(tmp_path / "b.json"),
            metadata={"environment": "staging", "createdBy": "ops"},
        )
        metadata = json.loads(Path(path).read_text())["metadata"]
        assert metadata["environment"] == "staging"
        assert metadata["createdBy"] == "ops"
        assert metadata["checksum"]

    async def test_written_file_reads_back(self, tmp_path: Path) -> None:
        path = await backup_database(_source(), SCHEMA, output_path=str(tmp_path / "b.json"))
        snapshot = read_snapshot(path, SCHEMA)
        assert snapshot.total_records == 2


class TestReadSnapshot:
    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(StructuralError, match="Invalid JSON"):
            read_snapshot(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_snapshot(tmp_path / "missing.json")


# ============================================================================
# Test: restore_database
# ============================================================================


class TestRestoreDatabase:
    async def test_restores_into_adapter(self, tmp_path: Path) -> None:
        path = await backup_database(_source(), SCHEMA, output_path=str(tmp_path / "b.json"))
        target = InMemoryAdapter.from_schema(SCHEMA)

        result = await restore_database(target, SCHEMA, path)

        assert result.success is True
        assert target.count("businessProducts") == 1

    async def test_dry_run_reports_orphans_without_adapter(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {
            "metadata": {"version": "3.0"},
            "businesses": [{"id": "b1"}],
            "businessProducts": [
                {"id": "p1", "businessId": "b1"},
                {"id": "p2", "businessId": "gone"},
            ],
        })

        result = await restore_database(None, SCHEMA, path, dry_run=True)

        assert result.success is False
        assert result.errors == 1
        assert result.error_log[0].record_id == "p2"
        assert result.error_log[0].kind == "dependency"

    async def test_adapter_required_without_dry_run(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"metadata": {}, "businesses": []})
        with pytest.raises(ValueError, match="adapter is required"):
            await restore_database(None, SCHEMA, path)

    async def test_structural_error_before_any_write(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"businesses": [{"id": "b1"}]})
        target = InMemoryAdapter.from_schema(SCHEMA)
        with pytest.raises(StructuralError):
            await restore_database(target, SCHEMA, path)
        assert target.tables == {}

    async def test_file_parsed_once(self, tmp_path: Path) -> None:
        path = await backup_database(_source(), SCHEMA, output_path=str(tmp_path / "b.json"))
        target = InMemoryAdapter.from_schema(SCHEMA)

        with patch.object(
            backup_restore, "_load_document", wraps=backup_restore._load_document
        ) as mock_load:
            result = await restore_database(target, SCHEMA, path)

        mock_load.assert_called_once()
        assert result.success is True

    async def test_validation_sees_the_restored_snapshot(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {
            "metadata": {"version": "3.0"},
            "businesses": [{"id": "b1"}],
        })
        target = InMemoryAdapter.from_schema(SCHEMA)
        checked = []

        def record(snapshot, schema):
            checked.append(snapshot)
            return validate_snapshot(snapshot, schema)

        with patch.object(backup_restore, "validate_snapshot", side_effect=record):
            await restore_database(target, SCHEMA, path)

        [snapshot] = checked
        assert snapshot.tables == {"businesses": [{"id": "b1"}]}


# ============================================================================
# Test: validate_backup
# ============================================================================


class TestValidateBackup:
    async def test_fresh_backup_is_valid(self, tmp_path: Path) -> None:
        path = await backup_database(_source(), SCHEMA, output_path=str(tmp_path / "b.json"))
        report = validate_backup(path, SCHEMA)
        assert report == {"valid": True, "errors": [], "warnings": []}

    def test_missing_file(self, tmp_path: Path) -> None:
        report = validate_backup(str(tmp_path / "nope.json"), SCHEMA)
        assert report["valid"] is False
        assert "not found" in report["errors"][0]

    def test_structural_problem(self, tmp_path: Path) -> None:
        report = validate_backup(_write(tmp_path, {"metadata": {}}), SCHEMA)
        assert report["valid"] is False
        assert "no data tables" in report["errors"][0]

    def test_record_problems(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {
            "metadata": {"version": "3.0"},
            "businesses": [{"name": "no id"}, {"id": "b2", "settings": {"a": 1}}],
        })
        report = validate_backup(path, SCHEMA)
        assert report["valid"] is False
        assert "businesses row 0 missing identity field(s): id" in report["errors"]
        assert "businesses row 1 has nested value(s): settings" in report["errors"]

    def test_warnings(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {
            "metadata": {"version": "3.0", "checksum": "0" * 64},
            "businesses": [{"id": "b1"}],
            "businessProducts": [{"id": "p1", "businessId": "b9"}],
            "widgets": [],
        })
        report = validate_backup(path, SCHEMA)
        assert report["valid"] is True
        warnings = report["warnings"]
        assert "Missing metadata field: backupType" in warnings
        assert "Checksum mismatch: table data changed since backup" in warnings
        assert "Unknown table 'widgets' will be skipped" in warnings
        assert "Orphaned businessProducts: 1 row(s) with businessId not in backup" in warnings

    async def test_tampered_backup_checksum(self, tmp_path: Path) -> None:
        path = await backup_database(_source(), SCHEMA, output_path=str(tmp_path / "b.json"))
        document = json.loads(Path(path).read_text())
        document["businesses"][0]["name"] = "Edited"
        Path(path).write_text(json.dumps(document))

        report = validate_backup(path, SCHEMA)

        assert "Checksum mismatch: table data changed since backup" in report["warnings"]


class TestValidateSnapshot:
    def test_parsed_snapshot_checked_without_a_file(self) -> None:
        snapshot = Snapshot.from_document({
            "metadata": {"version": "3.0", "backupType": "full",
                         "timestamp": "2026-01-01T00:00:00", "schemaVersion": "1"},
            "businesses": [{"id": "b1"}],
        }, SCHEMA)
        assert validate_snapshot(snapshot, SCHEMA) == {"valid": True, "errors": [], "warnings": []}
