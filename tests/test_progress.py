"""Tests for the progress store and its file storage."""

import json
import warnings
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tenant_backup.progress import (
    FileProgressStorage,
    PersistenceWarning,
    ProgressStore,
    ProgressUpdate,
    TableProgress,
)
from tenant_backup.progress.storage import is_valid_id


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class BrokenStorage:
    """Storage whose every operation fails."""

    def load(self, progress_id: str) -> dict | None:
        raise OSError("disk unavailable")

    def save(self, progress_id: str, data: dict) -> None:
        raise OSError("disk full")

    def delete(self, progress_id: str) -> None:
        raise OSError("read-only file system")

    def list_ids(self) -> list[str]:
        raise OSError("disk unavailable")


def _seed(store: ProgressStore, progress_id: str, **totals: int) -> None:
    store.update(progress_id, ProgressUpdate(
        tables={name: TableProgress(total=total) for name, total in totals.items()},
    ))


# ============================================================================
# Test: Lookup
# ============================================================================


class TestProgressLookup:
    """get() never raises and reports unknown ids as missing."""

    def test_unknown_id_returns_none(self) -> None:
        assert ProgressStore().get("never-created") is None

    def test_invalid_id_returns_none(self, tmp_path: Path) -> None:
        store = ProgressStore(FileProgressStorage(tmp_path))
        assert store.get("../../etc/passwd") is None
        assert store.get("") is None

    def test_create_id_is_unique_and_valid(self) -> None:
        store = ProgressStore()
        ids = {store.create_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(is_valid_id(i) for i in ids)

    def test_created_entry_is_running(self) -> None:
        store = ProgressStore()
        entry = store.get(store.create_id())
        assert entry is not None
        assert entry.status == "running"
        assert entry.processed == 0

    def test_invalid_id_update_ignored(self) -> None:
        assert ProgressStore().update("bad id!", ProgressUpdate(processed=1)) is None

    def test_get_returns_copy(self) -> None:
        store = ProgressStore()
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=3)
        store.get(progress_id).per_table["businesses"].processed = 99
        assert store.get(progress_id).per_table["businesses"].processed == 0


# ============================================================================
# Test: Updates
# ============================================================================


class TestProgressUpdates:
    """Verify merging and monotonic counters."""

    def test_seed_and_table_updates(self) -> None:
        store = ProgressStore()
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=2, businessProducts=3)

        store.update(progress_id, ProgressUpdate(table="businesses", processed=2))
        entry = store.update(
            progress_id, ProgressUpdate(table="businessProducts", processed=1,
                                        current_table="businessProducts")
        )

        assert entry.total == 5
        assert entry.processed == 3
        assert entry.current_table == "businessProducts"

    def test_processed_never_decreases(self) -> None:
        store = ProgressStore()
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=10)

        store.update(progress_id, ProgressUpdate(table="businesses", processed=6))
        store.update(progress_id, ProgressUpdate(table="businesses", processed=2))

        assert store.get(progress_id).processed == 6

    def test_aggregate_processed_is_running_max(self) -> None:
        store = ProgressStore()
        progress_id = store.create_id()
        store.update(progress_id, ProgressUpdate(processed=7))
        store.update(progress_id, ProgressUpdate(processed=4))
        assert store.get(progress_id).processed == 7

    def test_updated_at_strictly_increases(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock)
        progress_id = store.create_id()
        stamps = [
            store.update(progress_id, ProgressUpdate(processed=i)).updated_at
            for i in range(5)
        ]
        assert stamps == sorted(set(stamps))

    def test_errors_appended_and_bounded(self) -> None:
        store = ProgressStore(max_errors=3)
        progress_id = store.create_id()
        store.update(progress_id, ProgressUpdate(errors=["e1", "e2"]))
        store.update(progress_id, ProgressUpdate(errors=["e3", "e4"]))
        assert store.get(progress_id).errors == ["e2", "e3", "e4"]

    def test_update_creates_unknown_id(self) -> None:
        store = ProgressStore()
        entry = store.update("job-42", ProgressUpdate(processed=1))
        assert entry.id == "job-42"
        assert store.get("job-42").processed == 1

    def test_camel_case_serialization(self) -> None:
        store = ProgressStore()
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=1)
        dumped = store.get(progress_id).model_dump(mode="json", by_alias=True)
        assert "perTable" in dumped
        assert "updatedAt" in dumped
        assert dumped["total"] == 1


# ============================================================================
# Test: Completion and expiry
# ============================================================================


class TestCompletion:
    """Completed entries stay readable for the grace window only."""

    def test_completion_sets_expiry(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock, grace_seconds=300)
        progress_id = store.create_id()

        entry = store.update(progress_id, ProgressUpdate(status="completed"))

        assert entry.completed_at is not None
        assert entry.expires_at == entry.updated_at + timedelta(seconds=300)

    def test_processed_reaching_total_stays_running(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock, grace_seconds=300)
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=2)
        entry = store.update(progress_id, ProgressUpdate(table="businesses", processed=2))
        assert not entry.is_complete
        assert entry.expires_at is None

        clock.advance(301)
        entry = store.get(progress_id)
        assert entry is not None
        assert entry.status == "running"
        assert entry.processed == 2

    def test_expiry_starts_at_terminal_status(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock, grace_seconds=10)
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=1)
        store.update(progress_id, ProgressUpdate(table="businesses", processed=1))

        clock.advance(60)
        store.update(progress_id, ProgressUpdate(current_table="businesses"))
        clock.advance(60)
        entry = store.update(progress_id, ProgressUpdate(status="completed"))

        assert entry.processed == 1
        assert entry.expires_at == entry.updated_at + timedelta(seconds=10)

    def test_readable_within_grace(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock, grace_seconds=300)
        progress_id = store.create_id()
        store.update(progress_id, ProgressUpdate(status="completed"))

        clock.advance(299)
        assert store.get(progress_id) is not None

    def test_expired_after_grace(self, tmp_path: Path) -> None:
        clock = FakeClock()
        store = ProgressStore(FileProgressStorage(tmp_path), clock=clock, grace_seconds=300)
        progress_id = store.create_id()
        store.update(progress_id, ProgressUpdate(status="completed"))

        clock.advance(301)

        assert store.get(progress_id) is None
        assert not (tmp_path / f"{progress_id}.json").exists()

    def test_running_entry_never_expires(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock, grace_seconds=1)
        progress_id = store.create_id()
        clock.advance(86_400)
        assert store.get(progress_id) is not None

    def test_purge_expired(self, tmp_path: Path) -> None:
        clock = FakeClock()
        store = ProgressStore(FileProgressStorage(tmp_path), clock=clock, grace_seconds=10)
        done = store.create_id()
        running = store.create_id()
        store.update(done, ProgressUpdate(status="failed"))

        clock.advance(11)

        assert store.purge_expired() == 1
        assert store.get(done) is None
        assert store.get(running) is not None


# ============================================================================
# Test: Cross-process visibility
# ============================================================================


class TestCrossProcess:
    """Two stores sharing a directory behave like two processes."""

    def test_reader_sees_writer_updates(self, tmp_path: Path) -> None:
        writer = ProgressStore(FileProgressStorage(tmp_path))
        reader = ProgressStore(FileProgressStorage(tmp_path))

        progress_id = writer.create_id()
        _seed(writer, progress_id, businesses=4)
        writer.update(progress_id, ProgressUpdate(table="businesses", processed=1))
        assert reader.get(progress_id).processed == 1

        writer.update(progress_id, ProgressUpdate(table="businesses", processed=3))
        assert reader.get(progress_id).processed == 3

    def test_reader_sees_completion(self, tmp_path: Path) -> None:
        writer = ProgressStore(FileProgressStorage(tmp_path))
        reader = ProgressStore(FileProgressStorage(tmp_path))
        progress_id = writer.create_id()

        writer.update(progress_id, ProgressUpdate(status="completed"))

        assert reader.get(progress_id).status == "completed"

    def test_unknown_to_both(self, tmp_path: Path) -> None:
        reader = ProgressStore(FileProgressStorage(tmp_path))
        assert reader.get("abc123") is None

    def test_durable_document_is_camel_case(self, tmp_path: Path) -> None:
        store = ProgressStore(FileProgressStorage(tmp_path))
        progress_id = store.create_id()
        _seed(store, progress_id, businesses=1)
        data = json.loads((tmp_path / f"{progress_id}.json").read_text())
        assert data["id"] == progress_id
        assert data["perTable"]["businesses"]["total"] == 1
        assert data["status"] == "running"

    def test_malformed_document_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "broken.json").write_text(json.dumps({"status": "weird"}))
        store = ProgressStore(FileProgressStorage(tmp_path))
        with pytest.warns(PersistenceWarning):
            assert store.get("broken") is None


# ============================================================================
# Test: Concurrent writers
# ============================================================================


class TestConcurrentUpdates:
    """Threads updating different ids of one store never mix entries."""

    def test_threads_on_distinct_ids(self, tmp_path: Path) -> None:
        store = ProgressStore(FileProgressStorage(tmp_path))
        ids = [store.create_id() for _ in range(8)]
        for progress_id in ids:
            _seed(store, progress_id, businesses=50)

        def run(progress_id: str) -> None:
            for n in range(1, 51):
                store.update(progress_id, ProgressUpdate(table="businesses", processed=n))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(run, ids))

        reader = ProgressStore(FileProgressStorage(tmp_path))
        for progress_id in ids:
            entry = reader.get(progress_id)
            assert entry.processed == 50
            assert entry.total == 50
            assert entry.status == "running"

    def test_updated_at_strictly_increases_under_threads(self) -> None:
        clock = FakeClock()
        store = ProgressStore(clock=clock)
        progress_id = store.create_id()
        stamps: list[datetime] = []

        def run(n: int) -> None:
            entry = store.update(progress_id, ProgressUpdate(processed=n))
            stamps.append(entry.updated_at)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(run, range(100)))

        assert len(set(stamps)) == 100
        assert store.get(progress_id).processed == 99


# ============================================================================
# Test: Storage failures
# ============================================================================


class TestStorageFailures:
    """Durable-write failures are warned about and never raised."""

    def test_update_survives_failing_storage(self) -> None:
        store = ProgressStore(BrokenStorage())
        with pytest.warns(PersistenceWarning):
            progress_id = store.create_id()
        with pytest.warns(PersistenceWarning):
            entry = store.update(progress_id, ProgressUpdate(processed=5))
        assert entry.processed == 5

    def test_get_falls_back_to_cache(self) -> None:
        store = ProgressStore(BrokenStorage())
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PersistenceWarning)
            progress_id = store.create_id()
            store.update(progress_id, ProgressUpdate(processed=2))
            entry = store.get(progress_id)
        assert entry is not None
        assert entry.processed == 2

    def test_purge_survives_failing_storage(self) -> None:
        store = ProgressStore(BrokenStorage())
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PersistenceWarning)
            assert store.purge_expired() == 0


class TestFileProgressStorage:
    """Verify the file backend."""

    def test_roundtrip_and_delete(self, tmp_path: Path) -> None:
        storage = FileProgressStorage(tmp_path / "progress")
        storage.save("abc", {"id": "abc"})
        assert storage.load("abc") == {"id": "abc"}
        assert storage.list_ids() == ["abc"]
        storage.delete("abc")
        assert storage.load("abc") is None
        storage.delete("abc")

    def test_no_temporary_files_left(self, tmp_path: Path) -> None:
        storage = FileProgressStorage(tmp_path)
        storage.save("abc", {"n": 1})
        storage.save("abc", {"n": 2})
        assert sorted(p.name for p in tmp_path.iterdir()) == ["abc.json"]

    def test_invalid_id_rejected_on_save(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            FileProgressStorage(tmp_path).save("../x", {})

    def test_list_ids_missing_directory(self, tmp_path: Path) -> None:
        assert FileProgressStorage(tmp_path / "nope").list_ids() == []
