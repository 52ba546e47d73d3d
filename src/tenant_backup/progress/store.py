"""Progress store: in-memory cache backed by durable shared storage.

The process running a restore calls ``update``; any process sharing the
storage can call ``get``.  ``get`` rehydrates from storage whenever the
durable copy is newer than the cached one, so a poller in another process
sees progress without a shared database connection.

Invariants:
    - ``processed`` reported by ``get`` never decreases for an id
    - ``updatedAt`` never goes backwards for an id
    - Storage failures are logged and warned, never raised
    - ``get`` never raises
"""

import logging
import secrets
import threading
import warnings
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from tenant_backup.progress.models import ProgressEntry, ProgressUpdate, TableProgress
from tenant_backup.progress.storage import ProgressStorage, is_valid_id

logger = logging.getLogger(__name__)


class PersistenceWarning(UserWarning):
    """Progress could not be written to durable storage."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressStore:
    """Tracks progress entries by opaque id.

    Args:
        storage: Durable backend.  ``None`` keeps entries in memory only
            (single process).
        clock: Returns the current time as an aware datetime.
        grace_seconds: How long a completed entry stays readable.
        max_errors: Error messages retained per entry (most recent kept).

    Example:
        >>> store = ProgressStore(FileProgressStorage(tmp_dir))
        >>> pid = store.create_id()
        >>> store.update(pid, ProgressUpdate(tables={"users": TableProgress(total=2)}))
        >>> store.get(pid).total
        2
    """

    def __init__(
        self,
        storage: ProgressStorage | None = None,
        clock: Callable[[], datetime] = _utcnow,
        grace_seconds: float = 300,
        max_errors: int = 200,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._grace = timedelta(seconds=grace_seconds)
        self._max_errors = max_errors
        self._cache: dict[str, ProgressEntry] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Storage helpers (never raise)
    # ------------------------------------------------------------------

    def _warn(self, message: str) -> None:
        logger.warning(message)
        warnings.warn(message, PersistenceWarning, stacklevel=3)

    def _persist(self, entry: ProgressEntry) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save(entry.id, entry.model_dump(mode="json", by_alias=True))
        except Exception as e:
            self._warn(f"Could not persist progress {entry.id}: {e}")

    def _load(self, progress_id: str) -> ProgressEntry | None:
        if self._storage is None:
            return None
        try:
            data = self._storage.load(progress_id)
        except Exception as e:
            self._warn(f"Could not read progress {progress_id}: {e}")
            return None
        if data is None:
            return None
        try:
            return ProgressEntry.model_validate(data)
        except ValidationError as e:
            self._warn(f"Discarding malformed progress {progress_id}: {e}")
            return None

    def _discard(self, progress_id: str) -> None:
        self._cache.pop(progress_id, None)
        if self._storage is None:
            return
        try:
            self._storage.delete(progress_id)
        except Exception as e:
            self._warn(f"Could not delete progress {progress_id}: {e}")

    def _freshest(self, progress_id: str) -> ProgressEntry | None:
        """Cached or durable copy, whichever was updated last."""
        entry = self._cache.get(progress_id)
        durable = self._load(progress_id)
        if durable is not None and (entry is None or durable.updated_at > entry.updated_at):
            self._cache[progress_id] = durable
            return durable
        return entry

    def _is_expired(self, entry: ProgressEntry, now: datetime) -> bool:
        return entry.expires_at is not None and entry.expires_at <= now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_id(self) -> str:
        """Create an empty running entry and return its unguessable id."""
        progress_id = secrets.token_urlsafe(18)
        now = self._clock()
        entry = ProgressEntry(id=progress_id, started_at=now, updated_at=now)
        with self._lock:
            self._cache[progress_id] = entry
            self._persist(entry)
        return progress_id

    def update(self, progress_id: str, update: ProgressUpdate) -> ProgressEntry | None:
        """Merge ``update`` into the entry and persist it.

        An id unknown to this process is picked up from storage, or
        created, so any process holding the id may report progress.

        Returns:
            Copy of the merged entry, or None for an invalid id.
        """
        if not is_valid_id(progress_id):
            logger.warning(f"Ignoring progress update for invalid id {progress_id!r}")
            return None

        with self._lock:
            now = self._clock()
            entry = self._freshest(progress_id)
            if entry is None:
                entry = ProgressEntry(id=progress_id, started_at=now, updated_at=now)
            entry = entry.model_copy(deep=True)

            if update.tables is not None:
                for name, counts in update.tables.items():
                    entry.per_table[name] = TableProgress(
                        processed=counts.processed, total=counts.total
                    )
            if update.table is not None:
                counts = entry.per_table.setdefault(update.table, TableProgress())
                if update.processed is not None:
                    counts.processed = update.processed
                if update.total is not None:
                    counts.total = update.total
            elif update.processed is not None:
                entry.aggregate_processed = max(entry.aggregate_processed, update.processed)

            if update.current_table is not None:
                entry.current_table = update.current_table
            if update.status is not None:
                entry.status = update.status
            if update.errors:
                entry.errors = (entry.errors + list(update.errors))[-self._max_errors:]

            current = sum(t.processed for t in entry.per_table.values())
            entry.aggregate_processed = max(entry.aggregate_processed, current)
            entry.aggregate_total = sum(t.total for t in entry.per_table.values())
            # Strictly increasing so readers can order writes by timestamp
            entry.updated_at = max(now, entry.updated_at + timedelta(microseconds=1))

            # Expiry is scheduled only once the run reaches a terminal status
            if entry.is_complete:
                if entry.completed_at is None:
                    entry.completed_at = entry.updated_at
                entry.expires_at = entry.updated_at + self._grace
            else:
                entry.completed_at = None
                entry.expires_at = None

            self._cache[progress_id] = entry
            self._persist(entry)
            return entry.model_copy(deep=True)

    def get(self, progress_id: str) -> ProgressEntry | None:
        """Return the freshest known entry, or None if unknown or expired."""
        if not is_valid_id(progress_id):
            return None
        try:
            with self._lock:
                entry = self._freshest(progress_id)
                if entry is None:
                    return None
                if self._is_expired(entry, self._clock()):
                    logger.debug(f"Progress {progress_id} expired")
                    self._discard(progress_id)
                    return None
                return entry.model_copy(deep=True)
        except Exception:
            logger.exception(f"Failed to read progress {progress_id}")
            return None

    def purge_expired(self) -> int:
        """Delete every expired entry, cached or durable. Returns the count."""
        purged = 0
        with self._lock:
            now = self._clock()
            ids = set(self._cache)
            if self._storage is not None:
                try:
                    ids.update(self._storage.list_ids())
                except Exception as e:
                    self._warn(f"Could not list progress entries: {e}")
            for progress_id in sorted(ids):
                entry = self._freshest(progress_id)
                if entry is not None and self._is_expired(entry, now):
                    self._discard(progress_id)
                    purged += 1
        if purged:
            logger.info(f"Purged {purged} expired progress entries")
        return purged
