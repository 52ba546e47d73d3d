"""Error taxonomy for snapshot and restore operations.

Only ``StructuralError`` escapes ``restore_snapshot``.  Everything else is
scoped to a single record and lands in the restore result's error log.
"""

from tenant_backup.progress.store import PersistenceWarning

# SQLSTATE for foreign_key_violation
FOREIGN_KEY_SQLSTATE = "23503"

__all__ = [
    "BackupError",
    "StructuralError",
    "DependencyViolation",
    "PermanentRecordError",
    "RestoreTimeoutError",
    "PersistenceWarning",
    "is_dependency_violation",
]

_FK_MESSAGE_MARKERS = (
    "foreign key constraint",
    "violates foreign key",
)


class BackupError(Exception):
    """Base class for backup and restore errors."""


class StructuralError(BackupError, ValueError):
    """Snapshot failed shape validation. Raised before any write."""


class DependencyViolation(BackupError):
    """A record references a row that does not exist (yet) in the target."""

    def __init__(self, table: str, field: str, value: object) -> None:
        self.table = table
        self.field = field
        self.value = value
        super().__init__(
            f'insert or update on table "{table}" violates foreign key constraint: '
            f"{field}={value!r} not present"
        )


class PermanentRecordError(BackupError):
    """A record failed for a non-dependency reason or failed its retry."""

    def __init__(self, table: str, record_id: str | None, message: str) -> None:
        self.table = table
        self.record_id = record_id
        self.message = message
        super().__init__(f"{table}[{record_id}]: {message}")


class RestoreTimeoutError(BackupError, TimeoutError):
    """The restore exceeded its overall time budget."""


def _error_chain(exc: BaseException):
    seen: set[int] = set()
    pending: list[BaseException | None] = [exc]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        # SQLAlchemy DBAPIError wraps the driver error in ``orig``
        pending.append(getattr(current, "orig", None))
        pending.append(current.__cause__)
        pending.append(current.__context__)


def is_dependency_violation(exc: BaseException) -> bool:
    """Return True when ``exc`` signals a missing foreign-key target.

    Structured signals are checked first across the whole exception chain:
    our own ``DependencyViolation``, asyncpg's ``ForeignKeyViolationError``
    and any error exposing SQLSTATE ``23503`` as ``sqlstate``, ``pgcode``
    or ``code``.  Message matching is the last resort.
    """
    chain = list(_error_chain(exc))
    for err in chain:
        if isinstance(err, DependencyViolation):
            return True
        if type(err).__name__ == "ForeignKeyViolationError":
            return True
        for attr in ("sqlstate", "pgcode", "code"):
            if getattr(err, attr, None) == FOREIGN_KEY_SQLSTATE:
                return True

    for err in chain:
        message = str(err).lower()
        if any(marker in message for marker in _FK_MESSAGE_MARKERS):
            return True
    return False
