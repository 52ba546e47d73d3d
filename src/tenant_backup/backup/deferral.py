"""Bounded retry queue for records that hit a dependency violation.

A record gets exactly one extra attempt after every table has had its first
pass.  Records that fail again are reported as permanent failures and never
retried a third time.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


@dataclass
class DeferredRecord:
    """A record waiting for its retry."""

    table: str
    record: dict
    last_error: str
    attempts: int = 1


@dataclass
class DrainResult:
    """Outcome of one retry pass."""

    succeeded: list[DeferredRecord] = field(default_factory=list)
    permanently_failed: list[DeferredRecord] = field(default_factory=list)


RetryFn = Callable[[DeferredRecord], Awaitable[None]]


class DeferralQueue:
    """FIFO of deferred records, drained once.

    Example:
        >>> queue = DeferralQueue()
        >>> queue.enqueue("employeeContracts", record, exc)
        >>> result = await queue.drain(retry)
        >>> len(result.permanently_failed)
        0
    """

    def __init__(self) -> None:
        self._items: list[DeferredRecord] = []

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, table: str, record: dict, error: BaseException | str) -> DeferredRecord:
        item = DeferredRecord(table=table, record=record, last_error=str(error))
        self._items.append(item)
        return item

    def take_all(self) -> list[DeferredRecord]:
        """Remove and return every queued record without retrying."""
        items, self._items = self._items, []
        return items

    async def drain(
        self,
        retry_fn: RetryFn,
        should_stop: Callable[[], bool] | None = None,
    ) -> DrainResult:
        """Retry every queued record once, in discovery order.

        Args:
            retry_fn: Awaitable that raises on failure.
            should_stop: Checked before each retry.  Once it returns True the
                remaining records are failed without another attempt.

        Returns:
            ``DrainResult``.  The queue is empty afterwards.
        """
        result = DrainResult()
        items = self.take_all()
        stopped = False

        for item in items:
            if not stopped and should_stop is not None and should_stop():
                stopped = True
            if stopped or item.attempts >= MAX_ATTEMPTS:
                result.permanently_failed.append(item)
                continue

            item.attempts += 1
            try:
                await retry_fn(item)
            except Exception as e:
                item.last_error = str(e)
                logger.debug(f"Retry failed for {item.table}: {e}")
                result.permanently_failed.append(item)
            else:
                result.succeeded.append(item)

        return result
