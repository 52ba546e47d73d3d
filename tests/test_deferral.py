"""Tests for the deferral queue."""

from tenant_backup.backup.deferral import MAX_ATTEMPTS, DeferralQueue, DeferredRecord
from tenant_backup.backup.errors import DependencyViolation


class TestDeferralQueue:
    """Verify FIFO bookkeeping and the bounded retry."""

    def test_enqueue_records_first_attempt(self) -> None:
        queue = DeferralQueue()
        item = queue.enqueue("employeeContracts", {"id": "c1"}, DependencyViolation(
            "employeeContracts", "employeeId", "e1"
        ))
        assert len(queue) == 1
        assert item.attempts == 1
        assert "violates foreign key constraint" in item.last_error

    def test_take_all_empties_queue(self) -> None:
        queue = DeferralQueue()
        queue.enqueue("a", {"id": 1}, "x")
        queue.enqueue("b", {"id": 2}, "y")
        items = queue.take_all()
        assert [i.table for i in items] == ["a", "b"]
        assert len(queue) == 0

    async def test_drain_retries_in_discovery_order(self) -> None:
        seen: list[str] = []

        async def retry(item: DeferredRecord) -> None:
            seen.append(item.record["id"])

        queue = DeferralQueue()
        for record_id in ("c1", "c2", "c3"):
            queue.enqueue("employeeContracts", {"id": record_id}, "missing")

        result = await queue.drain(retry)

        assert seen == ["c1", "c2", "c3"]
        assert len(result.succeeded) == 3
        assert result.permanently_failed == []
        assert len(queue) == 0

    async def test_failed_retry_is_permanent(self) -> None:
        async def retry(item: DeferredRecord) -> None:
            raise DependencyViolation(item.table, "employeeId", "e404")

        queue = DeferralQueue()
        queue.enqueue("employeeContracts", {"id": "c1"}, "first failure")

        result = await queue.drain(retry)

        assert result.succeeded == []
        [failed] = result.permanently_failed
        assert failed.attempts == MAX_ATTEMPTS
        assert "e404" in failed.last_error

    async def test_each_record_retried_once(self) -> None:
        calls = 0

        async def retry(item: DeferredRecord) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("still missing")

        queue = DeferralQueue()
        queue.enqueue("t", {"id": 1}, "x")
        await queue.drain(retry)
        await queue.drain(retry)

        assert calls == 1

    async def test_exhausted_record_not_retried(self) -> None:
        async def retry(item: DeferredRecord) -> None:
            raise AssertionError("should not be called")

        queue = DeferralQueue()
        item = queue.enqueue("t", {"id": 1}, "x")
        item.attempts = MAX_ATTEMPTS

        result = await queue.drain(retry)
        assert result.permanently_failed == [item]

    async def test_should_stop_fails_remaining_without_attempt(self) -> None:
        retried: list[int] = []

        async def retry(item: DeferredRecord) -> None:
            retried.append(item.record["id"])

        queue = DeferralQueue()
        for i in range(3):
            queue.enqueue("t", {"id": i}, "x")

        checks = iter([False, True, True])
        result = await queue.drain(retry, should_stop=lambda: next(checks))

        assert retried == [0]
        assert len(result.succeeded) == 1
        assert [i.attempts for i in result.permanently_failed] == [1, 1]
