"""
Tests for MessageStore against a real SQLite database.
"""

import pytest

from local_message.core.outbox.models import OutboxRecord, TaskStatus, can_transition


class TestInsert:
    """Inserting records."""

    async def test_assigns_increasing_ids(self, store, make_record):
        first = await make_record("t-1")
        second = await make_record("t-2")

        assert first.id is not None
        assert second.id > first.id

    async def test_forces_pending(self, store):
        record = OutboxRecord(
            task_id="t-1", shard=3, transport_type="http", status=TaskStatus.SUCCESS
        )
        affected = await store.insert(record)

        assert affected == 1
        assert record.status == TaskStatus.PENDING
        stored = await store.get("t-1")
        assert stored.status == TaskStatus.PENDING
        assert stored.shard == 3
        assert stored.transport_type == "http"

    async def test_insert_inside_transaction(self, store, db):
        record = OutboxRecord(task_id="t-1", shard=0, transport_type="http")
        async with db.transaction() as tx:
            await store.insert(record, conn=tx)

        assert (await store.get("t-1")) is not None


class TestUpdateStatus:
    """Guarded status transitions."""

    async def test_pending_to_success(self, store, make_record):
        await make_record("t-1")
        assert await store.update_status("t-1", TaskStatus.SUCCESS) == 1
        assert (await store.get("t-1")).status == TaskStatus.SUCCESS

    async def test_pending_to_failed_to_success(self, store, make_record):
        await make_record("t-1")
        assert await store.update_status("t-1", TaskStatus.FAILED) == 1
        assert await store.update_status("t-1", TaskStatus.FAILED) == 1
        assert await store.update_status("t-1", TaskStatus.SUCCESS) == 1
        assert (await store.get("t-1")).status == TaskStatus.SUCCESS

    async def test_success_is_terminal(self, store, make_record):
        """A late FAILED never overwrites SUCCESS."""
        await make_record("t-1", status=TaskStatus.SUCCESS)

        assert await store.update_status("t-1", TaskStatus.FAILED) == 0
        assert (await store.get("t-1")).status == TaskStatus.SUCCESS

    async def test_repeated_success_is_harmless(self, store, make_record):
        await make_record("t-1", status=TaskStatus.SUCCESS)

        assert await store.update_status("t-1", TaskStatus.SUCCESS) == 1
        assert (await store.get("t-1")).status == TaskStatus.SUCCESS

    async def test_missing_task(self, store):
        assert await store.update_status("nope", TaskStatus.SUCCESS) == 0

    @pytest.mark.parametrize("status", [TaskStatus.PENDING, TaskStatus.IN_PROGRESS])
    async def test_unassignable_status(self, store, make_record, status):
        await make_record("t-1")
        with pytest.raises(ValueError):
            await store.update_status("t-1", status)

    @pytest.mark.parametrize("current", [TaskStatus.PENDING, TaskStatus.FAILED, TaskStatus.SUCCESS])
    @pytest.mark.parametrize("target", [TaskStatus.SUCCESS, TaskStatus.FAILED])
    async def test_guard_follows_transition_table(self, store, make_record, current, target):
        await make_record("t-1", status=current)

        affected = await store.update_status("t-1", target)

        assert affected == (1 if can_transition(current, target) else 0)


class TestScan:
    """Shard and cursor scoped scans."""

    async def test_filters_by_shard_and_status(self, store, make_record):
        a = await make_record("a", shard=0)
        await make_record("b", shard=1)
        c = await make_record("c", shard=2, status=TaskStatus.FAILED)
        await make_record("d", shard=0, status=TaskStatus.SUCCESS)

        batch = await store.scan({0, 2}, min_id=0, limit=10)

        assert [r.id for r in batch] == [a.id, c.id]
        assert batch[1].status == TaskStatus.FAILED

    async def test_min_id_is_inclusive(self, store, make_record):
        records = [await make_record(f"t-{i}") for i in range(4)]

        batch = await store.scan([0], min_id=records[2].id, limit=10)

        assert [r.id for r in batch] == [records[2].id, records[3].id]

    async def test_ordered_and_limited(self, store, make_record):
        records = [await make_record(f"t-{i}", shard=i % 2) for i in range(6)]

        batch = await store.scan([0, 1], min_id=0, limit=4)

        assert [r.id for r in batch] == [r.id for r in records[:4]]

    async def test_empty_shards(self, store, make_record):
        await make_record("t-1")
        assert await store.scan(set(), min_id=0, limit=10) == []

    async def test_round_trips_fields(self, store, make_record):
        await make_record(
            "t-1",
            shard=5,
            transport_type="http",
            transport_config='{"url": "https://example.com"}',
            payload='{"order_id": 1}'
        )

        (record,) = await store.scan([5], 0, 10)

        assert record.task_id == "t-1"
        assert record.config_dict() == {"url": "https://example.com"}
        assert record.payload == '{"order_id": 1}'
        assert record.created_at is not None


class TestReadHelpers:
    """min_pending_id, counts and listings."""

    async def test_min_pending_id(self, store, make_record):
        await make_record("done", shard=1, status=TaskStatus.SUCCESS)
        failed = await make_record("failed", shard=1, status=TaskStatus.FAILED)
        await make_record("pending", shard=1)
        await make_record("other", shard=2)

        assert await store.min_pending_id([1]) == failed.id

    async def test_min_pending_id_none(self, store, make_record):
        await make_record("done", shard=1, status=TaskStatus.SUCCESS)
        assert await store.min_pending_id([1]) is None
        assert await store.min_pending_id([]) is None

    async def test_count_by_status(self, store, make_record):
        await make_record("a", shard=0)
        await make_record("b", shard=1, status=TaskStatus.FAILED)
        await make_record("c", shard=1, status=TaskStatus.SUCCESS)

        counts = await store.count_by_status()
        assert counts[TaskStatus.PENDING] == 1
        assert counts[TaskStatus.FAILED] == 1
        assert counts[TaskStatus.SUCCESS] == 1
        assert counts[TaskStatus.IN_PROGRESS] == 0

        shard_counts = await store.count_by_status([1])
        assert shard_counts[TaskStatus.PENDING] == 0

    async def test_list_by_status(self, store, make_record):
        first = await make_record("a", status=TaskStatus.FAILED)
        await make_record("b")
        third = await make_record("c", status=TaskStatus.FAILED)

        failed = await store.list_by_status(TaskStatus.FAILED)
        assert [r.id for r in failed] == [first.id, third.id]

        page = await store.list_by_status(TaskStatus.FAILED, limit=1, offset=1)
        assert [r.id for r in page] == [third.id]

    async def test_get_missing(self, store):
        assert await store.get("missing") is None
