"""
Tests for the transactional outbox scope.
"""

import pytest

from local_message.core.errors import ValidationError
from local_message.core.outbox.models import NotifyCommand
from local_message.core.outbox.transactional import (
    TransactionalOutbox,
    run_in_transaction,
    transactional_outbox,
)
from local_message.core.outbox.writer import OutboxWriter


def kafka_command(task_id: str) -> NotifyCommand:
    return NotifyCommand(
        task_id=task_id,
        transport_type="kafka",
        transport_config={"topic": "orders"},
        payload="{}"
    )


@pytest.fixture
async def orders_db(db, store):
    await db.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, paid INTEGER NOT NULL DEFAULT 0)")
    await db.execute("INSERT INTO orders (id, paid) VALUES ($1, $2)", 1, 0)
    return db


async def order_paid(db) -> int:
    return await db.fetchval("SELECT paid FROM orders WHERE id = $1", 1)


class TestRunInTransaction:
    """Business change and outbox record commit together."""

    async def test_commits_both(self, orders_db, store, fake_dispatcher):
        writer = OutboxWriter(store, dispatcher=fake_dispatcher)

        async def mark_paid(conn):
            await conn.execute("UPDATE orders SET paid = 1 WHERE id = $1", 1)
            return "paid"

        result = await run_in_transaction(writer, mark_paid, kafka_command("order-1"))

        assert result == "paid"
        assert await order_paid(orders_db) == 1
        assert await store.get("order-1") is not None
        assert len(fake_dispatcher.submitted) == 1

    async def test_business_failure_rolls_back_both(self, orders_db, store, fake_dispatcher):
        writer = OutboxWriter(store, dispatcher=fake_dispatcher)

        async def mark_paid_then_fail(conn):
            await conn.execute("UPDATE orders SET paid = 1 WHERE id = $1", 1)
            raise RuntimeError("inventory check failed")

        with pytest.raises(RuntimeError):
            await run_in_transaction(writer, mark_paid_then_fail, kafka_command("order-1"))

        assert await order_paid(orders_db) == 0
        assert await store.get("order-1") is None
        assert fake_dispatcher.submitted == []

    async def test_invalid_command_rolls_back_business(self, orders_db, store):
        writer = OutboxWriter(store)

        async def mark_paid(conn):
            await conn.execute("UPDATE orders SET paid = 1 WHERE id = $1", 1)

        bad = NotifyCommand(task_id="order-1", transport_type="kafka", transport_config={"topic": ""})
        with pytest.raises(ValidationError):
            await run_in_transaction(writer, mark_paid, bad)

        assert await order_paid(orders_db) == 0

    async def test_joins_outer_transaction(self, orders_db, store, fake_dispatcher):
        writer = OutboxWriter(store, dispatcher=fake_dispatcher)

        async def mark_paid(conn):
            await conn.execute("UPDATE orders SET paid = 1 WHERE id = $1", 1)

        with pytest.raises(RuntimeError):
            async with orders_db.transaction() as outer:
                await run_in_transaction(writer, mark_paid, kafka_command("order-1"), conn=outer)
                # The inner scope did not commit on its own
                assert fake_dispatcher.submitted == []
                raise RuntimeError("outer failure")

        assert await order_paid(orders_db) == 0
        assert await store.get("order-1") is None
        assert fake_dispatcher.submitted == []


class TestTransactionalOutbox:
    """Context manager form."""

    async def test_commit(self, orders_db, store, fake_dispatcher):
        writer = OutboxWriter(store, dispatcher=fake_dispatcher)

        async with TransactionalOutbox(writer) as txn:
            await txn.conn.execute("UPDATE orders SET paid = 1 WHERE id = $1", 1)
            await txn.accept(kafka_command("order-1"))
            await txn.accept(kafka_command("order-1-audit"))
            assert len(txn.accepted_records) == 2

        assert await order_paid(orders_db) == 1
        assert [r.task_id for r in fake_dispatcher.submitted] == ["order-1", "order-1-audit"]

    async def test_rollback(self, orders_db, store, fake_dispatcher):
        writer = OutboxWriter(store, dispatcher=fake_dispatcher)
        outbox = TransactionalOutbox(writer)

        with pytest.raises(RuntimeError):
            async with outbox as txn:
                await txn.conn.execute("UPDATE orders SET paid = 1 WHERE id = $1", 1)
                await txn.accept(kafka_command("order-1"))
                raise RuntimeError("boom")

        assert outbox.accepted_records == []
        assert await order_paid(orders_db) == 0
        assert await store.get("order-1") is None
        assert fake_dispatcher.submitted == []

    async def test_accept_outside_context(self, store):
        outbox = TransactionalOutbox(OutboxWriter(store))
        with pytest.raises(RuntimeError):
            await outbox.accept(kafka_command("order-1"))

    async def test_function_form(self, orders_db, store, fake_dispatcher):
        writer = OutboxWriter(store, dispatcher=fake_dispatcher)

        async with transactional_outbox(writer) as txn:
            await txn.accept(kafka_command("order-2"))

        assert await store.get("order-2") is not None
        assert len(fake_dispatcher.submitted) == 1
