"""
Shared Test Fixtures

Real SQLite stores in tmp_path, plus in-memory fakes for transports and
broker clients.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from local_message.core.database.adapter import DatabaseAdapter, DatabaseConfig
from local_message.core.notify.base import NotifyStrategy
from local_message.core.notify.registry import NotifyStrategyRegistry
from local_message.core.outbox.models import OutboxRecord, TaskStatus
from local_message.core.outbox.store import MessageStore


class RecordingStrategy(NotifyStrategy):
    """Strategy that records every send and fails for chosen task ids."""

    def __init__(
        self,
        store: MessageStore,
        transport_type: str = "test",
        fail_task_ids: Optional[Set[str]] = None,
        delay: float = 0.0
    ):
        super().__init__(store)
        self.transport_type = transport_type
        self.fail_task_ids: Set[str] = set(fail_task_ids or ())
        self.delay = delay
        self.sent: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, record: OutboxRecord) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.sent.append(record.task_id)
            if record.task_id in self.fail_task_ids:
                raise RuntimeError(f"downstream rejected {record.task_id}")
            return f"delivered:{record.task_id}"
        finally:
            self.in_flight -= 1


class FakeDispatcher:
    """Collects records handed over by the writer's after-commit hook."""

    def __init__(self):
        self.submitted: List[OutboxRecord] = []

    def submit(self, record: OutboxRecord):
        self.submitted.append(record)


class FakeExchange:
    def __init__(self, name: str):
        self.name = name
        self.published: List[Dict[str, Any]] = []

    async def publish(self, message, routing_key: str):
        self.published.append({"message": message, "routing_key": routing_key})


class FakeChannel:
    """Stands in for an aio_pika channel."""

    def __init__(self):
        self.default_exchange = FakeExchange("")
        self.exchanges: Dict[str, FakeExchange] = {}

    async def get_exchange(self, name: str, ensure: bool = True) -> FakeExchange:
        return self.exchanges.setdefault(name, FakeExchange(name))


class FakeKafkaProducer:
    """Stands in for AIOKafkaProducer."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_and_wait(self, topic, value=None, key=None, partition=None, headers=None):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.sent.append({
            "topic": topic,
            "value": value,
            "key": key,
            "partition": partition,
            "headers": headers,
        })
        return None


@pytest.fixture
async def db(tmp_path):
    """SQLite adapter on a fresh file."""
    adapter = DatabaseAdapter(
        DatabaseConfig(backend="sqlite", sqlite_path=str(tmp_path / "outbox.db"))
    )
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture
async def store(db):
    message_store = MessageStore(db)
    await message_store.ensure_schema()
    return message_store


@pytest.fixture
def make_record(store):
    """Insert a record directly, bypassing the writer."""

    async def _make(
        task_id: str,
        shard: int = 0,
        transport_type: str = "test",
        status: Optional[TaskStatus] = None,
        transport_config: str = "{}",
        payload: str = "{}"
    ) -> OutboxRecord:
        record = OutboxRecord(
            task_id=task_id,
            shard=shard,
            transport_type=transport_type,
            transport_config=transport_config,
            payload=payload
        )
        await store.insert(record)
        if status is not None and status != TaskStatus.PENDING:
            await store.update_status(task_id, status)
            record.status = status
        return record

    return _make


@pytest.fixture
def recording_strategy(store):
    return RecordingStrategy(store)


@pytest.fixture
def registry(recording_strategy):
    return NotifyStrategyRegistry([recording_strategy])


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher()


@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def fake_producer():
    return FakeKafkaProducer()


@pytest.fixture
def strategy_factory(store):
    """Build extra RecordingStrategy instances bound to the test store."""

    def _factory(transport_type: str = "test", fail_task_ids=None, delay: float = 0.0):
        return RecordingStrategy(store, transport_type, fail_task_ids, delay)

    return _factory


@pytest.fixture
def failing_producer():
    return FakeKafkaProducer(fail=True)
