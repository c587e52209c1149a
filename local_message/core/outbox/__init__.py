"""
Local Message Outbox

Business change and "notify someone about it" committed atomically, with
at-least-once delivery through immediate dispatch and periodic rescans.

Usage:
    from local_message.core.outbox import NotifyCommand, TransactionalOutbox

    async with TransactionalOutbox(writer) as txn:
        await txn.conn.execute("UPDATE orders SET paid = TRUE WHERE id = $1", order_id)
        await txn.accept(NotifyCommand(
            task_id=f"order-paid-{order_id}",
            transport_type="http",
            transport_config={"url": "https://billing.internal/hooks/paid"},
            payload={"order_id": order_id}
        ))
"""

from .models import (
    HttpConfig,
    KafkaConfig,
    NotifyCommand,
    OutboxRecord,
    RabbitMQConfig,
    TaskStatus,
    TransportType,
)
from .sharding import DEFAULT_SHARD_COUNT, shard_for
from .store import MessageStore
from .transactional import TransactionalOutbox, run_in_transaction, transactional_outbox
from .writer import OutboxWriter

__all__ = [
    "HttpConfig",
    "KafkaConfig",
    "NotifyCommand",
    "OutboxRecord",
    "RabbitMQConfig",
    "TaskStatus",
    "TransportType",
    "DEFAULT_SHARD_COUNT",
    "shard_for",
    "MessageStore",
    "TransactionalOutbox",
    "run_in_transaction",
    "transactional_outbox",
    "OutboxWriter",
]
