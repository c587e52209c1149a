"""
RabbitMQ Notify Strategy

Publishes the record payload as a persistent message through an aio-pika
channel. An empty exchange name publishes through the default exchange.
"""

import logging
from typing import Optional

import aio_pika

from ..observability.tracing import inject_trace_context
from ..outbox.models import OutboxRecord, RabbitMQConfig, TransportType
from ..outbox.store import MessageStore
from .base import NotifyStrategy

logger = logging.getLogger(__name__)


class RabbitMQNotifyStrategy(NotifyStrategy):
    transport_type = TransportType.RABBIT_MQ.value

    def __init__(
        self,
        store: MessageStore,
        channel: Optional[aio_pika.abc.AbstractChannel] = None
    ):
        super().__init__(store)
        self._channel = channel

    @property
    def is_configured(self) -> bool:
        return self._channel is not None

    async def _exchange(self, name: str) -> aio_pika.abc.AbstractExchange:
        if not name:
            return self._channel.default_exchange
        return await self._channel.get_exchange(name)

    async def send(self, record: OutboxRecord) -> str:
        config: RabbitMQConfig = record.config_as(RabbitMQConfig)
        delivery_mode = (
            aio_pika.DeliveryMode.PERSISTENT if config.persistent
            else aio_pika.DeliveryMode.NOT_PERSISTENT
        )
        message = aio_pika.Message(
            body=record.payload.encode("utf-8"),
            message_id=record.task_id,
            delivery_mode=delivery_mode,
            headers=inject_trace_context(dict(config.headers)),
        )

        exchange = await self._exchange(config.exchange)
        await exchange.publish(message, routing_key=config.routing_key)
        logger.debug(
            "Published task_id=%s to exchange=%r routing_key=%s",
            record.task_id, config.exchange, config.routing_key
        )
        return "success"
