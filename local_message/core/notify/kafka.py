"""
Kafka Notify Strategy

Sends the record payload with AIOKafkaProducer.send_and_wait, so a record is
only marked SUCCESS once the broker acknowledged it.
"""

import logging
from typing import List, Optional, Tuple

from aiokafka import AIOKafkaProducer

from ..observability.tracing import inject_trace_context
from ..outbox.models import KafkaConfig, OutboxRecord, TransportType
from ..outbox.store import MessageStore
from .base import NotifyStrategy

logger = logging.getLogger(__name__)


def _encode_headers(headers: dict) -> List[Tuple[str, bytes]]:
    return [(key, str(value).encode("utf-8")) for key, value in headers.items()]


class KafkaNotifyStrategy(NotifyStrategy):
    transport_type = TransportType.KAFKA.value

    def __init__(self, store: MessageStore, producer: Optional[AIOKafkaProducer] = None):
        super().__init__(store)
        self._producer = producer

    @property
    def is_configured(self) -> bool:
        return self._producer is not None

    async def send(self, record: OutboxRecord) -> str:
        config: KafkaConfig = record.config_as(KafkaConfig)
        key = config.partition_key.encode("utf-8") if config.partition_key else None
        metadata = await self._producer.send_and_wait(
            config.topic,
            value=record.payload.encode("utf-8"),
            key=key,
            partition=config.partition,
            headers=_encode_headers(inject_trace_context(dict(config.headers))),
        )
        logger.debug(
            "Sent task_id=%s to topic=%s partition=%s offset=%s",
            record.task_id, config.topic,
            getattr(metadata, "partition", None), getattr(metadata, "offset", None)
        )
        return "success"
