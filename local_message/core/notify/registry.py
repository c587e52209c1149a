"""
Notify Strategy Registry

Maps a record's transport type to the strategy that delivers it. Resolved
once at startup; dispatch is a dictionary lookup.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import UnknownTransportError
from ..observability.metrics import record_counter, record_histogram
from ..observability.tracing import create_span
from ..outbox.models import OutboxRecord
from .base import SKIPPED, NotifyStrategy

if TYPE_CHECKING:
    from ..outbox.store import MessageStore

logger = logging.getLogger(__name__)


class NotifyStrategyRegistry:
    """
    Registry of notify strategies keyed by transport type.

    Usage:
        registry = NotifyStrategyRegistry()
        registry.register(HttpNotifyStrategy(store, client))
        result = await registry.dispatch(record)
    """

    def __init__(self, strategies: Optional[List[NotifyStrategy]] = None):
        self._strategies: Dict[str, NotifyStrategy] = {}
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: NotifyStrategy) -> None:
        transport_type = (strategy.transport_type or "").strip()
        if not transport_type:
            raise ValueError("strategy_missing_transport_type")
        if transport_type in self._strategies:
            raise ValueError(f"duplicate_strategy_for_transport_type:{transport_type}")
        self._strategies[transport_type] = strategy

    def get(self, transport_type: str) -> Optional[NotifyStrategy]:
        return self._strategies.get((transport_type or "").strip())

    @property
    def transport_types(self) -> List[str]:
        return sorted(self._strategies)

    async def dispatch(self, record: OutboxRecord, path: str = "scan") -> str:
        """
        Deliver one record through its strategy.

        Args:
            record: The outbox record
            path: "scan" or "immediate", for metrics only

        Raises:
            UnknownTransportError: no strategy for record.transport_type
            TransportError: delivery failed (record already marked FAILED)
        """
        strategy = self.get(record.transport_type)
        if strategy is None:
            record_counter(
                "outbox_dispatch_total", 1,
                {"transport": record.transport_type, "outcome": "unknown_transport", "path": path}
            )
            raise UnknownTransportError(record.transport_type)

        started = time.perf_counter()
        outcome = "failed"
        with create_span(
            "outbox.dispatch",
            attributes={
                "outbox.task_id": record.task_id,
                "outbox.transport": record.transport_type,
                "outbox.path": path,
            }
        ):
            try:
                result = await strategy.notify(record)
                outcome = "skipped" if result == SKIPPED else "success"
                return result
            finally:
                attributes = {"transport": record.transport_type, "outcome": outcome, "path": path}
                record_counter("outbox_dispatch_total", 1, attributes)
                record_histogram(
                    "outbox_dispatch_duration_seconds",
                    time.perf_counter() - started,
                    attributes
                )

    async def close(self) -> None:
        for strategy in self._strategies.values():
            try:
                await strategy.close()
            except Exception:
                logger.exception("Failed to close strategy %s", strategy.transport_type)


def build_default_registry(
    store: "MessageStore",
    http_client: Any = None,
    rabbit_channel: Any = None,
    kafka_producer: Any = None
) -> NotifyStrategyRegistry:
    """
    Register the built-in strategies.

    Broker strategies are always registered; a missing client turns them
    into logged no-ops rather than unknown transports.
    """
    from .http import HttpNotifyStrategy
    from .kafka import KafkaNotifyStrategy
    from .rabbitmq import RabbitMQNotifyStrategy

    return NotifyStrategyRegistry([
        HttpNotifyStrategy(store, client=http_client),
        RabbitMQNotifyStrategy(store, channel=rabbit_channel),
        KafkaNotifyStrategy(store, producer=kafka_producer),
    ])
