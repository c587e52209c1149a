"""
Outbox Lifecycle Management

Wires the adapter, store, strategies, dispatcher, writer and scheduler
together and owns their startup and shutdown order.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx

from ..config import OutboxConfig
from ..database.adapter import DatabaseAdapter, DatabaseConfig
from ..notify.registry import NotifyStrategyRegistry, build_default_registry
from ..observability import configure_logging, init_metrics, init_tracing
from .dispatch import ImmediateDispatcher
from .inspector import OutboxInspector
from .scheduler import ReconciliationScheduler
from .store import MessageStore
from .writer import OutboxWriter

logger = logging.getLogger(__name__)


async def _connect_rabbitmq(url: str):
    import aio_pika

    connection = await aio_pika.connect_robust(url)
    try:
        channel = await connection.channel()
    except Exception:
        await connection.close()
        raise
    return connection, channel


async def _start_kafka_producer(bootstrap_servers: str):
    from aiokafka import AIOKafkaProducer

    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    try:
        await producer.start()
    except Exception:
        await producer.stop()
        raise
    return producer


class OutboxEngine:
    """
    All outbox components built from one OutboxConfig.

    Usage:
        engine = OutboxEngine(OutboxConfig())
        await engine.start()

        async with engine.db.transaction() as tx:
            await tx.execute("UPDATE orders SET paid = TRUE WHERE id = $1", order_id)
            await engine.writer.accept(command, conn=tx)

        await engine.stop()

    Pre-built clients (http_client, rabbit_channel, kafka_producer, db) are
    used as given and left open on stop(); clients the engine creates from
    configuration are closed by it.
    """

    def __init__(
        self,
        config: Optional[OutboxConfig] = None,
        db: Optional[DatabaseAdapter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        rabbit_channel: Any = None,
        kafka_producer: Any = None,
        run_scheduler: Optional[bool] = None
    ):
        self.config = config or OutboxConfig()
        self._owns_db = db is None
        self.db = db or DatabaseAdapter(DatabaseConfig(**self.config.database_kwargs()))
        self.store = MessageStore(self.db)

        self._http_client = http_client
        self._rabbit_channel = rabbit_channel
        self._kafka_producer = kafka_producer
        self._owned: list = []

        self._run_scheduler = (
            self.config.OUTBOX_PROCESSOR_ENABLED if run_scheduler is None else run_scheduler
        )

        self.registry: Optional[NotifyStrategyRegistry] = None
        self.dispatcher: Optional[ImmediateDispatcher] = None
        self.writer: Optional[OutboxWriter] = None
        self.scheduler: Optional[ReconciliationScheduler] = None
        self.inspector = OutboxInspector(self.store)
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def _open_clients(self) -> None:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.HTTP_TIMEOUT)
            self._owned.append(self._http_client.aclose)

        # An unreachable broker leaves its strategy unconfigured; it logs and skips
        if self._rabbit_channel is None and self.config.RABBITMQ_URL:
            try:
                connection, self._rabbit_channel = await _connect_rabbitmq(self.config.RABBITMQ_URL)
            except Exception:
                logger.exception("Could not connect to RabbitMQ, rabbit_mq notifications will be skipped")
            else:
                self._owned.append(connection.close)
                logger.info("Connected to RabbitMQ")

        if self._kafka_producer is None and self.config.KAFKA_BOOTSTRAP_SERVERS:
            try:
                self._kafka_producer = await _start_kafka_producer(
                    self.config.KAFKA_BOOTSTRAP_SERVERS
                )
            except Exception:
                logger.exception(
                    "Could not start Kafka producer for %s, kafka notifications will be skipped",
                    self.config.KAFKA_BOOTSTRAP_SERVERS
                )
            else:
                self._owned.append(self._kafka_producer.stop)
                logger.info(f"Kafka producer started: {self.config.KAFKA_BOOTSTRAP_SERVERS}")

    async def start(self) -> None:
        """
        Connect the database, open transport clients and start scanning.

        A failure after the database connects tears down whatever was opened
        before re-raising.
        """
        if self._started:
            return

        for issue in self.config.validate():
            if issue.startswith("ERROR"):
                logger.error(issue)
            else:
                logger.warning(issue)

        await self.db.connect()
        try:
            await self._start_components()
        except Exception:
            logger.error("OutboxEngine failed to start, releasing resources", exc_info=True)
            await self._teardown()
            raise

        self._started = True
        logger.info("OutboxEngine started")

    async def _start_components(self) -> None:
        await self.store.ensure_schema()
        await self._open_clients()

        self.registry = build_default_registry(
            self.store,
            http_client=self._http_client,
            rabbit_channel=self._rabbit_channel,
            kafka_producer=self._kafka_producer
        )
        self.dispatcher = ImmediateDispatcher(
            self.registry, max_concurrency=self.config.DISPATCH_CONCURRENCY
        )
        self.writer = OutboxWriter(
            self.store,
            dispatcher=self.dispatcher,
            shard_count=self.config.SHARD_COUNT,
            enabled=self.config.OUTBOX_ENABLED
        )

        if self._run_scheduler:
            self.scheduler = ReconciliationScheduler(
                self.store,
                self.registry,
                self.config.groups,
                worker_pool_size=self.config.WORKER_POOL_SIZE
            )
            await self.scheduler.start()
        else:
            logger.info("Reconciliation scheduler disabled: OUTBOX_PROCESSOR_ENABLED=false")

    async def stop(self) -> None:
        """Stop scanning, finish in-flight dispatches, then close clients."""
        if not self._started:
            return

        await self._teardown()
        self._started = False
        logger.info("OutboxEngine stopped")

    async def _teardown(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.shutdown()
            self.scheduler = None
        if self.dispatcher is not None:
            await self.dispatcher.close()

        for close in reversed(self._owned):
            try:
                await close()
            except Exception:
                logger.exception("Failed to close transport client")
        self._owned = []

        if self._owns_db:
            await self.db.disconnect()


def setup_observability(config: OutboxConfig) -> None:
    """Configure logging, tracing and metrics from config."""
    configure_logging(level=config.LOG_LEVEL, structured=config.LOG_STRUCTURED)
    endpoint = config.OTEL_EXPORTER_OTLP_ENDPOINT or None
    init_tracing(otlp_endpoint=endpoint)
    init_metrics(otlp_endpoint=endpoint)


@asynccontextmanager
async def outbox_lifespan(config: Optional[OutboxConfig] = None, **engine_kwargs):
    """
    Lifespan context manager for the outbox engine.

    Usage in an ASGI app:
        from local_message.core.outbox.lifecycle import outbox_lifespan

        @asynccontextmanager
        async def lifespan(app):
            async with outbox_lifespan() as engine:
                app.state.outbox = engine
                yield
    """
    engine = OutboxEngine(config, **engine_kwargs)
    logger.info("Starting outbox engine...")
    await engine.start()
    try:
        yield engine
    finally:
        logger.info("Stopping outbox engine...")
        await engine.stop()
