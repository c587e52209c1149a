"""
Outbox Writer

Writes notify commands to the local message table within the same
transaction as the caller's business change, then signals the immediate
dispatch path once that transaction commits.
"""

import json
import logging
import os
from typing import TYPE_CHECKING, Optional

from ..database.adapter import Connection
from ..errors import PersistenceError, StorageError, ValidationError
from ..observability.metrics import record_counter
from .models import (
    TRANSPORT_CONFIG_MODELS,
    NotifyCommand,
    OutboxRecord,
    TaskStatus,
    parse_transport_config,
)
from .sharding import DEFAULT_SHARD_COUNT, shard_for
from .store import MessageStore

if TYPE_CHECKING:
    from .dispatch import ImmediateDispatcher

logger = logging.getLogger(__name__)


def is_outbox_enabled() -> bool:
    """Check if the immediate dispatch signal is enabled."""
    return os.getenv("OUTBOX_ENABLED", "true").strip().lower() in ("1", "true", "yes", "on")


def validate_command(command: NotifyCommand) -> str:
    """
    Validate a command and return its normalized transport config as JSON.

    Built-in transports must carry a config that parses into their model;
    custom transports must carry a non-empty config dict.

    Raises:
        ValidationError: malformed command
    """
    if command is None:
        raise ValidationError("Notify command is required")
    if not command.task_id or not command.task_id.strip():
        raise ValidationError("task_id is required", field="task_id")
    if not command.transport_type or not command.transport_type.strip():
        raise ValidationError("transport_type is required", field="transport_type")
    if not command.transport_config:
        raise ValidationError(
            f"transport_config is required for transport '{command.transport_type}'",
            field="transport_config"
        )

    if command.transport_type in TRANSPORT_CONFIG_MODELS:
        parsed = parse_transport_config(command.transport_type, command.transport_config)
        config = parsed.model_dump(exclude_none=True)
    else:
        config = command.transport_config

    try:
        return json.dumps(config, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"transport_config is not JSON serializable: {e}",
            field="transport_config"
        ) from e


class OutboxWriter:
    """
    Accepts notify commands into the outbox.

    Usage:
        async with db.transaction() as tx:
            # Your business logic here...
            await tx.execute("UPDATE orders SET paid = TRUE WHERE id = $1", order_id)
            await writer.accept(command, conn=tx)
        # Transaction commits, record is persisted, immediate dispatch fires
    """

    def __init__(
        self,
        store: MessageStore,
        dispatcher: Optional["ImmediateDispatcher"] = None,
        shard_count: int = DEFAULT_SHARD_COUNT,
        enabled: Optional[bool] = None
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._shard_count = shard_count
        self._enabled = is_outbox_enabled() if enabled is None else enabled

    @property
    def store(self) -> MessageStore:
        return self._store

    def build_record(self, command: NotifyCommand) -> OutboxRecord:
        """Validate a command and turn it into a PENDING record."""
        config_json = validate_command(command)
        return OutboxRecord(
            task_id=command.task_id,
            task_name=command.task_name,
            shard=shard_for(command.task_id, self._shard_count),
            transport_type=command.transport_type,
            transport_config=config_json,
            status=TaskStatus.PENDING,
            payload=command.payload
        )

    async def accept(
        self,
        command: NotifyCommand,
        conn: Optional[Connection] = None
    ) -> OutboxRecord:
        """
        Persist a notify command as a PENDING record.

        Joins the transaction on `conn` when it has one, otherwise opens a
        transaction of its own. The immediate dispatch signal is registered
        as an after-commit hook, so it never fires for a rolled back write.

        Args:
            command: The notify command
            conn: Connection carrying the caller's business transaction

        Returns:
            The persisted OutboxRecord

        Raises:
            ValidationError: malformed command (nothing persisted)
            PersistenceError: insert failed; the transaction must roll back
        """
        record = self.build_record(command)
        db = self._store.db

        async with db.transaction(conn) as tx:
            try:
                affected = await self._store.insert(record, conn=tx)
            except StorageError as e:
                raise PersistenceError(
                    f"Failed to persist outbox record for task {record.task_id}: {e.message}",
                    task_id=record.task_id
                ) from e

            if affected != 1:
                raise PersistenceError(
                    f"Outbox insert affected {affected} rows for task {record.task_id}",
                    task_id=record.task_id
                )

            tx.on_commit(lambda: self._signal(record))

        logger.debug(
            "Wrote task to outbox: id=%s task_id=%s transport=%s shard=%s",
            record.id, record.task_id, record.transport_type, record.shard
        )
        return record

    def _signal(self, record: OutboxRecord) -> None:
        record_counter("outbox_records_written_total", 1, {"transport": record.transport_type})
        if self._dispatcher is None or not self._enabled:
            return
        self._dispatcher.submit(record)
