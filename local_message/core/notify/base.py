"""
Notify Strategy Base

The contract every transport plugin implements, and the status bookkeeping
shared by all of them.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import TransportError
from ..outbox.models import OutboxRecord, TaskStatus
from ..outbox.store import MessageStore

logger = logging.getLogger(__name__)

SKIPPED = "skipped"


class NotifyStrategy:
    """
    Interface for transport plugins.

    A strategy owns the terminal bookkeeping for its own transport: it marks
    the record SUCCESS after a delivered notification, and FAILED before
    re-raising a delivery error as TransportError. When its client is not
    configured it logs and returns SKIPPED, leaving the status untouched.
    """

    transport_type: str = ""

    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def is_configured(self) -> bool:
        return True

    async def notify(self, record: OutboxRecord) -> str:
        if not self.is_configured:
            logger.error(
                "Transport '%s' has no configured client, cannot notify task %s",
                self.transport_type, record.task_id
            )
            return SKIPPED

        try:
            result = await self.send(record)
        except Exception as e:
            await self._mark_failed(record)
            logger.error(
                "Notify via %s failed task_id=%s config=%s: %s",
                self.transport_type, record.task_id, record.transport_config, e
            )
            if isinstance(e, TransportError):
                raise
            raise TransportError(self.transport_type, record.task_id, str(e) or repr(e)) from e

        await self._mark_success(record)
        logger.info("Notify via %s succeeded task_id=%s", self.transport_type, record.task_id)
        return result

    async def send(self, record: OutboxRecord) -> str:
        """Perform the transport call. Raise on any delivery failure."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release transport resources owned by the strategy."""

    async def _mark_success(self, record: OutboxRecord) -> None:
        affected = await self._store.update_status(record.task_id, TaskStatus.SUCCESS)
        if affected > 0:
            record.status = TaskStatus.SUCCESS
        else:
            logger.warning("No outbox row updated to SUCCESS for task_id=%s", record.task_id)

    async def _mark_failed(self, record: OutboxRecord) -> Optional[int]:
        try:
            affected = await self._store.update_status(record.task_id, TaskStatus.FAILED)
        except Exception:
            # Keep the transport error as the one reported upstream
            logger.exception("Could not mark task_id=%s FAILED", record.task_id)
            return None
        if affected > 0:
            record.status = TaskStatus.FAILED
        else:
            logger.warning(
                "No outbox row updated to FAILED for task_id=%s (missing or already SUCCESS)",
                record.task_id
            )
        return affected
