"""
Outbox Inspector

Read-only operator view of the local message table: counts per status,
FAILED records waiting for the next rescan, and single record lookup.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .models import OutboxRecord, TaskStatus
from .store import MessageStore

logger = logging.getLogger(__name__)


class OutboxInspector:
    """
    Operator visibility into outbox state.

    Usage:
        inspector = OutboxInspector(store)
        stats = await inspector.get_stats()
        failed = await inspector.get_failed(limit=20)
    """

    def __init__(self, store: MessageStore):
        self._store = store

    async def get_stats(self, shards: Optional[Sequence[int]] = None) -> Dict[str, Any]:
        """Record counts per status name, plus the total."""
        counts = await self._store.count_by_status(shards)
        by_status = {status.name: counts.get(status, 0) for status in TaskStatus}
        return {
            "total_count": sum(by_status.values()),
            "by_status": by_status,
            "undelivered_count": by_status[TaskStatus.PENDING.name] + by_status[TaskStatus.FAILED.name],
        }

    async def get_failed(self, limit: int = 100, offset: int = 0) -> List[OutboxRecord]:
        """FAILED records, oldest first."""
        return await self._store.list_by_status(TaskStatus.FAILED, limit=limit, offset=offset)

    async def get_record(self, task_id: str) -> Optional[OutboxRecord]:
        record = await self._store.get(task_id)
        if record is None:
            logger.debug(f"No outbox record for task_id={task_id}")
        return record
