"""
Message Store

Durable access to the local_task_message table: insert, guarded status
updates, and shard + cursor scoped scans for the reconciliation scheduler.

Every method accepts an optional connection so it can take part in a
caller's transaction; without one it borrows a connection from the adapter.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence

from ..database.adapter import Connection, DatabaseAdapter
from ..errors import StorageError
from .models import RETRYABLE_STATUSES, OutboxRecord, TaskStatus, can_transition
from .schema import TABLE_NAME, ensure_schema

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, task_id, task_name, notify_type, notify_config, status, "
    "parameter_json, house_number, create_time, update_time"
)


def _placeholders(start: int, count: int) -> str:
    """Build "$start, $start+1, ..." for an IN list."""
    return ", ".join(f"${i}" for i in range(start, start + count))


def _sorted_values(values: Iterable[int]) -> List[int]:
    return sorted({int(v) for v in values})


class MessageStore:
    """
    Repository for outbox records.

    Usage:
        store = MessageStore(db)
        await store.insert(record, conn=tx)
        batch = await store.scan({0, 1, 2}, min_id=0, limit=100)
        await store.update_status(record.task_id, TaskStatus.SUCCESS)
    """

    def __init__(self, db: DatabaseAdapter):
        self._db = db

    @property
    def db(self) -> DatabaseAdapter:
        return self._db

    async def ensure_schema(self) -> None:
        await ensure_schema(self._db)

    @asynccontextmanager
    async def _use(self, conn: Optional[Connection]) -> AsyncIterator[Connection]:
        if conn is not None:
            yield conn
        else:
            async with self._db.connection() as borrowed:
                yield borrowed

    async def insert(self, record: OutboxRecord, conn: Optional[Connection] = None) -> int:
        """
        Persist a record in PENDING status.

        Sets record.id from the generated key and stamps both timestamps.

        Returns:
            Number of inserted rows (1 on success)

        Raises:
            StorageError: connectivity or constraint failure
        """
        now = datetime.now(timezone.utc)
        record.status = TaskStatus.PENDING
        record.created_at = now
        record.updated_at = now

        try:
            async with self._use(conn) as c:
                rows = await c.fetch(
                    f"""
                    INSERT INTO {TABLE_NAME} (
                        task_id, task_name, notify_type, notify_config, status,
                        parameter_json, house_number, create_time, update_time
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING id
                    """,
                    record.task_id,
                    record.task_name,
                    record.transport_type,
                    record.transport_config,
                    int(record.status),
                    record.payload,
                    record.shard,
                    now,
                    now
                )
        except Exception as e:
            logger.error(f"Failed to insert outbox record task_id={record.task_id}: {e}")
            raise StorageError(f"Insert failed for task {record.task_id}: {e}") from e

        if rows:
            record.id = rows[0]["id"]
        return len(rows)

    async def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        conn: Optional[Connection] = None
    ) -> int:
        """
        Move a record to `status` if the transition is allowed.

        SUCCESS is terminal: a FAILED update never overwrites it, while a
        repeated SUCCESS update matches again and is harmless.

        Returns:
            Number of updated rows (0 when no row matches)
        """
        allowed = _sorted_values(s for s in TaskStatus if can_transition(s, status))
        if not allowed:
            raise ValueError(f"Status {status!r} cannot be assigned")

        try:
            async with self._use(conn) as c:
                return await c.execute(
                    f"""
                    UPDATE {TABLE_NAME}
                    SET status = $1, update_time = $2
                    WHERE task_id = $3 AND status IN ({_placeholders(4, len(allowed))})
                    """,
                    int(status),
                    datetime.now(timezone.utc),
                    task_id,
                    *allowed
                )
        except Exception as e:
            logger.error(f"Failed to update status task_id={task_id} status={status.name}: {e}")
            raise StorageError(f"Status update failed for task {task_id}: {e}") from e

    async def scan(
        self,
        shards: Iterable[int],
        min_id: int,
        limit: int,
        conn: Optional[Connection] = None
    ) -> List[OutboxRecord]:
        """
        Fetch PENDING/FAILED records in `shards` with id >= min_id.

        One statement, ordered by id ascending, truncated to `limit`.
        """
        shard_list = _sorted_values(shards)
        if not shard_list or limit <= 0:
            return []
        statuses = _sorted_values(RETRYABLE_STATUSES)

        shard_start = 2
        status_start = shard_start + len(shard_list)
        limit_pos = status_start + len(statuses)

        try:
            async with self._use(conn) as c:
                rows = await c.fetch(
                    f"""
                    SELECT {_COLUMNS}
                    FROM {TABLE_NAME}
                    WHERE id >= $1
                      AND house_number IN ({_placeholders(shard_start, len(shard_list))})
                      AND status IN ({_placeholders(status_start, len(statuses))})
                    ORDER BY id ASC
                    LIMIT ${limit_pos}
                    """,
                    int(min_id),
                    *shard_list,
                    *statuses,
                    int(limit)
                )
        except Exception as e:
            logger.error(f"Scan failed shards={shard_list} min_id={min_id} limit={limit}: {e}")
            raise StorageError(f"Scan failed for shards {shard_list}: {e}") from e

        return [OutboxRecord.from_row(row) for row in rows]

    async def min_pending_id(
        self,
        shards: Iterable[int],
        conn: Optional[Connection] = None
    ) -> Optional[int]:
        """Smallest id among PENDING/FAILED records in `shards`, or None."""
        shard_list = _sorted_values(shards)
        if not shard_list:
            return None
        statuses = _sorted_values(RETRYABLE_STATUSES)
        status_start = 1 + len(shard_list)

        try:
            async with self._use(conn) as c:
                value = await c.fetchval(
                    f"""
                    SELECT MIN(id) AS min_id
                    FROM {TABLE_NAME}
                    WHERE house_number IN ({_placeholders(1, len(shard_list))})
                      AND status IN ({_placeholders(status_start, len(statuses))})
                    """,
                    *shard_list,
                    *statuses
                )
        except Exception as e:
            logger.error(f"Min id lookup failed shards={shard_list}: {e}")
            raise StorageError(f"Min id lookup failed for shards {shard_list}: {e}") from e

        return int(value) if value is not None else None

    # Read-only helpers for operators

    async def get(self, task_id: str, conn: Optional[Connection] = None) -> Optional[OutboxRecord]:
        """Latest record for a task id."""
        try:
            async with self._use(conn) as c:
                row = await c.fetchrow(
                    f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE task_id = $1 ORDER BY id DESC LIMIT 1",
                    task_id
                )
        except Exception as e:
            raise StorageError(f"Lookup failed for task {task_id}: {e}") from e
        return OutboxRecord.from_row(row) if row else None

    async def count_by_status(self, shards: Optional[Sequence[int]] = None) -> Dict[TaskStatus, int]:
        """Record counts per status, optionally limited to some shards."""
        query = f"SELECT status, COUNT(*) AS count FROM {TABLE_NAME}"
        args: List[int] = []
        if shards:
            args = _sorted_values(shards)
            query += f" WHERE house_number IN ({_placeholders(1, len(args))})"
        query += " GROUP BY status"

        try:
            async with self._use(None) as c:
                rows = await c.fetch(query, *args)
        except Exception as e:
            raise StorageError(f"Status count failed: {e}") from e

        counts = {status: 0 for status in TaskStatus}
        for row in rows:
            counts[TaskStatus(row["status"])] = row["count"]
        return counts

    async def list_by_status(
        self,
        status: TaskStatus,
        limit: int = 100,
        offset: int = 0
    ) -> List[OutboxRecord]:
        """Records in a given status, oldest first."""
        try:
            async with self._use(None) as c:
                rows = await c.fetch(
                    f"""
                    SELECT {_COLUMNS} FROM {TABLE_NAME}
                    WHERE status = $1
                    ORDER BY id ASC
                    LIMIT $2 OFFSET $3
                    """,
                    int(status),
                    limit,
                    offset
                )
        except Exception as e:
            raise StorageError(f"Listing {status.name} records failed: {e}") from e
        return [OutboxRecord.from_row(row) for row in rows]
