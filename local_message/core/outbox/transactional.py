"""
Transactional Outbox

Combines business operations with outbox writes in a single transaction
to guarantee atomicity: either both succeed or both fail.
"""

from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, TypeVar

from ..database.adapter import Connection
from .models import NotifyCommand, OutboxRecord
from .writer import OutboxWriter

T = TypeVar("T")


class TransactionalOutbox:
    """
    Runs business statements and outbox writes in one unit of work.

    Usage:
        async with TransactionalOutbox(writer) as txn:
            # Your business logic
            await txn.conn.execute("INSERT INTO orders ...")

            # Record the notification (same transaction)
            await txn.accept(command)
        # Both commit together or both roll back
    """

    def __init__(self, writer: OutboxWriter, conn: Optional[Connection] = None):
        self._writer = writer
        self._outer = conn
        self._tx_cm = None
        self.conn: Optional[Connection] = None
        self._records: List[OutboxRecord] = []

    async def __aenter__(self) -> "TransactionalOutbox":
        self._tx_cm = self._writer.store.db.transaction(self._outer)
        self.conn = await self._tx_cm.__aenter__()
        self._records = []
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            return await self._tx_cm.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            if exc_type is not None:
                # Rolled back, nothing was persisted
                self._records = []
            self.conn = None
            self._tx_cm = None

    async def accept(self, command: NotifyCommand) -> OutboxRecord:
        """
        Write a notify command to the outbox in the current transaction.

        Raises:
            ValidationError: malformed command
            PersistenceError: the insert failed
        """
        if self.conn is None:
            raise RuntimeError("TransactionalOutbox used outside its context")
        record = await self._writer.accept(command, conn=self.conn)
        self._records.append(record)
        return record

    @property
    def accepted_records(self) -> List[OutboxRecord]:
        """Records written in this unit of work."""
        return self._records.copy()


async def run_in_transaction(
    writer: OutboxWriter,
    business: Callable[[Connection], Awaitable[T]],
    command: NotifyCommand,
    conn: Optional[Connection] = None
) -> T:
    """
    Run `business` and persist `command` atomically.

    Joins the transaction on `conn` if there is one, else starts a new one.
    The business closure runs first; the outbox write follows on the same
    connection. Any exception from either step rolls both back.

    Usage:
        async def mark_paid(conn):
            await conn.execute("UPDATE orders SET paid = TRUE WHERE id = $1", order_id)
            return order_id

        order_id = await run_in_transaction(writer, mark_paid, command)

    Returns:
        Whatever `business` returned
    """
    async with writer.store.db.transaction(conn) as tx:
        result = await business(tx)
        await writer.accept(command, conn=tx)
    return result


@asynccontextmanager
async def transactional_outbox(writer: OutboxWriter, conn: Optional[Connection] = None):
    """
    Context manager form of TransactionalOutbox.

    Usage:
        async with transactional_outbox(writer) as txn:
            await txn.conn.execute("INSERT INTO orders ...")
            await txn.accept(command)
    """
    outbox = TransactionalOutbox(writer, conn)
    async with outbox:
        yield outbox
