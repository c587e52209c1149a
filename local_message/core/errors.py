"""
Outbox Error Taxonomy

Error codes and exceptions raised by the outbox engine.

- Write path errors (ValidationError, PersistenceError) propagate to the
  caller so the enclosing business transaction aborts.
- Notify path errors (TransportError, UnknownTransportError) never escape
  the dispatch boundary; they are logged and the record is retried by rescan.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Outbox error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    UNKNOWN_TRANSPORT = "UNKNOWN_TRANSPORT"


class OutboxError(Exception):
    """
    Base exception for outbox errors.

    All engine exceptions inherit from this class and carry an ErrorCode
    so callers can branch on the category without matching on type.
    """

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class ValidationError(OutboxError):
    """Malformed notify command, rejected before anything is persisted."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message)
        self.field = field


class StorageError(OutboxError):
    """
    Store-level failure (connectivity, constraint, malformed SQL).

    Raised by MessageStore with the driver exception chained as __cause__.
    """

    def __init__(self, message: str = "A storage error occurred"):
        super().__init__(code=ErrorCode.STORAGE_ERROR, message=message)


class PersistenceError(OutboxError):
    """
    The outbox record could not be persisted.

    Raised on the write path so the surrounding transaction rolls back.
    """

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(code=ErrorCode.PERSISTENCE_ERROR, message=message)
        self.task_id = task_id


class TransportError(OutboxError):
    """Downstream notification failed (network, broker, non-2xx, timeout)."""

    def __init__(
        self,
        transport_type: str,
        task_id: str,
        message: Optional[str] = None
    ):
        msg = message or f"Notify via '{transport_type}' failed for task {task_id}"
        super().__init__(code=ErrorCode.TRANSPORT_ERROR, message=msg)
        self.transport_type = transport_type
        self.task_id = task_id


class UnknownTransportError(OutboxError):
    """No notify strategy is registered for the record's transport type."""

    def __init__(self, transport_type: str):
        super().__init__(
            code=ErrorCode.UNKNOWN_TRANSPORT,
            message=f"No notify strategy registered for transport '{transport_type}'"
        )
        self.transport_type = transport_type
