"""
Outbox Models

Records, commands and transport configs for the local message table.
"""

import json
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class TaskStatus(IntEnum):
    """Status of an outbox record, stored as an int column."""
    PENDING = 0
    IN_PROGRESS = 1  # Reserved, never assigned
    SUCCESS = 2
    FAILED = 3


# Statuses the reconciliation scan picks up
RETRYABLE_STATUSES: FrozenSet[TaskStatus] = frozenset({TaskStatus.PENDING, TaskStatus.FAILED})

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.SUCCESS: frozenset({TaskStatus.PENDING, TaskStatus.FAILED, TaskStatus.SUCCESS}),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING, TaskStatus.FAILED}),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Check whether a record in `current` may be moved to `target`."""
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


class TransportType(str, Enum):
    """Built-in notify transports."""
    HTTP = "http"
    RABBIT_MQ = "rabbit_mq"
    KAFKA = "kafka"


class HttpConfig(BaseModel):
    """HTTP callback target."""

    url: str
    method: str = "POST"
    content_type: str = "application/json"
    authorization: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = 10.0

    @field_validator("url")
    @classmethod
    def _url_has_scheme(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()


class RabbitMQConfig(BaseModel):
    """RabbitMQ publish target. Empty exchange means the default exchange."""

    model_config = ConfigDict(populate_by_name=True)

    exchange: str = ""
    routing_key: str = Field(min_length=1, alias="topic")
    persistent: bool = True
    headers: Dict[str, str] = Field(default_factory=dict)


class KafkaConfig(BaseModel):
    """Kafka publish target."""

    topic: str = Field(min_length=1)
    partition_key: Optional[str] = None
    partition: Optional[int] = None
    headers: Dict[str, str] = Field(default_factory=dict)


TRANSPORT_CONFIG_MODELS: Dict[str, Type[BaseModel]] = {
    TransportType.HTTP.value: HttpConfig,
    TransportType.RABBIT_MQ.value: RabbitMQConfig,
    TransportType.KAFKA.value: KafkaConfig,
}


def parse_transport_config(transport_type: str, config: Dict[str, Any]) -> BaseModel:
    """
    Parse a raw config dict into the model for a built-in transport.

    Raises:
        ValidationError: unknown built-in type or invalid config
    """
    model = TRANSPORT_CONFIG_MODELS.get(transport_type)
    if model is None:
        raise ValidationError(
            f"No config model for transport '{transport_type}'",
            field="transport_type"
        )
    try:
        return model.model_validate(config)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {transport_type} config: {e.errors()[0]['msg']}",
            field="transport_config"
        ) from e


class NotifyCommand(BaseModel):
    """
    A request to notify a downstream system about a business change.

    Built by the caller and handed to OutboxWriter.accept() inside the
    caller's transaction.
    """

    task_id: str
    task_name: str = ""
    transport_type: str
    transport_config: Optional[Dict[str, Any]] = None
    payload: str = ""

    @field_validator("transport_type", mode="before")
    @classmethod
    def _coerce_transport_type(cls, v: Any) -> Any:
        if isinstance(v, TransportType):
            return v.value
        return v

    @field_validator("transport_config", mode="before")
    @classmethod
    def _coerce_config(cls, v: Any) -> Any:
        if isinstance(v, BaseModel):
            return v.model_dump(exclude_none=True)
        return v

    @field_validator("payload", mode="before")
    @classmethod
    def _coerce_payload(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (dict, list)):
            return json.dumps(v, ensure_ascii=False)
        return v


class OutboxRecord(BaseModel):
    """A row in the local_task_message table."""

    id: Optional[int] = None
    task_id: str
    task_name: str = ""
    shard: int
    transport_type: str
    transport_config: str = "{}"
    status: TaskStatus = TaskStatus.PENDING
    payload: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status == TaskStatus.SUCCESS

    def config_dict(self) -> Dict[str, Any]:
        """Decode the stored transport config."""
        if not self.transport_config:
            return {}
        return json.loads(self.transport_config)

    def config_as(self, model: Type[BaseModel]) -> BaseModel:
        """Decode the stored transport config into a typed model."""
        return model.model_validate(self.config_dict())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OutboxRecord":
        """Build a record from a local_task_message row."""
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            task_name=row.get("task_name") or "",
            shard=row["house_number"],
            transport_type=row["notify_type"],
            transport_config=row.get("notify_config") or "{}",
            status=TaskStatus(row["status"]),
            payload=row.get("parameter_json") or "",
            created_at=row["create_time"],
            updated_at=row["update_time"],
        )

    def __repr__(self) -> str:
        return (
            f"OutboxRecord(id={self.id}, task_id={self.task_id!r}, "
            f"transport={self.transport_type}, status={self.status.name})"
        )
