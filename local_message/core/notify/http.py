"""
HTTP Notify Strategy

Delivers the record payload as the body of an HTTP request built from the
record's HttpConfig. Any non-2xx response is a delivery failure.
"""

import logging
from typing import Dict, Optional

import httpx

from ..observability.tracing import inject_trace_context
from ..outbox.models import HttpConfig, OutboxRecord, TransportType
from ..outbox.store import MessageStore
from .base import NotifyStrategy

logger = logging.getLogger(__name__)


class HttpNotifyStrategy(NotifyStrategy):
    """Notify over HTTP with a shared httpx.AsyncClient."""

    transport_type = TransportType.HTTP.value

    def __init__(
        self,
        store: MessageStore,
        client: Optional[httpx.AsyncClient] = None,
        owns_client: bool = False
    ):
        super().__init__(store)
        self._client = client
        self._owns_client = owns_client

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def build_headers(self, config: HttpConfig) -> Dict[str, str]:
        headers = dict(config.headers)
        headers.setdefault("Content-Type", config.content_type)
        if config.authorization:
            headers["Authorization"] = config.authorization
        return inject_trace_context(headers)

    async def send(self, record: OutboxRecord) -> str:
        config: HttpConfig = record.config_as(HttpConfig)
        response = await self._client.request(
            config.method,
            config.url,
            content=record.payload.encode("utf-8"),
            headers=self.build_headers(config),
            timeout=config.timeout_seconds
        )
        response.raise_for_status()
        logger.debug(
            "HTTP notify %s %s -> %s task_id=%s",
            config.method, config.url, response.status_code, record.task_id
        )
        return response.text

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
