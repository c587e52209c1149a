"""
Immediate Dispatch

Best-effort delivery attempted right after the writer's transaction
commits. Failures stay local: the record remains PENDING or FAILED and the
reconciliation scheduler picks it up on a later scan.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Set

from ..errors import OutboxError
from .models import OutboxRecord

if TYPE_CHECKING:
    from ..notify.registry import NotifyStrategyRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


class ImmediateDispatcher:
    """
    Fire-and-forget dispatcher fed by the writer's after-commit hook.

    Every submitted record runs on its own asyncio task; a semaphore bounds
    how many notify calls are in flight at once.

    Usage:
        dispatcher = ImmediateDispatcher(registry)
        writer = OutboxWriter(store, dispatcher=dispatcher)
        ...
        await dispatcher.close()
    """

    def __init__(
        self,
        registry: "NotifyStrategyRegistry",
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._registry = registry
        self._max_concurrency = max_concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of in-flight dispatch tasks."""
        return len(self._tasks)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def submit(self, record: OutboxRecord) -> Optional[asyncio.Task]:
        """
        Schedule a dispatch for `record`. Never raises.

        Returns:
            The scheduled task, or None when the record was dropped
        """
        if self._closed:
            logger.debug("Dispatcher closed, leaving task_id=%s to the scheduler", record.task_id)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, leaving task_id=%s to the scheduler", record.task_id
            )
            return None

        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)

        task = loop.create_task(self._run(record), name=f"outbox-dispatch-{record.task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, record: OutboxRecord) -> None:
        async with self._semaphore:
            try:
                result = await self._registry.dispatch(record, path="immediate")
                logger.debug("Immediate dispatch task_id=%s result=%s", record.task_id, result)
            except OutboxError as e:
                logger.warning(
                    "Immediate dispatch failed task_id=%s id=%s: %s",
                    record.task_id, record.id, e.message
                )
            except Exception:
                logger.exception(
                    "Unexpected error in immediate dispatch task_id=%s id=%s",
                    record.task_id, record.id
                )

    async def drain(self) -> None:
        """Wait for every in-flight dispatch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting records and wait for the in-flight ones."""
        self._closed = True
        await self.drain()
        logger.info("ImmediateDispatcher closed")
