"""
Reconciliation Scheduler

Periodically rescans each configured group of shards for PENDING/FAILED
records and dispatches them again. This is the backstop behind the
immediate dispatch path: anything that was not delivered right after
commit is eventually picked up here.

Each group keeps a process-local cursor (the last id it has seen) and only
ever moves it forward. Groups run on APScheduler's AsyncIOScheduler, one job
per group, and a shared semaphore bounds how many ticks run at once.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScanGroupConfig
from ..errors import OutboxError
from ..notify.base import SKIPPED
from ..observability.metrics import record_counter
from .store import MessageStore

if TYPE_CHECKING:
    from ..notify.registry import NotifyStrategyRegistry

logger = logging.getLogger(__name__)

DEFAULT_WORKER_POOL_SIZE = 2


def build_trigger(group: ScanGroupConfig, timezone: str = "UTC") -> BaseTrigger:
    """
    Build the APScheduler trigger for a scan group.

    Cron expressions may be standard 5-field crontab ("*/5 * * * *") or
    6-field with a leading seconds field ("*/5 * * * * ?"); "?" is read as
    "*". Without a cron expression the group runs every fixed_delay_ms.

    The interval is a fixed rate measured from tick start, not a delay after
    the previous tick ends. A tick that overruns its interval makes the next
    run be skipped (max_instances=1, coalesce=True) rather than pushed back.

    Raises:
        ValueError: malformed cron expression
    """
    if group.cron:
        fields = group.cron.replace("?", "*").split()
        if len(fields) == 5:
            return CronTrigger.from_crontab(" ".join(fields), timezone=timezone)
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
                timezone=timezone
            )
        raise ValueError(
            f"Cron expression for group '{group.group_id}' must have 5 or 6 fields: {group.cron!r}"
        )

    return IntervalTrigger(seconds=group.fixed_delay_ms / 1000.0, timezone=timezone)


class GroupCursor:
    """Highest record id a scan group has processed. Never moves backwards."""

    def __init__(self, last_seen_id: int = 0):
        self._last_seen_id = last_seen_id

    @property
    def last_seen_id(self) -> int:
        return self._last_seen_id

    def advance(self, new_id: int) -> int:
        self._last_seen_id = max(self._last_seen_id, new_id)
        return self._last_seen_id

    def __repr__(self) -> str:
        return f"GroupCursor(last_seen_id={self._last_seen_id})"


@dataclass
class TickResult:
    """Outcome of one scan tick."""

    scanned: int
    succeeded: int
    failed: int
    cursor_before: int
    cursor_after: int
    skipped: int = 0


class GroupScanner:
    """
    Scan-and-dispatch loop body for one group.

    Usage:
        scanner = GroupScanner(group, store, registry)
        await scanner.seed()
        result = await scanner.tick()
    """

    def __init__(
        self,
        group: ScanGroupConfig,
        store: MessageStore,
        registry: "NotifyStrategyRegistry",
        cursor: Optional[GroupCursor] = None
    ):
        self.group = group
        self._store = store
        self._registry = registry
        self.cursor = cursor or GroupCursor()

    @property
    def group_id(self) -> str:
        return self.group.group_id

    async def seed(self) -> int:
        """Start the cursor at the oldest record still waiting in this group's shards."""
        min_id = await self._store.min_pending_id(self.group.shards)
        self.cursor = GroupCursor(min_id or 0)
        logger.info(
            "Scan group '%s' seeded cursor=%s shards=%s",
            self.group_id, self.cursor.last_seen_id, self.group.shards
        )
        return self.cursor.last_seen_id

    async def tick(self) -> TickResult:
        """
        Scan one batch and dispatch it in ascending id order.

        Per-record failures are logged and do not stop the batch. A scan
        failure leaves the cursor where it was.
        """
        before = self.cursor.last_seen_id

        try:
            records = await self._store.scan(self.group.shards, before, self.group.limit)
        except Exception as e:
            logger.error(
                "Scan failed for group '%s' cursor=%s: %s", self.group_id, before, e
            )
            return TickResult(0, 0, 0, before, before)

        if not records:
            return TickResult(0, 0, 0, before, before)

        record_counter("outbox_scan_batches_total", 1, {"group": self.group_id})
        logger.info(
            "Scan group '%s' picked up %d records from id %s",
            self.group_id, len(records), before
        )

        succeeded = failed = skipped = 0
        for record in records:
            try:
                result = await self._registry.dispatch(record, path="scan")
            except OutboxError as e:
                failed += 1
                logger.warning(
                    "Scan dispatch failed group='%s' id=%s task_id=%s: %s",
                    self.group_id, record.id, record.task_id, e.message
                )
                continue
            except Exception:
                failed += 1
                logger.exception(
                    "Unexpected error dispatching id=%s task_id=%s in group '%s'",
                    record.id, record.task_id, self.group_id
                )
                continue

            if result == SKIPPED:
                skipped += 1
            else:
                succeeded += 1

        after = self.cursor.advance(max(record.id for record in records))
        return TickResult(
            scanned=len(records),
            succeeded=succeeded,
            failed=failed,
            cursor_before=before,
            cursor_after=after,
            skipped=skipped
        )


class ReconciliationScheduler:
    """
    Runs every scan group on its own schedule.

    Ticks of one group never overlap (max_instances=1, coalesce=True);
    ticks of different groups share `worker_pool_size` slots.

    Usage:
        scheduler = ReconciliationScheduler(store, registry, config.groups)
        await scheduler.start()
        ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        store: MessageStore,
        registry: "NotifyStrategyRegistry",
        groups: List[ScanGroupConfig],
        worker_pool_size: int = DEFAULT_WORKER_POOL_SIZE,
        timezone: str = "UTC"
    ):
        if worker_pool_size < 1:
            raise ValueError("worker_pool_size must be >= 1")
        self._store = store
        self._registry = registry
        self._worker_pool_size = worker_pool_size
        self._timezone = timezone
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._running_ticks: Set[asyncio.Task] = set()

        self.scanners: Dict[str, GroupScanner] = {}
        for group in groups:
            if not group.shards:
                logger.warning("Scan group '%s' has no shards, skipping", group.group_id)
                continue
            if group.group_id in self.scanners:
                raise ValueError(f"Duplicate scan group id: {group.group_id}")
            self.scanners[group.group_id] = GroupScanner(group, store, registry)

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def start(self) -> None:
        """Seed every group's cursor and schedule its job."""
        if self.is_running:
            return

        self._semaphore = asyncio.Semaphore(self._worker_pool_size)
        for scanner in self.scanners.values():
            await scanner.seed()

        self._scheduler = AsyncIOScheduler(
            timezone=self._timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
        for group_id, scanner in self.scanners.items():
            trigger = build_trigger(scanner.group, timezone=self._timezone)
            self._scheduler.add_job(
                self.run_group,
                trigger=trigger,
                args=[group_id],
                id=f"outbox-scan:{group_id}",
                name=f"Outbox scan group {group_id}",
                replace_existing=True,
            )
            logger.info("Scheduled scan group '%s' with %s", group_id, trigger)

        self._scheduler.start()
        logger.info(
            "ReconciliationScheduler started: %d groups, worker_pool_size=%d",
            len(self.scanners), self._worker_pool_size
        )

    async def run_group(self, group_id: str) -> TickResult:
        """Run one tick for a group inside the shared worker pool."""
        scanner = self.scanners[group_id]
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._worker_pool_size)

        task = asyncio.current_task()
        if task is not None:
            self._running_ticks.add(task)
        try:
            async with self._semaphore:
                return await scanner.tick()
        finally:
            if task is not None:
                self._running_ticks.discard(task)

    async def run_once(self) -> Dict[str, TickResult]:
        """Tick every group once, now. Used by the runner's --once mode."""
        results = await asyncio.gather(*(self.run_group(g) for g in self.scanners))
        return dict(zip(self.scanners, results))

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop scheduling new ticks and wait for running ones."""
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

        running = [t for t in self._running_ticks if t is not asyncio.current_task()]
        if running:
            done, pending = await asyncio.wait(running, timeout=timeout)
            if pending:
                logger.warning("%d scan ticks still running after %.0fs", len(pending), timeout)
        logger.info("ReconciliationScheduler stopped")
