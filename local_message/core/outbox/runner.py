"""
Outbox Scheduler Runner

Standalone process that runs the reconciliation scheduler as a background
service, for deployments where scanning lives in its own container.

Usage:
    python -m local_message.core.outbox.runner
    python -m local_message.core.outbox.runner --once

Environment Variables:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: outbox database
    LOCAL_MESSAGE_GROUPS or LOCAL_MESSAGE_GROUPS_FILE: scan groups
    LOCAL_MESSAGE_WORKER_POOL_SIZE: concurrent scan ticks (default: 2)
    RABBITMQ_URL / KAFKA_BOOTSTRAP_SERVERS: broker transports
    LOG_LEVEL: Logging level (default: INFO)
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from ..config import OutboxConfig
from .lifecycle import OutboxEngine, setup_observability

logger = logging.getLogger(__name__)


class OutboxRunner:
    """
    Manages the outbox engine lifecycle with graceful shutdown.
    """

    def __init__(self, config: Optional[OutboxConfig] = None):
        self.config = config or OutboxConfig()
        self.engine: Optional[OutboxEngine] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self):
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self, once: bool = False):
        """Run the scheduler until shutdown is requested (or one pass with once=True)."""
        logger.info("Starting Outbox Scheduler Runner")
        logger.info(f"  Shard count: {self.config.SHARD_COUNT}")
        logger.info(f"  Worker pool size: {self.config.WORKER_POOL_SIZE}")
        for group in self.config.groups:
            schedule = group.cron or f"every {group.fixed_delay_ms}ms"
            logger.info(f"  Group {group.group_id}: shards={group.shards} {schedule} limit={group.limit}")

        self.engine = OutboxEngine(self.config, run_scheduler=True)

        try:
            await self.engine.start()

            if once:
                results = await self.engine.scheduler.run_once()
                for group_id, result in results.items():
                    logger.info(f"Group {group_id}: {result}")
                return

            self._setup_signal_handlers()
            logger.info("Outbox Scheduler is running")
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Outbox Scheduler error: {e}", exc_info=True)
            raise
        finally:
            logger.info("Stopping Outbox Scheduler")
            await self.engine.stop()
            logger.info("Outbox Scheduler stopped")

    async def health_check(self) -> dict:
        """Return health status for monitoring."""
        running = bool(
            self.engine and self.engine.scheduler and self.engine.scheduler.is_running
        )
        return {
            "status": "healthy" if running else "unhealthy",
            "running": running,
            "shutdown_requested": self._shutdown_requested
        }


async def main(once: bool = False) -> int:
    config = OutboxConfig()
    setup_observability(config)

    issues = config.validate()
    errors = [issue for issue in issues if issue.startswith("ERROR")]
    for issue in issues:
        logger.warning(issue)
    if errors:
        logger.error("Refusing to start with invalid configuration")
        return 1

    runner = OutboxRunner(config)
    await runner.run(once=once)
    return 0


def cli() -> None:
    parser = argparse.ArgumentParser(description="Run the local message reconciliation scheduler")
    parser.add_argument("--once", action="store_true", help="scan every group once and exit")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(once=args.once)))


if __name__ == "__main__":
    cli()
