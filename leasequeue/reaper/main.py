"""
Orphan reaper.

Runs periodically to requeue claims whose worker crashed or stalled
before acknowledging. Under the explicit-flag admission policy such
claims keep counting against max_jobs_in_process until recovered, so
the reaper is what keeps the queue from wedging.
"""

import asyncio
import logging
import os
import signal
import socket

from prometheus_client import start_http_server

from leasequeue.config import get_settings
from leasequeue.constants import AdmissionPolicy
from leasequeue.db import SqlJobStore, close_db, init_db
from leasequeue.observability.logging import bind_context, setup_logging
from leasequeue.observability.tracing import setup_tracing
from leasequeue.queue import JobQueue, QueueOptions

logger = logging.getLogger(__name__)


class Reaper:
    """
    Supervisor that recovers orphaned claims.

    Each pass:
    1. Recovers in-process jobs whose lease has expired (explicit-flag
       admission only; under the lease window an expired lease is
       already claimable)
    2. Optionally deletes finished jobs via clean()
    """

    def __init__(
        self,
        queue: JobQueue,
        interval_seconds: int | None = None,
        clean_done_jobs: bool | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            queue: The queue to supervise.
            interval_seconds: Seconds between passes.
            clean_done_jobs: Also run clean() on every pass.
        """
        settings = get_settings()
        self.queue = queue
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.clean_done_jobs = (
            settings.reaper_clean_done_jobs if clean_done_jobs is None else clean_done_jobs
        )
        self._running = False

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Run one pass (for testing or cron-style execution).

        Returns:
            Number of jobs recovered.
        """
        recovered = []
        if self.queue.options.admission_policy == AdmissionPolicy.EXPLICIT_FLAG:
            recovered = await self.queue.recover_orphans(expired_only=True)

        if self.clean_done_jobs:
            await self.queue.clean()

        return len(recovered)


async def run_async() -> None:
    """Run the reaper against the configured database."""
    settings = get_settings()
    setup_logging()
    setup_tracing()
    start_http_server(settings.prometheus_port)
    session_factory = await init_db()

    queue = JobQueue(
        SqlJobStore(session_factory, settings.queue_collection),
        worker_id=settings.worker_id or f"reaper-{socket.gethostname()}-{os.getpid()}",
        options=QueueOptions.from_settings(settings),
    )
    reaper = Reaper(queue)
    bind_context(worker_id=queue.worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
