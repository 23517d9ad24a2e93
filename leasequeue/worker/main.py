"""
Worker process for executing jobs.

The worker claims jobs from the queue, hands each one to a handler
coroutine and reports the outcome. Handlers must be idempotent: delivery
is at-least-once, so a job may run again if a worker crashes after side
effects but before acknowledging.
"""

import asyncio
import logging
import os
import signal
import socket
import time
from collections.abc import Awaitable, Callable

from prometheus_client import start_http_server

from leasequeue.config import get_settings
from leasequeue.constants import SPAN_HANDLE_JOB
from leasequeue.db import SqlJobStore, close_db, init_db
from leasequeue.exceptions import ConcurrencyLimitError
from leasequeue.observability.logging import bind_context, setup_logging
from leasequeue.observability.tracing import get_tracer, setup_tracing
from leasequeue.queue import JobQueue, QueueOptions
from leasequeue.types.job import JobView

logger = logging.getLogger(__name__)

# A handler succeeds by returning and fails by raising
JobHandler = Callable[[JobView], Awaitable[None]]


class Worker:
    """
    Job worker that polls the queue and executes jobs one at a time.

    - Empty queue or admission refusal: sleep for the poll interval
    - Handler returns: ack
    - Handler raises: error, with the exception text as message
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        poll_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue: The queue to claim jobs from.
            handler: Coroutine processing one claimed job.
            poll_interval: Seconds between polls when nothing was claimed.
        """
        settings = get_settings()

        self.queue = queue
        self.handler = handler
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds

        self._running = False

    async def start(self) -> None:
        """Start the worker loop."""
        logger.info("Worker starting", extra={"worker_id": self.queue.worker_id})

        self._running = True

        while self._running:
            try:
                processed = await self.run_once()

                if not processed:
                    await asyncio.sleep(self.poll_interval)

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.queue.worker_id},
                )
                await asyncio.sleep(self.poll_interval)

        logger.info("Worker stopped", extra={"worker_id": self.queue.worker_id})

    async def stop(self) -> None:
        """Stop the worker after the current job."""
        logger.info("Worker stopping", extra={"worker_id": self.queue.worker_id})
        self._running = False

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns:
            True if a job was processed.
        """
        try:
            job = await self.queue.get()
        except ConcurrencyLimitError as e:
            logger.debug(str(e))
            return False

        if job is None:
            return False

        await self._execute_job(job)
        return True

    async def _execute_job(self, job: JobView) -> None:
        start_time = time.time()

        try:
            with get_tracer().start_as_current_span(SPAN_HANDLE_JOB) as span:
                span.set_attribute("job_id", str(job.id))
                span.set_attribute("payload_kind", job.payload_ref.kind)

                await self.handler(job)

        except Exception as e:
            logger.warning(
                "Job handler raised",
                extra={"job_id": str(job.id), "error": str(e)},
            )
            await self.queue.error(job.id, str(e) or type(e).__name__)
            return

        await self.queue.ack(job.id)

        logger.info(
            "Job completed successfully",
            extra={
                "job_id": str(job.id),
                "duration": f"{time.time() - start_time:.2f}s",
            },
        )


async def run_async(handler: JobHandler) -> None:
    """Run a worker against the configured database."""
    settings = get_settings()
    setup_logging()
    setup_tracing()
    start_http_server(settings.prometheus_port)
    session_factory = await init_db()

    queue = JobQueue(
        SqlJobStore(session_factory, settings.queue_collection),
        worker_id=settings.worker_id or f"{socket.gethostname()}-{os.getpid()}",
        options=QueueOptions.from_settings(settings),
    )
    worker = Worker(queue, handler)
    bind_context(worker_id=queue.worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run(handler: JobHandler) -> None:
    """Run a worker with the given handler."""
    asyncio.run(run_async(handler))
