"""
Job queue with lease-based claims.

Implements the job lifecycle on top of a JobStore:
- add: insert a pending job
- get: admission check, then one atomic claim of the oldest claimable job
- ack / error: mark a job terminal
- clean / reset: garbage collection
- recover_orphans: requeue claims whose worker never acknowledged

The queue holds no lock of its own. Every state transition is a single
conditional update on the store, which is enough to guarantee that two
workers never hold the same unexpired lease. The admission check is a
separate count, so max_jobs_in_process is a soft ceiling under
concurrency.
"""

import logging
import socket
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from leasequeue.config import Settings, get_settings
from leasequeue.constants import (
    DEFAULT_ADMISSION_POLICY,
    DEFAULT_BLOCK_DURATION_MS,
    DEFAULT_EXHAUSTED_JOBS_POLICY,
    DEFAULT_MAX_JOBS_IN_PROCESS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_QUEUE_COLLECTION,
    EPOCH,
    SPAN_ACK_JOB,
    SPAN_ADD_JOB,
    SPAN_CLAIM_JOB,
    SPAN_ERROR_JOB,
    SPAN_RECOVER_ORPHANS,
    AdmissionPolicy,
    ExhaustedJobsPolicy,
    SortOrder,
)
from leasequeue.db.base import JobFilter, JobStore, JobUpdate
from leasequeue.exceptions import (
    ConcurrencyLimitError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from leasequeue.observability.metrics import MetricsCollector, get_metrics
from leasequeue.observability.tracing import get_tracer
from leasequeue.types.job import JobRecord, JobView, PayloadRef

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the format stored in job records."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class QueueOptions(BaseModel):
    """Per-queue options. Every field has a default."""

    payload_ref_type: str | None = Field(
        default=None, description="Only accept payload references of this kind"
    )
    queue_collection: str = Field(default=DEFAULT_QUEUE_COLLECTION, min_length=1)
    block_duration_ms: int = Field(
        default=DEFAULT_BLOCK_DURATION_MS, ge=1, description="Lease length per claim"
    )
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    max_jobs_in_process: int = Field(default=DEFAULT_MAX_JOBS_IN_PROCESS, ge=1)
    admission_policy: AdmissionPolicy = DEFAULT_ADMISSION_POLICY
    exhausted_jobs_policy: ExhaustedJobsPolicy = DEFAULT_EXHAUSTED_JOBS_POLICY

    @property
    def block_duration(self) -> timedelta:
        """Lease length as a timedelta."""
        return timedelta(milliseconds=self.block_duration_ms)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "QueueOptions":
        """Build options from the ``queue_*`` settings."""
        settings = settings or get_settings()
        return cls(
            payload_ref_type=settings.queue_payload_ref_type,
            queue_collection=settings.queue_collection,
            block_duration_ms=settings.queue_block_duration_ms,
            max_retries=settings.queue_max_retries,
            max_jobs_in_process=settings.queue_max_jobs_in_process,
            admission_policy=settings.queue_admission_policy,
            exhausted_jobs_policy=settings.queue_exhausted_jobs_policy,
        )


def _parse_job_id(job_id: UUID | str) -> UUID:
    if isinstance(job_id, UUID):
        return job_id
    try:
        return UUID(str(job_id))
    except ValueError:
        raise NotFoundError(job_id) from None


class JobQueue:
    """
    Persistent at-least-once job queue.

    A worker identity (worker_id plus hostname) is fixed per instance and
    stamped on every claim it makes.
    """

    def __init__(
        self,
        store: JobStore,
        worker_id: str = "",
        options: QueueOptions | None = None,
        *,
        worker_hostname: str | None = None,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            store: The job collection.
            worker_id: Identity recorded on claims made through this instance.
            options: Queue options; defaults apply when omitted.
            worker_hostname: Defaults to the local hostname.
            clock: Source of the current naive UTC time.
            metrics: Metrics collector; the process-wide one by default.
        """
        self._store = store
        self.options = options or QueueOptions()
        self.worker_id = worker_id
        self.worker_hostname = worker_hostname or socket.gethostname()
        self._clock = clock
        self._metrics = metrics or get_metrics()
        self._tracer = get_tracer()

    @property
    def collection(self) -> str:
        return self.options.queue_collection

    def _claimable_filter(self, now: datetime) -> JobFilter:
        return JobFilter(
            done=False,
            max_retries=self.options.max_retries,
            blocked_before=now,
            in_process=(
                False
                if self.options.admission_policy == AdmissionPolicy.EXPLICIT_FLAG
                else None
            ),
        )

    def _in_process_filter(self, now: datetime) -> JobFilter:
        if self.options.admission_policy == AdmissionPolicy.EXPLICIT_FLAG:
            return JobFilter(done=False, in_process=True)
        return JobFilter(done=False, blocked_after=now)

    def _lease_update(self, now: datetime, in_process: bool) -> JobUpdate:
        return JobUpdate(
            values={
                "blocked_until": now + self.options.block_duration,
                "worker_id": self.worker_id,
                "worker_hostname": self.worker_hostname,
                "in_process": in_process,
            },
            increment_retries=1,
        )

    async def add(self, payload_ref: PayloadRef | None) -> UUID:
        """
        Add a job referencing a payload.

        Args:
            payload_ref: Reference to the externally owned payload.

        Returns:
            The id of the new job.

        Raises:
            ValidationError: If the reference is missing or of the wrong kind.
        """
        if not isinstance(payload_ref, PayloadRef) or not payload_ref.id or not payload_ref.kind:
            raise ValidationError("Payload missing.")

        expected = self.options.payload_ref_type
        if expected is not None and payload_ref.kind != expected:
            raise ValidationError(
                f"Payload kind {payload_ref.kind!r} does not match queue payload type {expected!r}."
            )

        with self._tracer.start_as_current_span(SPAN_ADD_JOB) as span:
            span.set_attribute("collection", self.collection)

            record = JobRecord(
                payload_ref=payload_ref,
                created_at=self._clock(),
                blocked_until=EPOCH,
            )
            job_id = await self._store.insert(record)

            span.set_attribute("job_id", str(job_id))

        self._metrics.record_enqueued(self.collection)
        logger.info(
            "Added job",
            extra={
                "job_id": str(job_id),
                "payload_id": payload_ref.id,
                "payload_kind": payload_ref.kind,
            },
        )
        return job_id

    async def get(self) -> JobView | None:
        """
        Claim the oldest claimable job.

        Returns:
            The claimed job, or None if nothing is claimable.

        Raises:
            ConcurrencyLimitError: If max_jobs_in_process jobs are already
                in process. Nothing is claimed in that case.
        """
        with self._tracer.start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("collection", self.collection)
            span.set_attribute("worker_id", self.worker_id)

            now = self._clock()
            limit = self.options.max_jobs_in_process

            in_process = await self._store.count_matching(self._in_process_filter(now))
            if in_process >= limit:
                self._metrics.record_admission_rejected(self.collection)
                logger.debug(
                    "Claim refused by admission check",
                    extra={"in_process": in_process, "limit": limit},
                )
                raise ConcurrencyLimitError(in_process, limit)

            record = await self._store.find_one_and_update(
                self._claimable_filter(now),
                self._lease_update(now, in_process=True),
                sort=SortOrder.CREATED_AT_ASC,
            )
            if record is None:
                return None

            span.set_attribute("job_id", str(record.id))
            span.set_attribute("retries", record.retries)

        self._metrics.record_claimed(self.collection, self.worker_id)
        logger.info(
            "Claimed job",
            extra={
                "job_id": str(record.id),
                "retries": record.retries,
                "worker_id": self.worker_id,
                "blocked_until": record.blocked_until.isoformat(),
            },
        )
        return JobView.from_record(record)

    async def _finish(self, job_id: UUID | str, values: dict[str, Any]) -> JobRecord:
        """
        Mark a job terminal.

        Only a job that is not yet done is written. A job that already is
        done is returned unchanged, so repeated ack/error calls succeed
        without touching the terminal record. A job that is neither
        written nor done raises StoreError.
        """
        parsed = _parse_job_id(job_id)

        record = await self._store.find_one_and_update(
            JobFilter(job_id=parsed, done=False),
            JobUpdate(values={"done": True, "in_process": False, **values}),
        )
        if record is not None:
            return record

        existing = await self._store.find(JobFilter(job_id=parsed))
        if not existing:
            logger.warning("Job not found", extra={"job_id": str(job_id)})
            raise NotFoundError(job_id)

        if not existing[0].done:
            raise StoreError(f"Job {parsed} could not be marked done")

        logger.debug("Job already done", extra={"job_id": str(parsed)})
        return existing[0]

    async def ack(self, job_id: UUID | str) -> JobView:
        """
        Mark a job as done.

        Args:
            job_id: Id of the job.

        Returns:
            The job after the update.

        Raises:
            NotFoundError: If no job has this id.
            StoreError: If the job could not be written.
        """
        with self._tracer.start_as_current_span(SPAN_ACK_JOB) as span:
            span.set_attribute("job_id", str(job_id))
            record = await self._finish(job_id, {})

        self._metrics.record_acknowledged(self.collection, "done")
        logger.info("Acknowledged job", extra={"job_id": str(record.id)})
        return JobView.from_record(record)

    async def error(self, job_id: UUID | str, message: str) -> JobView:
        """
        Mark a job as done with an error message.

        Args:
            job_id: Id of the job.
            message: Error description stored on the job.

        Returns:
            The job after the update, including the error.

        Raises:
            NotFoundError: If no job has this id.
            StoreError: If the job could not be written.
        """
        with self._tracer.start_as_current_span(SPAN_ERROR_JOB) as span:
            span.set_attribute("job_id", str(job_id))
            record = await self._finish(job_id, {"error": message})

        self._metrics.record_acknowledged(self.collection, "error")
        logger.info(
            "Job failed",
            extra={"job_id": str(record.id), "error": record.error},
        )
        return JobView.from_record(record)

    async def clean(self) -> int:
        """
        Remove finished jobs.

        Exhausted jobs (retries above max_retries, not done) are kept for
        inspection unless the queue uses ExhaustedJobsPolicy.DELETE_ON_CLEAN,
        in which case those whose last lease has expired are deleted too.

        Returns:
            Number of deleted jobs.
        """
        job_filter = JobFilter(done=True)
        if self.options.exhausted_jobs_policy == ExhaustedJobsPolicy.DELETE_ON_CLEAN:
            # A final attempt still under lease is left to its worker
            job_filter = JobFilter(
                any_of=(
                    JobFilter(done=True),
                    JobFilter(
                        done=False,
                        retries_above=self.options.max_retries,
                        blocked_before=self._clock(),
                    ),
                )
            )

        count = await self._store.delete_matching(job_filter)

        self._metrics.record_deleted(self.collection, "clean", count)
        logger.info(
            f"Cleaned {count} jobs",
            extra={"policy": self.options.exhausted_jobs_policy.value},
        )
        return count

    async def reset(self) -> int:
        """
        Remove ALL jobs from the queue.

        Returns:
            Number of deleted jobs.
        """
        count = await self._store.delete_matching(JobFilter())

        self._metrics.record_deleted(self.collection, "reset", count)
        logger.warning(f"Reset queue, removed {count} jobs")
        return count

    async def recover_orphans(self, expired_only: bool = False) -> list[JobRecord]:
        """
        Requeue claims that were never acknowledged.

        Every job that is not done and still flagged in process gets the
        flag cleared, a fresh lease window, one more retry and this
        instance's worker identity.

        Args:
            expired_only: Only touch jobs whose lease already expired, so
                that live claims are left alone.

        Returns:
            The recovered records, with full diagnostic fields.
        """
        with self._tracer.start_as_current_span(SPAN_RECOVER_ORPHANS) as span:
            span.set_attribute("collection", self.collection)

            now = self._clock()
            records = await self._store.update_matching_many(
                JobFilter(
                    done=False,
                    in_process=True,
                    blocked_before=now if expired_only else None,
                ),
                self._lease_update(now, in_process=False),
            )

            span.set_attribute("recovered", len(records))

        if records:
            self._metrics.record_orphans_recovered(self.collection, len(records))
            logger.info(
                f"Recovered {len(records)} orphaned jobs",
                extra={"job_ids": [str(r.id) for r in records]},
            )
        return records

    async def available_slots(self) -> int:
        """
        Count jobs that could be claimed right now.

        Returns:
            Number of claimable jobs.
        """
        count = await self._store.count_matching(self._claimable_filter(self._clock()))
        self._metrics.update_available_jobs(self.collection, count)
        return count

    async def inspect(self, job_id: UUID | str) -> JobRecord:
        """
        Get the full stored record of a job, including retry and worker
        bookkeeping.

        Raises:
            NotFoundError: If no job has this id.
        """
        records = await self._store.find(JobFilter(job_id=_parse_job_id(job_id)))
        if not records:
            raise NotFoundError(job_id)
        return records[0]
