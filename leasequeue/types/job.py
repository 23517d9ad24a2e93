"""
Job-related type definitions.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class PayloadRef(BaseModel):
    """
    Reference to an externally owned work payload.

    The queue persists the reference and never dereferences it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str


@dataclass
class JobRecord:
    """
    A job as persisted by a JobStore.

    Stores assign ``id`` on insert; every other field is written by the
    queue through filters and updates.
    """

    payload_ref: PayloadRef
    created_at: datetime
    blocked_until: datetime
    id: UUID | None = None
    retries: int = 0
    done: bool = False
    error: str | None = None
    worker_id: str | None = None
    worker_hostname: str | None = None
    in_process: bool = False

    def is_exhausted(self, max_retries: int) -> bool:
        """Check if the job ran out of claim attempts."""
        return self.retries > max_retries


class JobView(BaseModel):
    """
    Job projection returned by the lifecycle calls.

    Retry and worker bookkeeping stay internal; use JobQueue.inspect()
    for diagnostics.
    """

    id: UUID
    payload_ref: PayloadRef
    blocked_until: datetime
    done: bool
    error: str | None = None

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobView":
        """Build the caller-facing projection of a stored record."""
        return cls(
            id=record.id,
            payload_ref=record.payload_ref,
            blocked_until=record.blocked_until,
            done=record.done,
            error=record.error,
        )
