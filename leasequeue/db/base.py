"""
JobStore contract.

A JobStore owns the job collection and nothing else. The queue expresses
every state transition as a filter plus an update; the store's only duty
is to apply them atomically. find_one_and_update is the synchronization
primitive the whole claim protocol relies on and must be linearizable
with respect to other callers on the same collection.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from leasequeue.constants import SortOrder
from leasequeue.types.job import JobRecord

# Fields a JobUpdate may assign. id, payload_ref and created_at are immutable.
UPDATABLE_FIELDS = frozenset(
    {
        "blocked_until",
        "done",
        "error",
        "worker_id",
        "worker_hostname",
        "in_process",
    }
)


@dataclass(frozen=True)
class JobFilter:
    """
    Conjunction of field predicates over job records.

    Unset predicates match everything. ``any_of`` adds a disjunction of
    nested filters that must also hold; an empty filter matches every
    record.
    """

    job_id: UUID | None = None
    done: bool | None = None
    in_process: bool | None = None
    blocked_before: datetime | None = None  # blocked_until < value
    blocked_after: datetime | None = None  # blocked_until > value
    max_retries: int | None = None  # retries <= value
    retries_above: int | None = None  # retries > value
    any_of: tuple["JobFilter", ...] = ()

    def matches(self, record: JobRecord) -> bool:
        """Evaluate the filter against a record held in memory."""
        if self.job_id is not None and record.id != self.job_id:
            return False
        if self.done is not None and record.done != self.done:
            return False
        if self.in_process is not None and record.in_process != self.in_process:
            return False
        if self.blocked_before is not None and not record.blocked_until < self.blocked_before:
            return False
        if self.blocked_after is not None and not record.blocked_until > self.blocked_after:
            return False
        if self.max_retries is not None and record.retries > self.max_retries:
            return False
        if self.retries_above is not None and record.retries <= self.retries_above:
            return False
        if self.any_of and not any(f.matches(record) for f in self.any_of):
            return False
        return True


@dataclass(frozen=True)
class JobUpdate:
    """Field assignments plus an optional retries increment."""

    values: dict[str, Any] = field(default_factory=dict)
    increment_retries: int = 0

    def __post_init__(self) -> None:
        unknown = set(self.values) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

    def apply(self, record: JobRecord) -> JobRecord:
        """Return a copy of the record with the update applied."""
        return replace(
            record,
            retries=record.retries + self.increment_retries,
            **self.values,
        )


class JobStore(ABC):
    """
    Abstract job collection.

    Implementations raise StoreError for any I/O failure and never
    interpret job state themselves.
    """

    @abstractmethod
    async def insert(self, record: JobRecord) -> UUID:
        """Persist a new record and return its store-assigned id."""

    @abstractmethod
    async def count_matching(self, job_filter: JobFilter) -> int:
        """Count records matching the filter."""

    @abstractmethod
    async def find_one_and_update(
        self,
        job_filter: JobFilter,
        job_update: JobUpdate,
        sort: SortOrder | None = None,
    ) -> JobRecord | None:
        """
        Atomically update the first matching record.

        Returns the record as it is after the update, or None when
        nothing matches.
        """

    @abstractmethod
    async def update_matching_many(
        self,
        job_filter: JobFilter,
        job_update: JobUpdate,
    ) -> list[JobRecord]:
        """Update every matching record and return the updated records."""

    @abstractmethod
    async def delete_matching(self, job_filter: JobFilter) -> int:
        """Delete every matching record and return how many were removed."""

    @abstractmethod
    async def find(self, job_filter: JobFilter) -> list[JobRecord]:
        """Return matching records, oldest first, without modifying them."""
