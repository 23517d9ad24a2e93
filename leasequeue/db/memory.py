"""
In-memory job store.

Keeps records in insertion order behind an asyncio.Lock, which makes
every operation linearizable for callers sharing one event loop.
Useful for tests and for embedding the queue in a single process.
"""

import asyncio
from dataclasses import replace
from uuid import UUID, uuid4

from leasequeue.constants import SortOrder
from leasequeue.db.base import JobFilter, JobStore, JobUpdate
from leasequeue.types.job import JobRecord


class MemoryJobStore(JobStore):
    """JobStore backed by a dict of records."""

    def __init__(self) -> None:
        self._records: dict[UUID, JobRecord] = {}
        self._lock = asyncio.Lock()

    def _ordered(self, job_filter: JobFilter, sort: SortOrder | None) -> list[JobRecord]:
        matching = [r for r in self._records.values() if job_filter.matches(r)]
        if sort == SortOrder.CREATED_AT_ASC:
            # sorted() is stable, so equal timestamps keep insertion order
            matching.sort(key=lambda r: r.created_at)
        return matching

    async def insert(self, record: JobRecord) -> UUID:
        async with self._lock:
            job_id = uuid4()
            self._records[job_id] = replace(record, id=job_id)
            return job_id

    async def count_matching(self, job_filter: JobFilter) -> int:
        async with self._lock:
            return sum(1 for r in self._records.values() if job_filter.matches(r))

    async def find_one_and_update(
        self,
        job_filter: JobFilter,
        job_update: JobUpdate,
        sort: SortOrder | None = None,
    ) -> JobRecord | None:
        async with self._lock:
            matching = self._ordered(job_filter, sort)
            if not matching:
                return None
            updated = job_update.apply(matching[0])
            self._records[updated.id] = updated
            return replace(updated)

    async def update_matching_many(
        self,
        job_filter: JobFilter,
        job_update: JobUpdate,
    ) -> list[JobRecord]:
        async with self._lock:
            updated = []
            for record in self._ordered(job_filter, SortOrder.CREATED_AT_ASC):
                new_record = job_update.apply(record)
                self._records[new_record.id] = new_record
                updated.append(replace(new_record))
            return updated

    async def delete_matching(self, job_filter: JobFilter) -> int:
        async with self._lock:
            doomed = [r.id for r in self._records.values() if job_filter.matches(r)]
            for job_id in doomed:
                del self._records[job_id]
            return len(doomed)

    async def find(self, job_filter: JobFilter) -> list[JobRecord]:
        async with self._lock:
            return [replace(r) for r in self._ordered(job_filter, SortOrder.CREATED_AT_ASC)]
