"""
SQL job store.
Implements the JobStore contract with SQLAlchemy Core over an async engine.
"""

from collections.abc import Sequence
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Row, Table, and_, delete, func, insert, or_, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from leasequeue.constants import SortOrder
from leasequeue.db.base import JobFilter, JobStore, JobUpdate
from leasequeue.db.models import get_job_table
from leasequeue.exceptions import StoreError
from leasequeue.types.job import JobRecord, PayloadRef


class SqlJobStore(JobStore):
    """
    JobStore for PostgreSQL (production) and SQLite (tests).

    Each operation runs in its own transaction. The atomic claim is a
    single UPDATE whose target row is picked by a sorted subquery with
    FOR UPDATE SKIP LOCKED, so concurrent workers never update the same
    row twice. Unsorted updates address a single row and wait for its
    lock instead.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collection: str,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing sessions on the target database.
            collection: Queue collection (table) name.
        """
        self._session_factory = session_factory
        self._table: Table = get_job_table(collection)

    def _where(self, job_filter: JobFilter) -> ColumnElement[bool]:
        """Translate a JobFilter into a SQL boolean expression."""
        c = self._table.c
        clauses: list[ColumnElement[bool]] = []

        if job_filter.job_id is not None:
            clauses.append(c.id == job_filter.job_id)
        if job_filter.done is not None:
            clauses.append(c.done == job_filter.done)
        if job_filter.in_process is not None:
            clauses.append(c.in_process == job_filter.in_process)
        if job_filter.blocked_before is not None:
            clauses.append(c.blocked_until < job_filter.blocked_before)
        if job_filter.blocked_after is not None:
            clauses.append(c.blocked_until > job_filter.blocked_after)
        if job_filter.max_retries is not None:
            clauses.append(c.retries <= job_filter.max_retries)
        if job_filter.retries_above is not None:
            clauses.append(c.retries > job_filter.retries_above)
        if job_filter.any_of:
            clauses.append(or_(*(self._where(f) for f in job_filter.any_of)))

        return and_(true(), *clauses)

    def _values(self, job_update: JobUpdate) -> dict[str, Any]:
        values: dict[str, Any] = dict(job_update.values)
        if job_update.increment_retries:
            values["retries"] = self._table.c.retries + job_update.increment_retries
        return values

    @staticmethod
    def _to_record(row: Row) -> JobRecord:
        m = row._mapping
        return JobRecord(
            id=m["id"],
            payload_ref=PayloadRef(id=m["payload_id"], kind=m["payload_kind"]),
            created_at=m["created_at"],
            blocked_until=m["blocked_until"],
            retries=m["retries"],
            done=m["done"],
            error=m["error"],
            worker_id=m["worker_id"],
            worker_hostname=m["worker_hostname"],
            in_process=m["in_process"],
        )

    async def _execute(self, stmt: Any) -> Any:
        """Run one statement in its own transaction."""
        try:
            async with self._session_factory.begin() as session:
                result = await session.execute(stmt)
                if result.returns_rows:
                    return result.fetchall()
                return result.rowcount
        except SQLAlchemyError as e:
            raise StoreError(f"Job store operation failed: {e}") from e

    async def insert(self, record: JobRecord) -> UUID:
        job_id = uuid4()
        stmt = insert(self._table).values(
            id=job_id,
            payload_id=record.payload_ref.id,
            payload_kind=record.payload_ref.kind,
            created_at=record.created_at,
            blocked_until=record.blocked_until,
            retries=record.retries,
            done=record.done,
            error=record.error,
            worker_id=record.worker_id,
            worker_hostname=record.worker_hostname,
            in_process=record.in_process,
        )
        await self._execute(stmt)
        return job_id

    async def count_matching(self, job_filter: JobFilter) -> int:
        stmt = select(func.count()).select_from(self._table).where(self._where(job_filter))
        rows = await self._execute(stmt)
        return rows[0][0] or 0

    async def find_one_and_update(
        self,
        job_filter: JobFilter,
        job_update: JobUpdate,
        sort: SortOrder | None = None,
    ) -> JobRecord | None:
        c = self._table.c
        where = self._where(job_filter)

        # Uncorrelated, so the subquery scans the table instead of the outer row
        candidate = select(c.id).where(where).correlate(None).limit(1)
        if sort == SortOrder.CREATED_AT_ASC:
            # Competing claims move on to the next row instead of waiting
            candidate = candidate.order_by(c.created_at.asc()).with_for_update(skip_locked=True)
        else:
            candidate = candidate.with_for_update()
        candidate = candidate.scalar_subquery()

        stmt = (
            update(self._table)
            .where(and_(c.id == candidate, where))
            .values(**self._values(job_update))
            .returning(*c)
        )
        rows: Sequence[Row] = await self._execute(stmt)
        if not rows:
            return None
        return self._to_record(rows[0])

    async def update_matching_many(
        self,
        job_filter: JobFilter,
        job_update: JobUpdate,
    ) -> list[JobRecord]:
        stmt = (
            update(self._table)
            .where(self._where(job_filter))
            .values(**self._values(job_update))
            .returning(*self._table.c)
        )
        rows = await self._execute(stmt)
        records = [self._to_record(row) for row in rows]
        records.sort(key=lambda r: r.created_at)
        return records

    async def delete_matching(self, job_filter: JobFilter) -> int:
        stmt = delete(self._table).where(self._where(job_filter))
        return await self._execute(stmt)

    async def find(self, job_filter: JobFilter) -> list[JobRecord]:
        stmt = (
            select(self._table)
            .where(self._where(job_filter))
            .order_by(self._table.c.created_at.asc())
        )
        rows = await self._execute(stmt)
        return [self._to_record(row) for row in rows]
