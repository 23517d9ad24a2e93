"""
Integration tests running the store contract and the queue lifecycle
against every JobStore implementation.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from leasequeue.config import get_settings
from leasequeue.constants import EPOCH, AdmissionPolicy, SortOrder
from leasequeue.db import (
    JobFilter,
    JobUpdate,
    SqlJobStore,
    close_db,
    create_session_factory,
    get_engine,
    get_test_engine,
    init_db,
)
from leasequeue.exceptions import ConcurrencyLimitError, StoreError
from leasequeue.types.job import JobRecord, PayloadRef

NOW = datetime(2024, 1, 1, 12, 0, 0)


def new_record(n: int, created_at: datetime = NOW) -> JobRecord:
    return JobRecord(
        payload_ref=PayloadRef(id=f"payload-{n}", kind="Video"),
        created_at=created_at,
        blocked_until=EPOCH,
    )


class TestStoreContract:
    """JobStore operations, per implementation."""

    async def test_insert_assigns_id(self, store):
        job_id = await store.insert(new_record(1))

        records = await store.find(JobFilter(job_id=job_id))

        assert len(records) == 1
        record = records[0]
        assert record.id == job_id
        assert record.payload_ref == PayloadRef(id="payload-1", kind="Video")
        assert record.created_at == NOW
        assert record.blocked_until == EPOCH
        assert record.retries == 0
        assert record.done is False
        assert record.in_process is False

    async def test_count_matching(self, store):
        for n in range(3):
            await store.insert(new_record(n))

        assert await store.count_matching(JobFilter()) == 3
        assert await store.count_matching(JobFilter(done=True)) == 0
        assert await store.count_matching(JobFilter(blocked_before=NOW)) == 3

    async def test_find_one_and_update_oldest_first(self, store):
        """Test that the sorted update picks the oldest match."""
        newer = await store.insert(new_record(1, NOW + timedelta(seconds=5)))
        older = await store.insert(new_record(2, NOW))

        updated = await store.find_one_and_update(
            JobFilter(done=False),
            JobUpdate(values={"worker_id": "w1"}, increment_retries=1),
            sort=SortOrder.CREATED_AT_ASC,
        )

        assert updated.id == older
        assert updated.worker_id == "w1"
        assert updated.retries == 1
        untouched = (await store.find(JobFilter(job_id=newer)))[0]
        assert untouched.retries == 0

    async def test_find_one_and_update_no_match(self, store):
        await store.insert(new_record(1))

        result = await store.find_one_and_update(
            JobFilter(done=True),
            JobUpdate(values={"done": False}),
        )

        assert result is None

    async def test_find_one_and_update_by_id(self, store):
        """Test that an unsorted update targets exactly the addressed job."""
        ids = [await store.insert(new_record(n, NOW + timedelta(seconds=n))) for n in range(2)]

        result = await store.find_one_and_update(
            JobFilter(job_id=ids[1], done=False),
            JobUpdate(values={"done": True, "error": "boom"}),
        )

        assert result.id == ids[1]
        assert result.done is True
        assert result.error == "boom"
        assert await store.count_matching(JobFilter(done=True)) == 1

    async def test_update_matching_many(self, store):
        ids = [await store.insert(new_record(n, NOW + timedelta(seconds=n))) for n in range(3)]
        await store.find_one_and_update(JobFilter(job_id=ids[1]), JobUpdate(values={"done": True}))

        updated = await store.update_matching_many(
            JobFilter(done=False),
            JobUpdate(values={"in_process": True}, increment_retries=2),
        )

        assert [r.id for r in updated] == [ids[0], ids[2]]
        assert all(r.in_process and r.retries == 2 for r in updated)

    async def test_delete_matching_with_any_of(self, store):
        done_id = await store.insert(new_record(1))
        exhausted_id = await store.insert(new_record(2))
        kept_id = await store.insert(new_record(3))
        await store.find_one_and_update(JobFilter(job_id=done_id), JobUpdate(values={"done": True}))
        await store.find_one_and_update(JobFilter(job_id=exhausted_id), JobUpdate(increment_retries=6))

        deleted = await store.delete_matching(
            JobFilter(any_of=(JobFilter(done=True), JobFilter(retries_above=5)))
        )

        assert deleted == 2
        assert [r.id for r in await store.find(JobFilter())] == [kept_id]

    async def test_find_unknown_id(self, store):
        assert await store.find(JobFilter(job_id=uuid4())) == []


class TestQueueLifecycle:
    """The documented lifecycle scenarios, per store implementation."""

    async def test_claim_ack_scenario(self, store, make_queue, clock):
        queue = make_queue(store, max_jobs_in_process=1, max_retries=5, block_duration_ms=30000)

        job_id = await queue.add(PayloadRef(id="p1", kind="Video"))
        job = await queue.get()
        assert job.id == job_id
        assert (await queue.inspect(job_id)).retries == 1

        with pytest.raises(ConcurrencyLimitError):
            await queue.get()

        assert (await queue.ack(job_id)).done is True
        assert await queue.get() is None

    async def test_lease_expiry_scenario(self, store, make_queue, clock):
        queue = make_queue(store)
        job_id = await queue.add(PayloadRef(id="p2", kind="Video"))

        await queue.get()
        clock.advance(milliseconds=30001)
        job = await queue.get()

        assert job.id == job_id
        assert (await queue.inspect(job_id)).retries == 2

    async def test_exhaustion_scenario(self, store, make_queue, clock):
        queue = make_queue(store, max_retries=2)
        job_id = await queue.add(PayloadRef(id="p3", kind="Video"))

        for _ in range(3):
            assert await queue.get() is not None
            clock.advance(seconds=31)

        assert await queue.get() is None
        record = await queue.inspect(job_id)
        assert record.retries == 3
        assert record.done is False

        await queue.clean()
        assert await queue.inspect(job_id)

    async def test_fifo_and_error(self, store, make_queue, clock):
        queue = make_queue(store, max_jobs_in_process=2)
        first = await queue.add(PayloadRef(id="a", kind="Video"))
        clock.advance(seconds=1)
        second = await queue.add(PayloadRef(id="b", kind="Video"))

        assert (await queue.get()).id == first
        assert (await queue.get()).id == second

        failed = await queue.error(second, "corrupt input")
        assert failed.error == "corrupt input"
        assert (await queue.error(second, "other")).error == "corrupt input"

    async def test_recover_orphans(self, store, make_queue, clock):
        queue = make_queue(store, admission_policy=AdmissionPolicy.EXPLICIT_FLAG)
        job_id = await queue.add(PayloadRef(id="p4", kind="Video"))
        await queue.get()
        clock.advance(seconds=31)

        with pytest.raises(ConcurrencyLimitError):
            await queue.get()

        recovered = await queue.recover_orphans(expired_only=True)

        assert [r.id for r in recovered] == [job_id]
        assert recovered[0].retries == 2
        assert recovered[0].in_process is False
        assert recovered[0].blocked_until == clock.now + timedelta(seconds=30)

    async def test_reset(self, store, make_queue):
        queue = make_queue(store)
        for n in range(3):
            await queue.add(PayloadRef(id=f"p{n}", kind="Video"))

        assert await queue.reset() == 3
        assert await queue.available_slots() == 0


class TestSqlStoreErrors:
    """Failure wrapping in the SQL store."""

    async def test_missing_table_raises_store_error(self, tmp_path):
        """Test that driver errors surface as StoreError."""
        engine = get_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        store = SqlJobStore(create_session_factory(engine), "never_created")

        try:
            with pytest.raises(StoreError) as exc_info:
                await store.count_matching(JobFilter())
            assert exc_info.value.__cause__ is not None
        finally:
            await engine.dispose()


class TestInitDb:
    """Startup wiring against the configured database."""

    @pytest.fixture
    def configured_sqlite(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'init.db'}")
        monkeypatch.setenv("QUEUE_COLLECTION", "init_queue")
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    async def test_init_db_returns_working_factory(self, configured_sqlite):
        """Test that init_db creates the table and hands back its session factory."""
        session_factory = await init_db()
        try:
            assert session_factory.kw["bind"] is get_engine()

            store = SqlJobStore(session_factory, "init_queue")
            await store.insert(new_record(1))
            assert await store.count_matching(JobFilter()) == 1
        finally:
            await close_db()
