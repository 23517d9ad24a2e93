"""
Unit tests for the orphan reaper.
"""

import pytest

from leasequeue.constants import AdmissionPolicy
from leasequeue.exceptions import NotFoundError
from leasequeue.reaper import Reaper


class TestReaper:
    """Tests for Reaper."""

    @pytest.fixture
    def flag_queue(self, memory_store, make_queue):
        return make_queue(memory_store, admission_policy=AdmissionPolicy.EXPLICIT_FLAG)

    async def test_run_once_recovers_expired_claims(self, flag_queue, clock, payload_ref):
        """Test that a crashed claim is recovered once its lease expired."""
        job_id = await flag_queue.add(payload_ref)
        await flag_queue.get()
        reaper = Reaper(flag_queue, interval_seconds=1, clean_done_jobs=False)

        assert await reaper.run_once() == 0

        clock.advance(seconds=31)
        assert await reaper.run_once() == 1

        record = await flag_queue.inspect(job_id)
        assert record.in_process is False
        assert record.retries == 2

    async def test_run_once_cleans_done_jobs(self, flag_queue, payload_ref):
        """Test that the optional clean pass removes finished jobs."""
        job_id = await flag_queue.add(payload_ref)
        pending_id = await flag_queue.add(payload_ref)
        await flag_queue.ack(job_id)
        reaper = Reaper(flag_queue, interval_seconds=1, clean_done_jobs=True)

        await reaper.run_once()

        assert (await flag_queue.inspect(pending_id)).done is False
        with pytest.raises(NotFoundError):
            await flag_queue.inspect(job_id)

    async def test_run_once_leaves_lease_window_claims(self, queue, clock, payload_ref):
        """Test that expired leases are left to self-heal under the lease window."""
        job_id = await queue.add(payload_ref)
        await queue.get()
        await queue.add(payload_ref)
        reaper = Reaper(queue, interval_seconds=1, clean_done_jobs=False)

        clock.advance(seconds=31)
        assert await reaper.run_once() == 0

        record = await queue.inspect(job_id)
        assert record.retries == 1
        assert record.blocked_until < clock()

        job = await queue.get()
        assert job.id == job_id
        assert (await queue.inspect(job_id)).retries == 2
