"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from leasequeue.config import Settings
from leasequeue.db import (
    JobStore,
    MemoryJobStore,
    SqlJobStore,
    create_schema,
    create_session_factory,
    get_test_engine,
)
from leasequeue.observability.metrics import MetricsCollector
from leasequeue.queue import JobQueue, QueueOptions
from leasequeue.types.job import PayloadRef

TEST_COLLECTION = "queue"


def sqlite_url(tmp_path: Path) -> str:
    """SQLite database file inside the test's temporary directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock fixed at a known instant."""
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Create a metrics collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def memory_store() -> MemoryJobStore:
    """Create an empty in-memory store."""
    return MemoryJobStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path) -> AsyncGenerator[SqlJobStore]:
    """Create a SQL store on a fresh SQLite database."""
    engine = get_test_engine(sqlite_url(tmp_path))
    await create_schema(engine, TEST_COLLECTION)

    yield SqlJobStore(create_session_factory(engine), TEST_COLLECTION)

    await engine.dispose()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[JobStore]:
    """Run the test once per store implementation."""
    if request.param == "memory":
        yield MemoryJobStore()
        return

    engine = get_test_engine(sqlite_url(tmp_path))
    await create_schema(engine, TEST_COLLECTION)

    yield SqlJobStore(create_session_factory(engine), TEST_COLLECTION)

    await engine.dispose()


@pytest.fixture
def make_queue(
    clock: FakeClock,
    metrics: MetricsCollector,
) -> Callable[..., JobQueue]:
    """Build queues sharing the test clock and metrics."""

    def factory(store: JobStore, worker_id: str = "test-worker", **options: Any) -> JobQueue:
        return JobQueue(
            store,
            worker_id=worker_id,
            options=QueueOptions(**options),
            worker_hostname="test-host",
            clock=clock,
            metrics=metrics,
        )

    return factory


@pytest.fixture
def queue(memory_store: MemoryJobStore, make_queue: Callable[..., JobQueue]) -> JobQueue:
    """Create a queue with default options on the in-memory store."""
    return make_queue(memory_store)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        log_level="DEBUG",
        log_format="console",
        queue_block_duration_ms=5000,
        queue_max_retries=2,
        queue_max_jobs_in_process=3,
        worker_poll_interval_seconds=0.01,
        reaper_interval_seconds=1,
    )


@pytest.fixture
def payload_ref() -> PayloadRef:
    """Create a sample payload reference."""
    return PayloadRef(id="64b7f0c2a1", kind="Video")
