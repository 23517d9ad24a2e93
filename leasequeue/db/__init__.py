"""
Database module.
Contains the JobStore contract, its SQL and in-memory implementations,
and connection management.
"""

from leasequeue.db.base import JobFilter, JobStore, JobUpdate
from leasequeue.db.connection import (
    close_db,
    create_schema,
    create_session_factory,
    get_engine,
    get_test_engine,
    init_db,
)
from leasequeue.db.memory import MemoryJobStore
from leasequeue.db.models import get_job_table, metadata
from leasequeue.db.store import SqlJobStore

__all__ = [
    "JobStore",
    "JobFilter",
    "JobUpdate",
    "SqlJobStore",
    "MemoryJobStore",
    "get_engine",
    "get_test_engine",
    "create_session_factory",
    "create_schema",
    "init_db",
    "close_db",
    "get_job_table",
    "metadata",
]
