"""
Lease-based Job Queue

A persistent, at-least-once job queue built on a store's atomic
find-one-and-update primitive, with lease expiry, retry accounting
and orphaned-claim recovery.
"""

__version__ = "1.0.0"

from leasequeue.exceptions import (
    ConcurrencyLimitError,
    NotFoundError,
    QueueError,
    StoreError,
    ValidationError,
)
from leasequeue.queue import JobQueue, QueueOptions
from leasequeue.types import JobRecord, JobView, PayloadRef

__all__ = [
    "JobQueue",
    "QueueOptions",
    "JobRecord",
    "JobView",
    "PayloadRef",
    "QueueError",
    "ValidationError",
    "ConcurrencyLimitError",
    "NotFoundError",
    "StoreError",
]
