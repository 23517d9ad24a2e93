"""
Type definitions for the job queue.
Contains the persisted job record and the projections handed to callers.
"""

from leasequeue.types.job import (
    JobRecord,
    JobView,
    PayloadRef,
)

__all__ = [
    "PayloadRef",
    "JobRecord",
    "JobView",
]
