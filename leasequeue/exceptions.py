"""
Queue error types.

Every queue operation either returns its result or raises exactly one
of these. None of them is retried internally.
"""


class QueueError(Exception):
    """Base class for all queue errors."""


class ValidationError(QueueError):
    """Raised when add() receives a missing or malformed payload reference."""


class ConcurrencyLimitError(QueueError):
    """
    Raised by get() when the in-process ceiling is already reached.

    Retriable: back off and call get() again later.
    """

    def __init__(self, in_process: int, limit: int):
        self.in_process = in_process
        self.limit = limit
        super().__init__(
            f"Too many jobs in process ({in_process}), only {limit} allowed. "
            "Raise max_jobs_in_process if you need more."
        )


class NotFoundError(QueueError):
    """Raised when a job id does not match any record."""

    def __init__(self, job_id: object):
        self.job_id = job_id
        super().__init__(f"Job id invalid, job not found: {job_id}")


class StoreError(QueueError):
    """Raised when the backing store fails; the cause is chained."""
