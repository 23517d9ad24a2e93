"""
Worker module.
Contains the polling worker that claims and processes jobs.
"""

from leasequeue.worker.main import JobHandler, Worker, run

__all__ = ["JobHandler", "Worker", "run"]
