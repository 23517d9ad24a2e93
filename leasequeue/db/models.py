"""
SQLAlchemy table definitions.
Defines the job collection table; its name is the queue collection name.
"""

from functools import lru_cache

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
)

from leasequeue.constants import EPOCH

metadata = MetaData()


@lru_cache
def get_job_table(collection: str) -> Table:
    """
    Get the table backing a queue collection.

    Tables are registered once per name on the shared metadata, so
    several queues with different collections can live in one database.

    Key columns:
    - created_at orders claims (oldest first)
    - blocked_until is the lease expiry; a job is claimable once it passes
    - retries counts claim attempts and never decreases
    - in_process marks an outstanding claim under the explicit-flag policy
    """
    return Table(
        collection,
        metadata,
        Column("id", Uuid(as_uuid=True), primary_key=True, nullable=False),
        # Foreign payload reference
        Column("payload_id", String(255), nullable=False),
        Column("payload_kind", String(255), nullable=False),
        # Lease and retry tracking
        Column("created_at", DateTime(), nullable=False),
        Column("blocked_until", DateTime(), nullable=False, default=EPOCH),
        Column("retries", Integer, nullable=False, default=0),
        Column("done", Boolean, nullable=False, default=False),
        Column("in_process", Boolean, nullable=False, default=False),
        # Claimant identity, for diagnostics and orphan recovery
        Column("worker_id", String(255), nullable=True),
        Column("worker_hostname", String(255), nullable=True),
        # Error tracking
        Column("error", Text, nullable=True),
        # Index for efficient claim polling
        Index(f"ix_{collection}_claim", "done", "blocked_until", "created_at"),
        # Index for explicit-flag admission checks
        Index(f"ix_{collection}_in_process", "done", "in_process"),
    )
