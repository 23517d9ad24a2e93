"""
Application constants.
Centralized location for all constant values used across the application.
"""

from datetime import datetime
from enum import StrEnum


class AdmissionPolicy(StrEnum):
    """
    How the claim path counts jobs that are currently in process.

    - EXPLICIT_FLAG: jobs with in_process = true. Does not self-heal on
      lease expiry; crashed claims are released by recover_orphans.
    - LEASE_WINDOW: jobs with an unexpired lease (blocked_until > now).
    """

    EXPLICIT_FLAG = "explicit_flag"
    LEASE_WINDOW = "lease_window"


class ExhaustedJobsPolicy(StrEnum):
    """What clean() does with jobs whose retries exceed max_retries."""

    RETAIN_FOR_INSPECTION = "retain_for_inspection"
    DELETE_ON_CLEAN = "delete_on_clean"


class SortOrder(StrEnum):
    """Ordering applied when the store selects one of several matches."""

    CREATED_AT_ASC = "created_at_asc"


# Initial blocked_until for new jobs, always in the past
EPOCH = datetime(1970, 1, 1)

# Default values
DEFAULT_QUEUE_COLLECTION = "queue"
DEFAULT_BLOCK_DURATION_MS = 30000
DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_JOBS_IN_PROCESS = 1
DEFAULT_ADMISSION_POLICY = AdmissionPolicy.LEASE_WINDOW
DEFAULT_EXHAUSTED_JOBS_POLICY = ExhaustedJobsPolicy.RETAIN_FOR_INSPECTION

# Metrics names
METRIC_JOBS_ENQUEUED = "queue_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "queue_jobs_claimed_total"
METRIC_JOBS_ACKNOWLEDGED = "queue_jobs_acknowledged_total"
METRIC_ADMISSION_REJECTED = "queue_admission_rejected_total"
METRIC_ORPHANS_RECOVERED = "queue_orphans_recovered_total"
METRIC_JOBS_DELETED = "queue_jobs_deleted_total"
METRIC_AVAILABLE_JOBS = "queue_available_jobs"

# Trace span names
SPAN_ADD_JOB = "add_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_ACK_JOB = "ack_job"
SPAN_ERROR_JOB = "error_job"
SPAN_RECOVER_ORPHANS = "recover_orphans"
SPAN_HANDLE_JOB = "handle_job"
