"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
)

from leasequeue.constants import (
    METRIC_ADMISSION_REJECTED,
    METRIC_AVAILABLE_JOBS,
    METRIC_JOBS_ACKNOWLEDGED,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_DELETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_ORPHANS_RECOVERED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Every series is labelled by queue collection.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs added to the queue",
            ["collection"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of successful claims",
            ["collection", "worker_id"],
            registry=self._registry,
        )

        # outcome is "done" for ack and "error" for error
        self.jobs_acknowledged = Counter(
            METRIC_JOBS_ACKNOWLEDGED,
            "Total number of jobs marked terminal",
            ["collection", "outcome"],
            registry=self._registry,
        )

        self.admission_rejected = Counter(
            METRIC_ADMISSION_REJECTED,
            "Total number of claims refused by the in-process ceiling",
            ["collection"],
            registry=self._registry,
        )

        self.orphans_recovered = Counter(
            METRIC_ORPHANS_RECOVERED,
            "Total number of orphaned claims requeued",
            ["collection"],
            registry=self._registry,
        )

        self.jobs_deleted = Counter(
            METRIC_JOBS_DELETED,
            "Total number of jobs deleted by clean or reset",
            ["collection", "operation"],
            registry=self._registry,
        )

        self.available_jobs = Gauge(
            METRIC_AVAILABLE_JOBS,
            "Number of claimable jobs at the last check",
            ["collection"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """The registry the metrics are registered on."""
        return self._registry

    def record_enqueued(self, collection: str) -> None:
        """Record a job added to the queue."""
        self.jobs_enqueued.labels(collection=collection).inc()

    def record_claimed(self, collection: str, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(collection=collection, worker_id=worker_id).inc()

    def record_acknowledged(self, collection: str, outcome: str) -> None:
        """Record a job marked done or errored."""
        self.jobs_acknowledged.labels(collection=collection, outcome=outcome).inc()

    def record_admission_rejected(self, collection: str) -> None:
        """Record a claim refused by the admission check."""
        self.admission_rejected.labels(collection=collection).inc()

    def record_orphans_recovered(self, collection: str, count: int) -> None:
        """Record orphaned claims requeued by recovery."""
        self.orphans_recovered.labels(collection=collection).inc(count)

    def record_deleted(self, collection: str, operation: str, count: int) -> None:
        """Record jobs removed by clean or reset."""
        self.jobs_deleted.labels(collection=collection, operation=operation).inc(count)

    def update_available_jobs(self, collection: str, count: int) -> None:
        """Update the claimable job gauge."""
        self.available_jobs.labels(collection=collection).set(count)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
