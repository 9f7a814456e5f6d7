"""
Prometheus metrics for the subscription pipeline.

Defines and exposes metrics for:
- Ledger claims and stuck-record reclaim
- Job outcomes and end-to-end latency
- Analyzer request outcomes and latency
- Notification persistence, publishing, and dead-lettering

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from subscription_worker.config.settings import get_settings

logger = logging.getLogger(__name__)

# Analyzer calls are slow: buckets reach past the 4 minute timeout ceiling
ANALYZER_LATENCY_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 240.0, 600.0)
JOB_LATENCY_BUCKETS = (0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 900.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the subscription worker.

    Usage:
        metrics = get_metrics()
        metrics.start_server()
        metrics.record_job("boe", "success", latency=3.2)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Ledger
        self.claims = Counter(
            "subscription_worker_claims_total",
            "Claim attempts against the processing ledger",
            ["outcome"],  # claimed, empty, conflict
        )

        self.ledger_reclaimed = Counter(
            "subscription_worker_ledger_reclaimed_total",
            "Records moved out of sending/processing by the stuck-record sweep",
        )

        self.due_batch_size = Histogram(
            "subscription_worker_due_batch_size",
            "Records processed per process_due pass",
            buckets=(0, 1, 5, 10, 25, 50, 100),
        )

        # Jobs
        self.jobs = Counter(
            "subscription_worker_jobs_total",
            "Pipeline runs by subscription type and outcome",
            ["subscription_type", "status"],  # success, error, skipped
        )

        self.job_latency = Histogram(
            "subscription_worker_job_latency_seconds",
            "Time from claim to finalize for one subscription",
            buckets=JOB_LATENCY_BUCKETS,
        )

        # Analyzer
        self.analyzer_requests = Counter(
            "subscription_worker_analyzer_requests_total",
            "Analyzer HTTP attempts by outcome",
            ["outcome"],  # success, retry, fatal, exhausted
        )

        self.analyzer_latency = Histogram(
            "subscription_worker_analyzer_latency_seconds",
            "Duration of a full analyzer call including retries",
            buckets=ANALYZER_LATENCY_BUCKETS,
        )

        # Notifications
        self.notifications_created = Counter(
            "subscription_worker_notifications_created_total",
            "Notification rows persisted",
        )

        self.notification_errors = Counter(
            "subscription_worker_notification_errors_total",
            "Notification fan-out failures",
            ["stage"],  # insert, publish, dlq
        )

        self.dlq_published = Counter(
            "subscription_worker_dlq_published_total",
            "Events rerouted to the dead-letter topic",
        )

        # Worker
        self.worker_running = Gauge(
            "subscription_worker_running",
            "Polling worker status (1=running, 0=stopped)",
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus HTTP server.

        Args:
            port: Port to listen on (defaults to settings)
        """
        port = port or get_settings().metrics_port
        start_http_server(port)
        logger.info(f"Metrics server started on port {port}")

    def record_claims(self, claimed: int) -> None:
        """Record the result of one claim attempt."""
        if claimed:
            self.claims.labels(outcome="claimed").inc(claimed)
        else:
            self.claims.labels(outcome="empty").inc()

    def record_claim_conflict(self) -> None:
        """Record a single-subscription claim refused because it is already held."""
        self.claims.labels(outcome="conflict").inc()

    def record_job(
        self,
        subscription_type: str,
        status: str,
        latency: float | None = None,
    ) -> None:
        """
        Record a finished pipeline run.

        Args:
            subscription_type: Subscription type name
            status: success, error, or skipped
            latency: Claim-to-finalize duration in seconds
        """
        self.jobs.labels(subscription_type=subscription_type, status=status).inc()
        if latency is not None:
            self.job_latency.observe(latency)

    def record_analyzer_attempt(self, outcome: str) -> None:
        """Record one analyzer attempt outcome."""
        self.analyzer_requests.labels(outcome=outcome).inc()

    def record_fanout(
        self,
        created: int,
        errors: int,
        publish_errors: int,
        dead_lettered: int,
        dlq_errors: int = 0,
    ) -> None:
        """
        Record the aggregate result of a notification fan-out.

        Args:
            created: Notifications persisted
            errors: Notification inserts that failed
            publish_errors: Bus publishes that failed
            dead_lettered: Events rerouted to the DLQ
            dlq_errors: DLQ publishes that failed
        """
        if created:
            self.notifications_created.inc(created)
        if errors:
            self.notification_errors.labels(stage="insert").inc(errors)
        if publish_errors:
            self.notification_errors.labels(stage="publish").inc(publish_errors)
        if dlq_errors:
            self.notification_errors.labels(stage="dlq").inc(dlq_errors)
        if dead_lettered:
            self.dlq_published.inc(dead_lettered)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
