"""
Prometheus metrics collection for monitoring
"""

from prometheus_client import Counter, Histogram, CollectorRegistry

from utils.structured_logging import get_structured_logger

logger = get_structured_logger(__name__)


class MetricsCollector:
    """Prometheus metrics collector for SocialBridge"""

    def __init__(self):
        """Initialize metrics collector with Prometheus metrics"""
        self.registry = CollectorRegistry()

        # API Request metrics
        self.request_count = Counter(
            'socialbridge_requests_total',
            'Total number of API requests',
            ['method', 'endpoint', 'status_code'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'socialbridge_request_duration_seconds',
            'Request duration in seconds',
            ['method', 'endpoint'],
            registry=self.registry
        )

        # Platform integration metrics
        self.platform_requests = Counter(
            'socialbridge_platform_requests_total',
            'Platform API requests',
            ['platform', 'operation', 'status'],
            registry=self.registry
        )

        self.token_refreshes = Counter(
            'socialbridge_token_refreshes_total',
            'Token refresh attempts',
            ['platform', 'status'],
            registry=self.registry
        )

        self.publish_attempts = Counter(
            'socialbridge_publish_attempts_total',
            'Per-target publish outcomes',
            ['platform', 'outcome'],
            registry=self.registry
        )

        self.sync_results = Counter(
            'socialbridge_sync_results_total',
            'Analytics sync outcomes',
            ['platform', 'kind', 'status'],
            registry=self.registry
        )

        self.scheduler_claims = Counter(
            'socialbridge_scheduler_claims_total',
            'Scheduler claim attempts on due posts',
            ['result'],
            registry=self.registry
        )

        self.task_processing_time = Histogram(
            'socialbridge_task_processing_seconds',
            'Task processing time',
            ['task_type'],
            registry=self.registry
        )

    def track_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration: float,
    ) -> None:
        self.request_count.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()

        self.request_duration.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def track_platform_request(
        self,
        platform: str,
        operation: str,
        status: str
    ) -> None:
        """
        Track platform API request metrics

        Args:
            platform: Platform name
            operation: Operation type
            status: Request status
        """
        self.platform_requests.labels(
            platform=platform,
            operation=operation,
            status=status
        ).inc()

    def track_token_refresh(self, platform: str, status: str) -> None:
        self.token_refreshes.labels(platform=platform, status=status).inc()

    def track_publish(self, platform: str, outcome: str) -> None:
        """
        Track a per-target publish outcome

        Args:
            platform: Target platform
            outcome: published, retry_scheduled, failed or skipped
        """
        self.publish_attempts.labels(platform=platform, outcome=outcome).inc()

    def track_sync(self, platform: str, kind: str, status: str) -> None:
        self.sync_results.labels(platform=platform, kind=kind, status=status).inc()

    def track_claim(self, claimed: bool) -> None:
        self.scheduler_claims.labels(result="claimed" if claimed else "lost").inc()

    def track_task_processing(self, task_type: str, duration: float) -> None:
        """
        Track background task processing metrics

        Args:
            task_type: Type of task
            duration: Processing duration in seconds
        """
        self.task_processing_time.labels(task_type=task_type).observe(duration)


# Global metrics collector
metrics = MetricsCollector()
