# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "customer_hub.log")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "Customer Hub")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class IdentityMonitoring:
    """Prometheus metric helpers for identity resolution, search, merge and sync."""

    RESOLUTIONS_COUNTER = Counter(
        "customer_identity_resolutions_total",
        "Identity resolver outcomes by provider and action.",
        labelnames=("provider", "action"),
    )

    SEARCH_COUNTER = Counter(
        "customer_search_requests_total",
        "Customer search requests by query type and mode.",
        labelnames=("search_type", "mode"),
    )
    SEARCH_LATENCY = Histogram(
        "customer_search_request_seconds",
        "Latency histogram for customer search.",
        labelnames=("mode",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )
    SEARCH_RESULT_SIZE = Histogram(
        "customer_search_result_size",
        "Number of customers returned per search.",
        labelnames=("mode",),
        buckets=(0, 1, 5, 10, 25, 50, 100),
    )
    SEARCH_FALLBACK_COUNTER = Counter(
        "customer_search_fallback_total",
        "Ranked searches that degraded to the substring fallback.",
    )

    MERGE_COUNTER = Counter(
        "customer_merges_total",
        "Customer merge attempts by status.",
        labelnames=("status",),
    )
    MERGED_CUSTOMERS_COUNTER = Counter(
        "customer_merged_customers_total",
        "Losing customers removed by merges.",
    )

    SYNC_RECORDS_COUNTER = Counter(
        "customer_sync_records_total",
        "Records processed by sync jobs by source and outcome.",
        labelnames=("source", "outcome"),
    )
    SYNC_BATCH_LATENCY = Histogram(
        "customer_sync_batch_duration_seconds",
        "Duration of one sync page in seconds.",
        labelnames=("source",),
        buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
    )
    SYNC_BATCH_FAILURES = Counter(
        "customer_sync_batch_failures_total",
        "Sync pages aborted by infrastructure failures.",
        labelnames=("source",),
    )

    @classmethod
    def record_resolution(cls, *, provider: str, action: str) -> None:
        cls.RESOLUTIONS_COUNTER.labels(provider=provider, action=action).inc()

    @classmethod
    def record_search(cls, *, search_type: str, degraded: bool, duration_seconds: float, result_count: int) -> None:
        mode = "fallback" if degraded else "ranked"
        cls.SEARCH_COUNTER.labels(search_type=search_type, mode=mode).inc()
        cls.SEARCH_LATENCY.labels(mode=mode).observe(duration_seconds)
        cls.SEARCH_RESULT_SIZE.labels(mode=mode).observe(result_count)

    @classmethod
    def record_search_fallback(cls) -> None:
        cls.SEARCH_FALLBACK_COUNTER.inc()

    @classmethod
    def record_merge(cls, *, status: str, merged_count: int = 0) -> None:
        cls.MERGE_COUNTER.labels(status=status).inc()
        if merged_count:
            cls.MERGED_CUSTOMERS_COUNTER.inc(merged_count)

    @classmethod
    def record_sync_batch(cls, *, source: str, counts: dict[str, int], duration_seconds: float) -> None:
        for outcome, value in counts.items():
            if value:
                cls.SYNC_RECORDS_COUNTER.labels(source=source, outcome=outcome).inc(value)
        cls.SYNC_BATCH_LATENCY.labels(source=source).observe(duration_seconds)

    @classmethod
    def record_sync_failure(cls, *, source: str) -> None:
        cls.SYNC_BATCH_FAILURES.labels(source=source).inc()
