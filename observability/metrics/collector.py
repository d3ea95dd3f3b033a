"""
Metrics Collector
=================

Prometheus-compatible metrics collection for the bookings pipeline.

Supports:
- Prometheus pushgateway integration
- PostgreSQL persistence
- In-memory metrics for testing
"""

import logging
from typing import Dict, List, Optional
from datetime import datetime, timezone
import threading

from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, push_to_gateway, generate_latest
)
import psycopg2
from psycopg2.extras import Json

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "prometheus", "postgres")


class MetricsCollector:
    """
    Collects and exports metrics for the bookings pipeline.

    Supports multiple backends:
    - prometheus: Registry pushed to a Prometheus Pushgateway
    - postgres: Store in PostgreSQL
    - memory: In-memory storage (default, used by tests and local runs)
    """

    # Predefined metric definitions
    METRIC_DEFINITIONS = {
        # Pipeline metrics
        "pipeline_run_duration_seconds": {
            "type": "histogram",
            "description": "Duration of pipeline stage runs",
            "labels": ["pipeline_name", "status"]
        },
        "pipeline_rows_processed": {
            "type": "counter",
            "description": "Total rows written by a pipeline stage",
            "labels": ["pipeline_name", "table_name", "stage"]
        },
        "pipeline_rows_rejected": {
            "type": "counter",
            "description": "Total rows flagged invalid, by reason",
            "labels": ["pipeline_name", "table_name", "reason"]
        },
        "pipeline_errors_total": {
            "type": "counter",
            "description": "Total pipeline errors",
            "labels": ["pipeline_name", "error_type"]
        },

        # Data quality metrics
        "dq_check_passed": {
            "type": "counter",
            "description": "Data quality checks passed",
            "labels": ["table_name", "check_name"]
        },
        "dq_check_failed": {
            "type": "counter",
            "description": "Data quality checks failed",
            "labels": ["table_name", "check_name", "severity"]
        },
        "dq_completeness_score": {
            "type": "gauge",
            "description": "Completeness score (0-100)",
            "labels": ["table_name"]
        },
        "schema_integrity_score": {
            "type": "gauge",
            "description": "Share of expected landing columns present (0-100)",
            "labels": ["table_name"]
        },
        "rejection_rate": {
            "type": "gauge",
            "description": "Percentage of staged rows flagged invalid",
            "labels": ["table_name"]
        },
        "data_row_count": {
            "type": "gauge",
            "description": "Current row count",
            "labels": ["table_name", "stage"]
        }
    }

    def __init__(
        self,
        backend: str = "memory",
        postgres_config: Optional[Dict] = None,
        pushgateway_url: Optional[str] = None,
        job_name: str = "bookings_etl"
    ):
        """
        Initialize metrics collector.

        Args:
            backend: 'prometheus', 'postgres', or 'memory'
            postgres_config: PostgreSQL connection config (postgres backend)
            pushgateway_url: Prometheus Pushgateway URL
            job_name: Job name for Prometheus
        """
        if backend not in BACKENDS:
            raise ValueError(f"Unknown metrics backend: {backend}")
        if backend == "postgres" and not postgres_config:
            raise ValueError("postgres_config is required for the postgres backend")

        self.backend = backend
        self.job_name = job_name
        self.pushgateway_url = pushgateway_url
        self.postgres_config = postgres_config

        self._db_conn = None
        self._memory_store: List[Dict] = []
        self._prometheus_metrics: Dict = {}
        self._registry = CollectorRegistry()
        self._lock = threading.Lock()

        if backend == "prometheus":
            self._init_prometheus_metrics()

    @classmethod
    def from_config(cls, config: Optional[Dict]) -> "MetricsCollector":
        """Build a collector from the ``metrics`` section of the job settings."""
        config = config or {}
        return cls(
            backend=config.get("backend", "memory"),
            postgres_config=config.get("postgres"),
            pushgateway_url=config.get("pushgateway_url"),
            job_name=config.get("job_name", "bookings_etl")
        )

    def _init_prometheus_metrics(self):
        """Initialize Prometheus metric objects."""
        for name, definition in self.METRIC_DEFINITIONS.items():
            metric_type = definition["type"]
            description = definition["description"]
            labels = definition.get("labels", [])

            if metric_type == "counter":
                self._prometheus_metrics[name] = Counter(
                    name, description, labels, registry=self._registry
                )
            elif metric_type == "gauge":
                self._prometheus_metrics[name] = Gauge(
                    name, description, labels, registry=self._registry
                )
            elif metric_type == "histogram":
                self._prometheus_metrics[name] = Histogram(
                    name, description, labels, registry=self._registry
                )

    @property
    def db_conn(self):
        """Get database connection."""
        if self._db_conn is None or self._db_conn.closed:
            self._db_conn = psycopg2.connect(**self.postgres_config)
        return self._db_conn

    def close(self):
        """Close connections."""
        if self._db_conn and not self._db_conn.closed:
            self._db_conn.close()

    # =========================================
    # METRIC RECORDING METHODS
    # =========================================

    def _record(self, metric_name: str, metric_type: str, value: float, labels: Optional[Dict]):
        labels = labels or {}

        with self._lock:
            if self.backend == "prometheus":
                metric = self._prometheus_metrics.get(metric_name)
                if metric is None:
                    logger.debug(f"Undefined metric ignored: {metric_name}")
                elif metric_type == "counter":
                    metric.labels(**labels).inc(value)
                elif metric_type == "gauge":
                    metric.labels(**labels).set(value)
                else:
                    metric.labels(**labels).observe(value)

            elif self.backend == "postgres":
                self._persist_to_postgres(metric_name, metric_type, value, labels)

            else:  # memory
                self._memory_store.append({
                    "metric_name": metric_name,
                    "metric_type": metric_type,
                    "value": value,
                    "labels": labels,
                    "timestamp": datetime.now(timezone.utc).isoformat()
                })

    def record_counter(
        self,
        metric_name: str,
        value: float = 1,
        labels: Optional[Dict] = None
    ):
        """
        Increment a counter metric.

        Args:
            metric_name: Name of the metric
            value: Value to increment by
            labels: Label key-value pairs
        """
        self._record(metric_name, "counter", value, labels)

    def record_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict] = None
    ):
        """
        Set a gauge metric value.

        Args:
            metric_name: Name of the metric
            value: Current value
            labels: Label key-value pairs
        """
        self._record(metric_name, "gauge", value, labels)

    def record_histogram(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict] = None
    ):
        """Record a histogram observation."""
        self._record(metric_name, "histogram", value, labels)

    def _persist_to_postgres(
        self,
        metric_name: str,
        metric_type: str,
        value: float,
        labels: Dict
    ):
        """Persist metric to PostgreSQL."""
        try:
            with self.db_conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO quality.metrics
                    (metric_name, metric_type, metric_value, labels)
                    VALUES (%s, %s, %s, %s)
                """, (metric_name, metric_type, value, Json(labels)))
                self.db_conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Failed to persist metric {metric_name}: {e}")
            self.db_conn.rollback()

    # =========================================
    # CONVENIENCE METHODS
    # =========================================

    def record_pipeline_run(
        self,
        pipeline_name: str,
        duration_seconds: float,
        status: str,
        rows_processed: int = 0,
        table_name: Optional[str] = None,
        stage: str = "complete"
    ):
        """Record metrics for a pipeline stage run."""
        self.record_histogram(
            "pipeline_run_duration_seconds",
            duration_seconds,
            {"pipeline_name": pipeline_name, "status": status}
        )

        if rows_processed > 0:
            self.record_counter(
                "pipeline_rows_processed",
                rows_processed,
                {"pipeline_name": pipeline_name, "table_name": table_name or "all", "stage": stage}
            )

    def record_error(self, pipeline_name: str, error_type: str):
        """Count a failed pipeline run."""
        self.record_counter(
            "pipeline_errors_total",
            1,
            {"pipeline_name": pipeline_name, "error_type": error_type}
        )

    def record_dq_result(
        self,
        table_name: str,
        check_name: str,
        passed: bool,
        severity: str = "warning"
    ):
        """Record a data quality check result."""
        if passed:
            self.record_counter(
                "dq_check_passed",
                1,
                {"table_name": table_name, "check_name": check_name}
            )
        else:
            self.record_counter(
                "dq_check_failed",
                1,
                {"table_name": table_name, "check_name": check_name, "severity": severity}
            )

    def record_row_count(
        self,
        table_name: str,
        stage: str,
        row_count: int
    ):
        """Record table row count."""
        self.record_gauge(
            "data_row_count",
            row_count,
            {"table_name": table_name, "stage": stage}
        )

    # =========================================
    # EXPORT METHODS
    # =========================================

    def push_to_prometheus(self) -> bool:
        """Push metrics to Prometheus Pushgateway."""
        if self.backend != "prometheus":
            return False

        if not self.pushgateway_url:
            logger.warning("Pushgateway URL not configured")
            return False

        try:
            push_to_gateway(
                self.pushgateway_url,
                job=self.job_name,
                registry=self._registry
            )
            logger.info("Metrics pushed to Prometheus Pushgateway")
            return True
        except OSError as e:
            logger.error(f"Failed to push metrics: {e}")
            return False

    def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus exposition format."""
        return generate_latest(self._registry).decode('utf-8')

    def get_memory_metrics(self, metric_name: Optional[str] = None) -> List[Dict]:
        """Get in-memory metrics store, optionally filtered by name."""
        with self._lock:
            if metric_name is None:
                return self._memory_store.copy()
            return [m for m in self._memory_store if m["metric_name"] == metric_name]

    def clear_memory_metrics(self):
        """Clear in-memory metrics store."""
        with self._lock:
            self._memory_store.clear()
