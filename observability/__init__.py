"""
Bookings Observability Module
=============================

Provides monitoring and logging for the bookings pipeline.

Components:
- metrics: Prometheus-compatible metrics collection
- logging: Structured logging with optional centralized storage

Usage:
    from observability import MetricsCollector, StructuredLogger

    # Metrics
    metrics = MetricsCollector()
    metrics.record_gauge("rejection_rate", 2.5, {"table_name": "stg_bookings"})

    # Logging
    logger = StructuredLogger("bookings_pipeline")
    logger.info("Pipeline started", extra={"run_id": "abc123"})
"""

from .metrics.collector import MetricsCollector
from .logging.structured_logger import StructuredLogger, new_trace_id

__version__ = "1.0.0"
__all__ = ["MetricsCollector", "StructuredLogger", "new_trace_id"]
