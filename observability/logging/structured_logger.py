"""
Structured Logger
=================

Provides structured logging for the bookings pipeline.

Features:
- JSON-formatted logs
- Optional PostgreSQL persistence
- Context enrichment
- Log correlation (trace_id, run_id)
- Multiple output handlers
"""

import json
import logging
import sys
import threading
import traceback
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

import psycopg2
from psycopg2.extras import Json

# Thread-local storage for context
_context = threading.local()

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}


def _extra_fields(record: logging.LogRecord) -> Dict:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS
    }


def current_context() -> Dict:
    """Copy of the context bound to the current thread."""
    return dict(getattr(_context, 'data', {}))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        context = current_context()
        if context:
            log_entry["context"] = context

        if self.include_extra:
            log_entry.update(_extra_fields(record))

        return json.dumps(log_entry, default=str)


class PostgresLogHandler(logging.Handler):
    """Handler that persists logs to PostgreSQL in batches."""

    def __init__(
        self,
        postgres_config: Dict,
        batch_size: int = 100,
        table: str = "pipeline.logs"
    ):
        super().__init__()
        self.postgres_config = postgres_config
        self.batch_size = batch_size
        self.table = table

        self._buffer: List[Dict] = []
        self._lock = threading.Lock()
        self._db_conn = None

    @property
    def db_conn(self):
        if self._db_conn is None or self._db_conn.closed:
            self._db_conn = psycopg2.connect(**self.postgres_config)
        return self._db_conn

    def emit(self, record: logging.LogRecord):
        """Buffer a log record, flushing when the batch is full."""
        try:
            log_entry = {
                "log_level": record.levelname,
                "logger_name": record.name,
                "source": record.module,
                "message": record.getMessage(),
                "exception": None,
                "log_metadata": _extra_fields(record)
            }

            if record.exc_info:
                log_entry["exception"] = "".join(
                    traceback.format_exception(*record.exc_info)
                )

            context = current_context()
            if context:
                log_entry["log_metadata"]["context"] = context

            with self._lock:
                self._buffer.append(log_entry)
                if len(self._buffer) >= self.batch_size:
                    self._flush()

        except Exception:
            self.handleError(record)

    def flush(self):
        with self._lock:
            self._flush()

    def _flush(self):
        """Flush buffered logs to database."""
        if not self._buffer:
            return

        try:
            with self.db_conn.cursor() as cur:
                for entry in self._buffer:
                    cur.execute(
                        f"INSERT INTO {self.table} "
                        "(log_level, logger_name, source, message, exception, log_metadata) "
                        "VALUES (%s, %s, %s, %s, %s, %s)",
                        (
                            entry["log_level"],
                            entry["logger_name"],
                            entry["source"],
                            entry["message"],
                            entry["exception"],
                            Json(entry["log_metadata"], dumps=lambda v: json.dumps(v, default=str))
                            if entry["log_metadata"] else None
                        )
                    )
                self.db_conn.commit()
            self._buffer.clear()
        except psycopg2.Error as e:
            # Fallback to stderr
            sys.stderr.write(f"Failed to flush logs to PostgreSQL: {e}\n")
            if self._db_conn is not None and not self._db_conn.closed:
                self._db_conn.rollback()

    def close(self):
        """Close handler and flush remaining logs."""
        self.flush()
        if self._db_conn and not self._db_conn.closed:
            self._db_conn.close()
        super().close()


class StructuredLogger:
    """
    Structured logger with context management and multiple outputs.

    Usage:
        logger = StructuredLogger("bookings_pipeline")

        # Basic logging
        logger.info("Pipeline started", extra={"table": "dim_bookings"})

        # With context
        with logger.context(run_id="abc123", stage="staging"):
            logger.info("Processing data")  # Automatically includes context
            logger.error("Failed", exception=e)
    """

    def __init__(
        self,
        name: str,
        level: int = logging.INFO,
        enable_console: bool = True,
        enable_postgres: bool = False,
        postgres_config: Optional[Dict] = None,
        json_format: bool = True
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            level: Log level
            enable_console: Enable console output
            enable_postgres: Enable PostgreSQL persistence
            postgres_config: PostgreSQL connection config
            json_format: Use JSON formatting for console
        """
        self.name = name
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        self._logger.handlers = []  # Clear existing handlers

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)

            if json_format:
                console_handler.setFormatter(JsonFormatter())
            else:
                console_handler.setFormatter(logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
                ))

            self._logger.addHandler(console_handler)

        if enable_postgres:
            if not postgres_config:
                raise ValueError("postgres_config is required when enable_postgres is set")
            pg_handler = PostgresLogHandler(postgres_config)
            pg_handler.setLevel(level)
            self._logger.addHandler(pg_handler)

    @property
    def handlers(self) -> List[logging.Handler]:
        return list(self._logger.handlers)

    @contextmanager
    def context(self, **kwargs):
        """
        Context manager for adding context to all logs within scope.

        Usage:
            with logger.context(run_id="123", stage="curated"):
                logger.info("Processing")  # Includes run_id and stage
        """
        if not hasattr(_context, 'data'):
            _context.data = {}

        old_data = _context.data.copy()
        _context.data.update(kwargs)

        try:
            yield
        finally:
            _context.data = old_data

    def _log(
        self,
        level: int,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        """Internal logging method."""
        extra = dict(extra or {})

        if 'trace_id' not in extra:
            trace_id = current_context().get('trace_id')
            if trace_id:
                extra['trace_id'] = trace_id

        if exception:
            self._logger.log(level, message, extra=extra, exc_info=exception)
        else:
            self._logger.log(level, message, extra=extra)

    def debug(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.WARNING, message, extra)

    def error(
        self,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        self._log(logging.ERROR, message, extra, exception)

    def log_pipeline_start(
        self,
        pipeline_name: str,
        run_id: str,
        config: Optional[Dict] = None
    ):
        """Log pipeline start event."""
        self.info(
            f"Pipeline started: {pipeline_name}",
            extra={
                "event": "pipeline_start",
                "pipeline_name": pipeline_name,
                "run_id": run_id,
                "config": config
            }
        )

    def log_pipeline_end(
        self,
        pipeline_name: str,
        run_id: str,
        status: str,
        duration_seconds: float,
        rows_processed: int = 0
    ):
        """Log pipeline end event."""
        level = logging.INFO if status == "success" else logging.ERROR
        self._log(
            level,
            f"Pipeline completed: {pipeline_name} ({status})",
            extra={
                "event": "pipeline_end",
                "pipeline_name": pipeline_name,
                "run_id": run_id,
                "status": status,
                "duration_seconds": duration_seconds,
                "rows_processed": rows_processed
            }
        )

    def log_task_start(self, task_name: str, run_id: str):
        """Log task start event."""
        self.info(
            f"Task started: {task_name}",
            extra={
                "event": "task_start",
                "task_name": task_name,
                "run_id": run_id
            }
        )

    def log_task_end(
        self,
        task_name: str,
        run_id: str,
        status: str,
        duration_seconds: float
    ):
        """Log task end event."""
        level = logging.INFO if status == "success" else logging.ERROR
        self._log(
            level,
            f"Task completed: {task_name} ({status})",
            extra={
                "event": "task_end",
                "task_name": task_name,
                "run_id": run_id,
                "status": status,
                "duration_seconds": duration_seconds
            }
        )

    def close(self):
        """Flush and close all handlers."""
        for handler in self._logger.handlers:
            handler.flush()
            handler.close()
        self._logger.handlers = []


def new_trace_id() -> str:
    """Generate a new trace ID."""
    return str(uuid.uuid4())[:8]
