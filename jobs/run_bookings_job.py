#!/usr/bin/env python3
"""
Bookings Job Runner
===================

Main entry point for the bookings pipeline.
Reads job settings, runs staging (landing -> stg_bookings) and, once the
staging table is published, the curated dimension (stg_bookings -> dim_bookings).
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Add project root to path
sys.path.insert(0, str(PROJECT_ROOT))

from ingestion.connectors import build_connector
from observability import MetricsCollector, StructuredLogger, new_trace_id
from processing.common_code.curated.scripts.dim_bookings import run_dim_bookings
from processing.common_code.errors import PipelineError, SchemaContractError
from processing.common_code.staging.scripts.stg_bookings import run_staging
from processing.common_code.utils import read_config
from quality_framework import DimensionMetrics, RejectionHandler, SchemaContract

logger = logging.getLogger(__name__)

PIPELINE_NAME = "bookings"
STAGES = ("staging", "curated", "all")


def load_job_settings(settings_path: str = "jobs/job_settings.json") -> Dict:
    """Load job settings from JSON file."""
    return read_config(settings_path)


def resolve_path(path: str) -> str:
    """Resolve a settings path relative to the project root."""
    return str(path if Path(path).is_absolute() else PROJECT_ROOT / path)


def configure_logging(log_settings: Dict, job_start: datetime):
    """Root logging for module loggers: console plus a per-run log file."""
    log_dir = log_settings.get("log_dir", "logs/processing")
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, log_settings.get("level", "INFO").upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(f"{log_dir}/bookings_{job_start.strftime('%Y%m%d_%H%M%S')}.log")
        ]
    )


def build_structured_logger(log_settings: Dict) -> StructuredLogger:
    return StructuredLogger(
        "bookings_pipeline",
        level=getattr(logging, log_settings.get("level", "INFO").upper()),
        enable_postgres=log_settings.get("enable_postgres", False),
        postgres_config=log_settings.get("postgres"),
        json_format=log_settings.get("json_format", True)
    )


def check_staging(connector, table_name: str) -> int:
    """
    Completion barrier between the stages.

    Confirms the staging table is published and carries the validity flag.

    Returns:
        Number of staged rows
    """
    staged = connector.read_table(table_name)
    if "is_invalid" not in staged.columns:
        raise SchemaContractError(f"{table_name} is missing the is_invalid column")

    valid = int((~staged["is_invalid"].astype(bool)).sum())
    logger.info(f"Staging check: {len(staged)} rows in {table_name}, {valid} valid")
    return len(staged)


def _run_stage(
    stage: str,
    func: Callable[[], Dict],
    run_id: str,
    metrics: MetricsCollector,
    slog: StructuredLogger
) -> Dict:
    """Run one stage, converting pipeline failures into a failed result."""
    slog.log_task_start(stage, run_id)
    start = time.time()

    try:
        result = func()
        status = "success"
    except PipelineError as e:
        status = "failed"
        result = {
            "status": status,
            "error": str(e),
            "error_type": type(e).__name__
        }
        slog.error(f"Stage {stage} failed: {e}", extra={"stage": stage}, exception=e)
        metrics.record_error(PIPELINE_NAME, type(e).__name__)

    duration = time.time() - start
    result["stage"] = stage
    result["duration_seconds"] = round(duration, 3)

    metrics.record_pipeline_run(
        PIPELINE_NAME,
        duration,
        status,
        rows_processed=result.get("rows_written", 0),
        table_name=result.get("table"),
        stage=stage
    )
    slog.log_task_end(stage, run_id, status, duration)
    return result


def run_bookings_job(
    settings_path: str = "jobs/job_settings.json",
    stage: str = "all",
    workers: Optional[int] = None,
    connector=None,
    metrics: Optional[MetricsCollector] = None,
    slog: Optional[StructuredLogger] = None
) -> Dict:
    """
    Run the bookings pipeline.

    Args:
        settings_path: Path to job settings JSON
        stage: 'staging', 'curated' or 'all'
        workers: Worker threads (overrides execution.workers)
        connector: Pre-built storage connector (built from settings otherwise)
        metrics: MetricsCollector (built from settings otherwise)
        slog: StructuredLogger (built from settings otherwise)

    Returns:
        Run summary dict with overall status and per-stage results
    """
    if stage not in STAGES:
        raise ValueError(f"Unknown stage: {stage}")

    settings = load_job_settings(settings_path)
    job_name = settings["job_settings"]["name"]
    stages = settings["processing_stages"]
    execution = settings.get("execution", {})
    workers = workers or execution.get("workers", 1)
    chunk_size = execution.get("chunk_size", 50000)
    log_settings = settings.get("logging", {})

    metrics = metrics or MetricsCollector.from_config(settings.get("metrics"))
    slog = slog or build_structured_logger(log_settings)

    run_id = new_trace_id()
    job_start = datetime.now()
    results: List[Dict] = []

    with slog.context(run_id=run_id, trace_id=run_id, job_name=job_name):
        slog.log_pipeline_start(job_name, run_id, {"stage": stage, "workers": workers})

        try:
            connector = connector or build_connector(settings["storage"])
        except PipelineError as e:
            slog.error(f"Storage unavailable: {e}", exception=e)
            metrics.record_error(PIPELINE_NAME, type(e).__name__)
            results.append({"stage": "connect", "status": "failed", "error": str(e)})
            connector = None

        if connector is not None and stage in ("staging", "all"):
            staging_config = stages["staging"]
            contract_dir = staging_config.get("schema_contract_dir", str(Path(staging_config["config"]).parent))
            results.append(_run_stage(
                "staging",
                lambda: run_staging(
                    resolve_path(staging_config["config"]),
                    connector,
                    schema_contract=SchemaContract(
                        resolve_path(contract_dir), metrics=metrics
                    ),
                    rejection_handler=RejectionHandler(connector, metrics=metrics),
                    workers=workers,
                    chunk_size=chunk_size
                ),
                run_id, metrics, slog
            ))

        staging_ok = all(r["status"] == "success" for r in results)

        if connector is not None and stage in ("curated", "all") and staging_ok:
            curated_config = stages["curated"]

            def curated():
                staging_table = read_config(resolve_path(stages["staging"]["config"]))["target_table"]
                check_staging(connector, staging_table)
                return run_dim_bookings(
                    resolve_path(curated_config["config"]),
                    connector,
                    dimension_metrics=DimensionMetrics(metrics),
                    workers=workers,
                    chunk_size=chunk_size
                )

            results.append(_run_stage("curated", curated, run_id, metrics, slog))
        elif stage == "all" and not staging_ok:
            slog.warning("Skipping curated stage: staging did not complete")

        job_end = datetime.now()
        duration = (job_end - job_start).total_seconds()
        status = "success" if all(r["status"] == "success" for r in results) else "failed"
        rows_processed = sum(r.get("rows_written", 0) for r in results)

        slog.log_pipeline_end(job_name, run_id, status, duration, rows_processed)

    summary = {
        "job_name": job_name,
        "run_id": run_id,
        "status": status,
        "stage": stage,
        "start_time": job_start.isoformat(),
        "end_time": job_end.isoformat(),
        "duration_seconds": duration,
        "stages_success": sum(1 for r in results if r["status"] == "success"),
        "stages_failed": sum(1 for r in results if r["status"] == "failed"),
        "total_rows_written": rows_processed,
        "results": results
    }

    # Save results
    log_dir = log_settings.get("log_dir", "logs/processing")
    os.makedirs(log_dir, exist_ok=True)
    results_file = f"{log_dir}/bookings_results_{job_start.strftime('%Y%m%d_%H%M%S')}_{run_id}.json"
    with open(results_file, 'w') as f:
        json.dump(summary, f, indent=2, default=str)
    summary["results_file"] = results_file

    metrics.push_to_prometheus()

    logger.info("=" * 60)
    logger.info(f"JOB COMPLETE: {status}")
    logger.info(f"Duration: {duration:.2f} seconds")
    logger.info(f"Total Rows: {rows_processed}")
    logger.info(f"Results saved to: {results_file}")
    logger.info("=" * 60)

    return summary


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run Bookings Job")
    parser.add_argument("--settings", default="jobs/job_settings.json", help="Job settings JSON")
    parser.add_argument("--stage", choices=STAGES, default="all", help="Stage to run")
    parser.add_argument("--workers", type=int, help="Worker threads (defaults to job settings)")

    args = parser.parse_args()

    configure_logging(load_job_settings(args.settings).get("logging", {}), datetime.now())

    result = run_bookings_job(args.settings, args.stage, args.workers)

    if result["status"] != "success":
        sys.exit(1)
