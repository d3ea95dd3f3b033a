"""
Common Code Module
==================

Shared utilities and errors for the bookings processing pipelines.
"""

from .errors import (
    PipelineError,
    ConfigError,
    SourceUnavailableError,
    SinkUnavailableError,
    SchemaContractError,
    DataQualityError
)
from .utils import (
    parse_ddmmyy,
    parse_decimal,
    surrogate_key,
    bucketize,
    run_in_chunks,
    get_minio_client,
    read_config,
    generate_batch_id,
    read_landing_csv
)

__all__ = [
    "PipelineError",
    "ConfigError",
    "SourceUnavailableError",
    "SinkUnavailableError",
    "SchemaContractError",
    "DataQualityError",
    "parse_ddmmyy",
    "parse_decimal",
    "surrogate_key",
    "bucketize",
    "run_in_chunks",
    "get_minio_client",
    "read_config",
    "generate_batch_id",
    "read_landing_csv"
]
