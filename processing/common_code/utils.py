"""
Common Utilities
================

Shared parsing, hashing and bucketing helpers for the bookings pipeline.
"""

import hashlib
import json
import logging
import re
from bisect import bisect_left
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from minio import Minio

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Same placeholder the warehouse surrogate-key macro hashes for NULL inputs
SURROGATE_KEY_NULL = "_dbt_utils_surrogate_key_null_"

_DDMMYY = re.compile(r"^([0-9]{1,2})/([0-9]{1,2})/([0-9]{2})$")
_NUMERIC = re.compile(r"^[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?$")

Bucket = Tuple[float, str, int]


def get_minio_client(config: Dict = None) -> Minio:
    """
    Create and return a MinIO client.

    Args:
        config: Optional config dict with endpoint, access_key, secret_key

    Returns:
        Minio client instance
    """
    if config is None:
        config = {
            "endpoint": "localhost:9000",
            "access_key": "minioadmin",
            "secret_key": "minioadmin123",
            "secure": False
        }

    return Minio(
        endpoint=config["endpoint"],
        access_key=config["access_key"],
        secret_key=config["secret_key"],
        secure=config.get("secure", False)
    )


def read_config(config_path: str) -> Dict:
    """
    Read JSON configuration file.

    Args:
        config_path: Path to config file

    Returns:
        Config dictionary

    Raises:
        ConfigError: If the file is missing or is not valid JSON
    """
    try:
        with open(config_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e


def parse_ddmmyy(value: Any, century_start: int = 1970) -> Optional[date]:
    """
    Parse a DD/MM/YY date string.

    Two-digit years are placed in the hundred-year window starting at
    ``century_start`` (70..99 -> 19xx, 00..69 -> 20xx for the default).

    Args:
        value: Raw value
        century_start: First year of the two-digit year window

    Returns:
        Parsed date, or None if the value does not match the pattern
    """
    if value is None or pd.isna(value):
        return None

    match = _DDMMYY.match(str(value).strip())
    if not match:
        return None

    day, month, yy = (int(part) for part in match.groups())
    year = century_start - century_start % 100 + yy
    if year < century_start:
        year += 100

    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_decimal(value: Any, precision: int = 12, scale: int = 2) -> Optional[Decimal]:
    """
    Parse a fixed-point decimal from text.

    Args:
        value: Value to parse
        precision: Total number of significant digits allowed
        scale: Number of fractional digits kept (rounded half-up)

    Returns:
        Decimal with ``scale`` fractional digits, or None if the text is
        not numeric or does not fit the precision
    """
    if value is None or pd.isna(value):
        return None

    value_str = str(value).strip()
    if not _NUMERIC.match(value_str):
        return None

    try:
        quantized = Decimal(value_str).quantize(
            Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP
        )
    except InvalidOperation:
        return None

    if abs(quantized) >= Decimal(10) ** (precision - scale):
        return None

    return quantized


def read_landing_csv(source: Any, source_name: str) -> Tuple[pd.DataFrame, int]:
    """
    Read one landing CSV file with every column as text.

    Undecodable bytes are replaced with U+FFFD and lines with more fields
    than the header are skipped with a warning.

    Args:
        source: Path or binary buffer holding the CSV
        source_name: Name used in log messages

    Returns:
        Tuple of (DataFrame, number of skipped lines)
    """
    skipped: List[List[str]] = []

    def skip_line(fields: List[str]) -> None:
        skipped.append(fields)
        logger.warning(f"  Skipped malformed line in {source_name}: {len(fields)} fields")
        return None

    df = pd.read_csv(
        source,
        dtype=str,
        keep_default_na=False,
        na_values=[""],
        encoding_errors="replace",
        on_bad_lines=skip_line,
        engine="python"
    )
    return df, len(skipped)


def surrogate_key(value: Any) -> str:
    """
    Deterministic md5 surrogate key for a natural key value.

    Args:
        value: Natural key

    Returns:
        32-character hex digest
    """
    if value is None or pd.isna(value):
        text = SURROGATE_KEY_NULL
    else:
        text = str(value)
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def bucketize(value: Any, buckets: Sequence[Bucket], unknown: Tuple[str, int]) -> Tuple[str, int]:
    """
    Map a value onto an ordered list of (upper_bound, label, order) buckets.

    Bounds are inclusive and must be ascending; the first bucket whose bound
    is >= value wins. Null values map to ``unknown``.

    Args:
        value: Driving numeric value
        buckets: Ascending (upper_bound, label, order) tuples, last bound math.inf
        unknown: (label, order) returned for null values

    Returns:
        (label, order) tuple
    """
    if value is None or pd.isna(value):
        return unknown

    bounds = [bound for bound, _, _ in buckets]
    index = bisect_left(bounds, value)
    if index >= len(buckets):
        return unknown
    _, label, order = buckets[index]
    return label, order


def run_in_chunks(
    df: pd.DataFrame,
    transform: Callable[[pd.DataFrame], pd.DataFrame],
    workers: int = 1,
    chunk_size: int = 50000
) -> pd.DataFrame:
    """
    Apply a row-local transform to contiguous chunks on a thread pool.

    Chunks are concatenated back in their original order. The transform
    must not depend on rows outside its own chunk.

    Args:
        df: Input DataFrame
        transform: Function from DataFrame to DataFrame
        workers: Number of worker threads
        chunk_size: Rows per chunk

    Returns:
        Concatenated transform output
    """
    if workers <= 1 or len(df) <= chunk_size:
        return transform(df)

    chunks = [df.iloc[start:start + chunk_size] for start in range(0, len(df), chunk_size)]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        results: List[pd.DataFrame] = list(executor.map(transform, chunks))

    return pd.concat(results)


def generate_batch_id() -> str:
    """
    Generate a unique batch ID based on current timestamp.

    Returns:
        Batch ID string
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")
