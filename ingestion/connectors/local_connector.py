"""
Local Filesystem Connector
==========================

Filesystem counterpart of the MinIO connector, used for local runs and
tests. Buckets map to directories under ``root``.

Tables are single Parquet files. A new table is written to a temporary file
in the same directory and moved over the old one with ``os.replace``, so
readers see either the previous or the new table, never a partial one.
"""

import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict

import pandas as pd

from processing.common_code.errors import SinkUnavailableError, SourceUnavailableError
from processing.common_code.utils import read_landing_csv

logger = logging.getLogger(__name__)


class LocalConnector:
    """Filesystem storage connector."""

    def __init__(self, config: Dict):
        self.config = config
        self.root = Path(config.get("root", "data"))
        self.bucket = config.get("warehouse_bucket", "warehouse")
        self.quarantine_bucket = config.get("quarantine_bucket", "rejected-data")
        self.lines_skipped = 0

    def connect(self):
        """Ensure output directories exist."""
        for bucket in (self.bucket, self.quarantine_bucket):
            (self.root / bucket).mkdir(parents=True, exist_ok=True)
        logger.info(f"Using local storage at {self.root}")

    def _table_path(self, table: str) -> Path:
        return self.root / self.bucket / f"{table}.parquet"

    def read_landing(self, bucket: str, prefix: str) -> pd.DataFrame:
        """
        Load all landing CSV files under ``root/bucket/prefix`` as text columns.

        Malformed lines are skipped and counted in ``lines_skipped``.

        Raises:
            SourceUnavailableError: If the landing directory is missing or unreadable
        """
        landing_dir = self.root / bucket / prefix
        if not landing_dir.is_dir():
            raise SourceUnavailableError(f"Landing directory not found: {landing_dir}")

        self.lines_skipped = 0
        dfs = []
        try:
            for path in sorted(landing_dir.rglob("*.csv")):
                df, skipped = read_landing_csv(path, str(path))
                dfs.append(df)
                self.lines_skipped += skipped
        except (OSError, ValueError) as e:
            raise SourceUnavailableError(f"Cannot read landing files in {landing_dir}: {e}") from e

        logger.info(f"  Read {len(dfs)} landing files from {landing_dir}")
        return pd.concat(dfs, ignore_index=True) if dfs else pd.DataFrame()

    def read_table(self, table: str) -> pd.DataFrame:
        """
        Read a table.

        Raises:
            SourceUnavailableError: If the table does not exist or cannot be read
        """
        path = self._table_path(table)
        if not path.exists():
            raise SourceUnavailableError(f"Table not found: {path}")

        try:
            return pd.read_parquet(path)
        except (OSError, ValueError) as e:
            raise SourceUnavailableError(f"Cannot read table {path}: {e}") from e

    def write_table(self, df: pd.DataFrame, table: str) -> str:
        """
        Replace a table atomically.

        Raises:
            SinkUnavailableError: If the write fails (previous table is kept)
        """
        path = self._table_path(table)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            df.to_parquet(tmp_path, index=False, engine='pyarrow')
            os.replace(tmp_path, path)
        except Exception as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise SinkUnavailableError(f"Cannot write table {path}: {e}") from e

        logger.info(f"Published {len(df)} rows to {path}")
        return str(path)

    def write_quarantine(self, df: pd.DataFrame, table: str, batch_id: str) -> str:
        """Write rejected rows under ``root/quarantine_bucket/table/YYYY/MM/DD``."""
        date_path = datetime.now().strftime("%Y/%m/%d")
        path = self.root / self.quarantine_bucket / table / date_path / f"rejected_{table}_{batch_id}.parquet"

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            df.to_parquet(path, index=False, engine='pyarrow')
        except Exception as e:
            raise SinkUnavailableError(f"Cannot write quarantine {path}: {e}") from e

        return str(path)
