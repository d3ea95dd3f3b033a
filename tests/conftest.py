"""Shared pytest fixtures for the bookings pipeline tests."""

from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import Dict, List

import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ingestion.connectors import LocalConnector  # noqa: E402
from observability import MetricsCollector  # noqa: E402
from processing.common_code.errors import SourceUnavailableError  # noqa: E402
from processing.common_code.utils import read_config  # noqa: E402

STAGING_CONFIG_PATH = PROJECT_ROOT / "processing/common_code/staging/configs/stg_bookings.json"
CURATED_CONFIG_PATH = PROJECT_ROOT / "processing/common_code/curated/configs/dim_bookings.json"

LANDING_HEADER = (
    "booking_id,listing_id,host_id,guest_id,check_in_date,check_out_date,"
    "total_price,currency,booking_status,created_at"
)

ROUND_TRIP_ROW = "BK001,LST001,HOST001,GUEST001,15/03/24,18/03/24,450,USD,confirmed,01/03/24"


def _read_landing_text(text: str) -> pd.DataFrame:
    return pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, na_values=[""])


class MemoryConnector:
    """In-memory stand-in for the storage connectors."""

    def __init__(self, landing: pd.DataFrame = None):
        self.landing = landing if landing is not None else pd.DataFrame()
        self.tables: Dict[str, pd.DataFrame] = {}
        self.quarantine: List[pd.DataFrame] = []
        self.lines_skipped = 0

    def read_landing(self, bucket: str, prefix: str) -> pd.DataFrame:
        return self.landing.copy()

    def read_table(self, table: str) -> pd.DataFrame:
        if table not in self.tables:
            raise SourceUnavailableError(f"Table not found: {table}")
        return self.tables[table].copy()

    def write_table(self, df: pd.DataFrame, table: str) -> str:
        self.tables[table] = df.copy()
        return f"memory://{table}"

    def write_quarantine(self, df: pd.DataFrame, table: str, batch_id: str) -> str:
        self.quarantine.append(df.copy())
        return f"memory://quarantine/{table}/{batch_id}"


@pytest.fixture
def landing_frame():
    """Build a landing DataFrame from CSV data lines (header added)."""
    def build(*rows: str) -> pd.DataFrame:
        return _read_landing_text("\n".join([LANDING_HEADER, *rows]) + "\n")
    return build


@pytest.fixture
def staging_config() -> Dict:
    return read_config(str(STAGING_CONFIG_PATH))


@pytest.fixture
def curated_config() -> Dict:
    return read_config(str(CURATED_CONFIG_PATH))


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector(backend="memory")


@pytest.fixture
def memory_connector() -> MemoryConnector:
    return MemoryConnector()


@pytest.fixture
def local_connector(tmp_path) -> LocalConnector:
    connector = LocalConnector({"root": str(tmp_path / "data")})
    connector.connect()
    return connector


@pytest.fixture
def write_landing_file(tmp_path):
    """Write landing CSV data lines to data/landing/bookings/<name>."""
    def write(name: str, *rows: str) -> Path:
        path = tmp_path / "data" / "landing" / "bookings" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join([LANDING_HEADER, *rows]) + "\n")
        return path
    return write


@pytest.fixture
def write_landing_bytes(tmp_path):
    """Write raw bytes (header added) to data/landing/bookings/<name>."""
    def write(name: str, *rows: bytes) -> Path:
        path = tmp_path / "data" / "landing" / "bookings" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\n".join([LANDING_HEADER.encode(), *rows]) + b"\n")
        return path
    return write
