#!/usr/bin/env python3
"""
Bookings Staging Job (Landing Zone -> stg_bookings)
===================================================

Cleans and casts raw text booking rows into typed, validated rows.

Core Logic:
1. Read raw CSV files from the landing zone (every column as text)
2. Check the landing schema contract
3. Trim every text field
4. Drop rows whose booking_id is null or empty
5. Parse DD/MM/YY dates and fixed-point prices (bad values become null)
6. Derive nights_booked and the is_invalid flag
7. Quarantine invalid rows with their rejection reasons
8. Replace the stg_bookings table atomically
"""

import json
import logging
from functools import partial
from typing import Dict

import pandas as pd

from processing.common_code.errors import SchemaContractError
from processing.common_code.utils import (
    generate_batch_id,
    parse_ddmmyy,
    parse_decimal,
    read_config,
    run_in_chunks
)

logger = logging.getLogger(__name__)


LANDING_COLUMNS = [
    "booking_id",
    "listing_id",
    "host_id",
    "guest_id",
    "check_in_date",
    "check_out_date",
    "total_price",
    "currency",
    "booking_status",
    "created_at",
]

STAGING_COLUMNS = [
    "booking_id",
    "listing_id",
    "host_id",
    "guest_id",
    "check_in_date",
    "check_out_date",
    "created_at",
    "nights_booked",
    "total_price",
    "currency",
    "booking_status",
    "is_invalid",
]


def parse_date_column(series: pd.Series, century_start: int = 1970) -> pd.Series:
    """Parse a text column of DD/MM/YY dates into datetime64, NaT when unparseable."""
    parsed = series.astype(object).map(lambda value: parse_ddmmyy(value, century_start)).astype(object)
    return pd.to_datetime(parsed, errors="coerce")


def _is_negative(value) -> bool:
    return value is not None and not pd.isna(value) and value < 0


def clean_bookings(
    df: pd.DataFrame,
    century_start: int = 1970,
    precision: int = 12,
    scale: int = 2
) -> pd.DataFrame:
    """
    Clean and type landing booking rows.

    Every landing column is trimmed first. Rows without a booking_id are
    dropped. Unparseable dates and prices become null instead of raising,
    and the row is flagged through ``is_invalid``.

    Args:
        df: Landing rows, all columns text
        century_start: First year of the two-digit year window
        precision: Decimal precision for total_price
        scale: Decimal scale for total_price

    Returns:
        Staged DataFrame with STAGING_COLUMNS, index preserved from input
    """
    missing = [col for col in LANDING_COLUMNS if col not in df.columns]
    if missing:
        raise SchemaContractError(f"Landing data missing required columns: {missing}")

    trimmed = pd.DataFrame(
        {col: df[col].astype("string").str.strip() for col in LANDING_COLUMNS},
        index=df.index
    )

    has_id = trimmed["booking_id"].notna() & trimmed["booking_id"].ne("")
    trimmed = trimmed[has_id.fillna(False).astype(bool)]

    check_in = parse_date_column(trimmed["check_in_date"], century_start)
    check_out = parse_date_column(trimmed["check_out_date"], century_start)
    created_at = parse_date_column(trimmed["created_at"], century_start)

    nights_booked = (check_out - check_in).dt.days.astype("Int64")

    total_price = trimmed["total_price"].astype(object).map(
        lambda value: parse_decimal(value, precision, scale)
    ).astype(object)

    is_invalid = (
        trimmed["booking_id"].fillna("").eq("")
        | check_in.isna()
        | check_out.isna()
        | (check_out < check_in)
        | total_price.map(_is_negative).astype(bool)
    )

    staged = pd.DataFrame(
        {
            "booking_id": trimmed["booking_id"],
            "listing_id": trimmed["listing_id"],
            "host_id": trimmed["host_id"],
            "guest_id": trimmed["guest_id"],
            "check_in_date": check_in,
            "check_out_date": check_out,
            "created_at": created_at,
            "nights_booked": nights_booked,
            "total_price": total_price,
            "currency": trimmed["currency"].str.upper(),
            "booking_status": trimmed["booking_status"].str.lower(),
            "is_invalid": is_invalid.astype(bool),
        },
        index=trimmed.index
    )
    return staged[STAGING_COLUMNS]


class BookingStaging:
    """Staging processor: landing zone bookings -> stg_bookings."""

    def __init__(
        self,
        config: Dict,
        connector,
        schema_contract=None,
        rejection_handler=None,
        workers: int = 1,
        chunk_size: int = 50000
    ):
        self.config = config
        self.connector = connector
        self.schema_contract = schema_contract
        self.rejection_handler = rejection_handler
        self.workers = workers
        self.chunk_size = chunk_size
        self.batch_id = generate_batch_id()

    def run(self) -> Dict:
        """Execute the staging pipeline."""
        table_name = self.config["landing_zone_table"]
        target_table = self.config["target_table"]
        logger.info(f"Starting staging: {table_name} -> {target_table}")

        # 1. Load raw data (fatal if the landing zone cannot be read)
        df = self.connector.read_landing(
            self.config["landing_zone_bucket"],
            self.config["landing_zone_path"]
        )
        rows_loaded = len(df)
        lines_skipped = getattr(self.connector, "lines_skipped", 0)
        if lines_skipped:
            logger.warning(f"  Skipped {lines_skipped} malformed landing lines")
        if df.empty:
            logger.warning("  No landing data found, writing empty staging table")
            df = pd.DataFrame(columns=LANDING_COLUMNS, dtype="string")
        else:
            logger.info(f"  Loaded {rows_loaded} rows")

        # 2. Schema contract
        if self.schema_contract is not None:
            self.schema_contract.validate_landing(df, table_name)

        # 3. Clean & type
        transform = partial(
            clean_bookings,
            century_start=self.config.get("century_start", 1970),
            precision=self.config.get("price_precision", 12),
            scale=self.config.get("price_scale", 2)
        )
        staged = run_in_chunks(df, transform, self.workers, self.chunk_size)
        rows_dropped = rows_loaded - len(staged)
        rows_invalid = int(staged["is_invalid"].sum())
        logger.info(f"  Dropped {rows_dropped} rows without booking_id")
        logger.info(f"  Flagged {rows_invalid} invalid rows")

        # 4. Audit column
        staged = staged.reset_index(drop=True)
        staged["_batch_id"] = self.batch_id

        # 5. Replace target
        output_path = self.connector.write_table(staged, target_table)
        logger.info(f"✓ Complete: {len(staged)} rows written to {output_path}")

        # 6. Quarantine invalid rows of the published batch
        quarantine_path = ""
        if self.rejection_handler is not None:
            _, rejected, _ = self.rejection_handler.process_dataframe(
                staged.drop(columns=["_batch_id"]), target_table
            )
            if self.config.get("quarantine_invalid", True):
                quarantine_path = self.rejection_handler.quarantine_records(
                    rejected, target_table, self.batch_id
                )

        return {
            "status": "success",
            "table": target_table,
            "rows_loaded": rows_loaded,
            "rows_written": len(staged),
            "rows_invalid": rows_invalid,
            "rows_dropped": rows_dropped,
            "lines_skipped": lines_skipped,
            "output_path": output_path,
            "quarantine_path": quarantine_path
        }


def run_staging(
    config_path: str,
    connector,
    schema_contract=None,
    rejection_handler=None,
    workers: int = 1,
    chunk_size: int = 50000
) -> Dict:
    """Run the staging model from a config file."""
    config = read_config(config_path)
    processor = BookingStaging(
        config,
        connector,
        schema_contract=schema_contract,
        rejection_handler=rejection_handler,
        workers=workers,
        chunk_size=chunk_size
    )
    return processor.run()


if __name__ == "__main__":
    import argparse

    from ingestion.connectors import build_connector

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Bookings Staging Job")
    parser.add_argument("--config", default="processing/common_code/staging/configs/stg_bookings.json")
    parser.add_argument("--storage", default="jobs/job_settings.json", help="Job settings with storage section")

    args = parser.parse_args()

    storage = read_config(args.storage)["storage"]
    result = run_staging(args.config, build_connector(storage))
    print(json.dumps(result, indent=2, default=str))
