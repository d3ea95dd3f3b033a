#!/usr/bin/env python3
"""
Bookings Dimension Job (stg_bookings -> dim_bookings)
=====================================================

Builds the analytics-ready bookings dimension from valid staged rows.

Business logic:
- Surrogate key (md5 of booking_id)
- Price per night and realized revenue
- Status display labels and boolean flags
- Stay and lead-time categories
- Check-in time dimensions (ISO-8601 weeks: Monday start, Monday=1..Sunday=7)

The table is rebuilt in full on every run and published with a single
atomic replace. Rows that disappear upstream simply disappear here.
"""

import json
import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from functools import partial
from typing import Any, Callable, Dict, Optional

import pandas as pd

from processing.common_code.utils import (
    bucketize,
    read_config,
    run_in_chunks,
    surrogate_key
)
from quality_framework.schema_contract import DimensionMetrics

logger = logging.getLogger(__name__)


CENTS = Decimal("0.01")
ZERO_REVENUE = Decimal("0.00")

STATUS_DISPLAY = {
    "confirmed": "Confirmed",
    "pending": "Pending Confirmation",
    "cancelled": "Cancelled",
    "completed": "Completed",
}
UNKNOWN_LABEL = "Unknown"
SUCCESSFUL_STATUSES = ["confirmed", "completed"]

STAY_BUCKETS = [
    (2, "Weekend", 1),
    (7, "Week", 2),
    (30, "Monthly", 3),
    (math.inf, "Long-term", 4),
]
STAY_UNKNOWN = (UNKNOWN_LABEL, 0)

# Day counts are integers, so an upper bound of -1 covers every negative lead time
LEAD_TIME_BUCKETS = [
    (-1, "Historical", 1),
    (1, "Same Day", 2),
    (7, "Last Minute (1-7 days)", 3),
    (30, "Short Notice (8-30 days)", 4),
    (90, "Advance (31-90 days)", 5),
    (math.inf, "Far Advance (90+ days)", 6),
]
LEAD_TIME_UNKNOWN = (UNKNOWN_LABEL, 0)

WEEKEND_DAYS = [5, 6]
DAY_NAMES = {0: "Mon", 1: "Tue", 2: "Wed", 3: "Thu", 4: "Fri", 5: "Sat", 6: "Sun"}

DIM_COLUMNS = [
    "booking_key",
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
    "price_per_night",
    "realized_revenue",
    "booking_status",
    "booking_status_display",
    "is_confirmed",
    "is_pending",
    "is_cancelled",
    "is_completed",
    "is_successful",
    "stay_category",
    "stay_category_order",
    "lead_time_days",
    "lead_time_category",
    "check_in_week",
    "check_in_month",
    "check_in_quarter",
    "check_in_year",
    "check_in_month_num",
    "check_in_day_of_week",
    "check_in_day_name",
    "is_weekend_checkin",
    "_updated_at",
]


def price_per_night(total_price: Any, nights_booked: Any) -> Optional[Decimal]:
    """Total price divided by nights, rounded to cents; None unless nights > 0."""
    if total_price is None or pd.isna(total_price):
        return None
    if nights_booked is None or pd.isna(nights_booked) or nights_booked <= 0:
        return None
    per_night = Decimal(str(total_price)) / Decimal(int(nights_booked))
    return per_night.quantize(CENTS, rounding=ROUND_HALF_UP)


def realized_revenue(total_price: Any, booking_status: Any) -> Optional[Decimal]:
    """Total price for confirmed/completed bookings, zero for everything else."""
    if isinstance(booking_status, str) and booking_status in SUCCESSFUL_STATUSES:
        if total_price is None or pd.isna(total_price):
            return None
        return Decimal(str(total_price))
    return ZERO_REVENUE


def enrich_bookings(df: pd.DataFrame, updated_at: datetime) -> pd.DataFrame:
    """
    Derive the dimension columns for valid staged bookings.

    Every derived field is a function of its own row only. A null driving
    value yields a null (or Unknown) derived value instead of an error.

    Args:
        df: Valid staged rows
        updated_at: Execution timestamp stamped on every row

    Returns:
        DataFrame with DIM_COLUMNS, index preserved from input
    """
    check_in = pd.to_datetime(df["check_in_date"])
    check_out = pd.to_datetime(df["check_out_date"])
    created_at = pd.to_datetime(df["created_at"])
    nights = df["nights_booked"].astype("Int64")
    status = df["booking_status"].astype(object)
    total_price = df["total_price"].astype(object)

    stay = [bucketize(n, STAY_BUCKETS, STAY_UNKNOWN) for n in nights]
    lead_time_days = (check_in - created_at).dt.days.astype("Int64")
    lead_time_category = [
        bucketize(d, LEAD_TIME_BUCKETS, LEAD_TIME_UNKNOWN)[0] for d in lead_time_days
    ]

    weekday = check_in.dt.dayofweek
    is_weekend = weekday.isin(WEEKEND_DAYS).astype("boolean").mask(check_in.isna())

    enriched = pd.DataFrame(
        {
            "booking_key": df["booking_id"].map(surrogate_key),
            "booking_id": df["booking_id"],
            "listing_id": df["listing_id"],
            "host_id": df["host_id"],
            "guest_id": df["guest_id"],
            "check_in_date": check_in,
            "check_out_date": check_out,
            "created_at": created_at,
            "nights_booked": nights,
            "total_price": total_price,
            "currency": df["currency"],
            "price_per_night": pd.Series(
                [price_per_night(p, n) for p, n in zip(total_price, nights)],
                index=df.index, dtype=object
            ),
            "realized_revenue": pd.Series(
                [realized_revenue(p, s) for p, s in zip(total_price, status)],
                index=df.index, dtype=object
            ),
            "booking_status": df["booking_status"],
            "booking_status_display": status.map(STATUS_DISPLAY).fillna(UNKNOWN_LABEL),
            "is_confirmed": status.isin(["confirmed"]),
            "is_pending": status.isin(["pending"]),
            "is_cancelled": status.isin(["cancelled"]),
            "is_completed": status.isin(["completed"]),
            "is_successful": status.isin(SUCCESSFUL_STATUSES),
            "stay_category": pd.Series(
                [label for label, _ in stay], index=df.index, dtype=object
            ),
            "stay_category_order": pd.Series(
                [order for _, order in stay], index=df.index, dtype="int64"
            ),
            "lead_time_days": lead_time_days,
            "lead_time_category": pd.Series(lead_time_category, index=df.index, dtype=object),
            "check_in_week": check_in.dt.normalize() - pd.to_timedelta(weekday, unit="D"),
            "check_in_month": check_in.dt.to_period("M").dt.to_timestamp(),
            "check_in_quarter": check_in.dt.to_period("Q").dt.to_timestamp(),
            "check_in_year": check_in.dt.year.astype("Int64"),
            "check_in_month_num": check_in.dt.month.astype("Int64"),
            "check_in_day_of_week": (weekday + 1).astype("Int64"),
            "check_in_day_name": weekday.map(DAY_NAMES),
            "is_weekend_checkin": is_weekend,
            "_updated_at": pd.Timestamp(updated_at),
        },
        index=df.index
    )
    return enriched[DIM_COLUMNS]


class DimBookingsBuilder:
    """Curated processor: stg_bookings -> dim_bookings (full rebuild)."""

    def __init__(
        self,
        config: Dict,
        connector,
        dimension_metrics: Optional[DimensionMetrics] = None,
        workers: int = 1,
        chunk_size: int = 50000,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config
        self.connector = connector
        self.dimension_metrics = dimension_metrics or DimensionMetrics()
        self.workers = workers
        self.chunk_size = chunk_size
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self) -> Dict:
        """Execute the dimension build."""
        source_table = self.config["source_table"]
        target_table = self.config["target_table"]
        unique_key = self.config.get("unique_key", "booking_id")
        key_column = self.config.get("surrogate_key", "booking_key")
        logger.info(f"Starting dimension build: {source_table} -> {target_table}")

        # 1. Read the fully materialized staging table
        staged = self.connector.read_table(source_table)
        rows_loaded = len(staged)
        logger.info(f"  Loaded {rows_loaded} staged rows")

        # 2. Valid rows only
        valid = staged[~staged["is_invalid"].astype(bool)]
        logger.info(f"  Excluded {rows_loaded - len(valid)} invalid rows")

        # 3. One row per natural key (landing delivery is at-least-once)
        deduped = valid.drop_duplicates(subset=[unique_key], keep="last")
        duplicates = len(valid) - len(deduped)
        if duplicates:
            logger.warning(f"  Collapsed {duplicates} duplicate {unique_key} rows")

        # 4. Enrich
        updated_at = self.clock()
        enriched = run_in_chunks(
            deduped,
            partial(enrich_bookings, updated_at=updated_at),
            self.workers,
            self.chunk_size
        ).reset_index(drop=True)

        # 5. Blocking checks before publishing
        self.dimension_metrics.assert_unique(enriched, key_column, target_table)
        self.dimension_metrics.assert_not_null(
            enriched,
            self.config.get("not_null_columns", [key_column, unique_key]),
            target_table
        )
        quality = self.dimension_metrics.calculate_all_dimensions(enriched, target_table, "curated")

        # 6. Replace target
        output_path = self.connector.write_table(enriched, target_table)
        logger.info(f"✓ Complete: {len(enriched)} rows written to {output_path}")

        return {
            "status": "success",
            "table": target_table,
            "rows_loaded": rows_loaded,
            "rows_written": len(enriched),
            "rows_excluded": rows_loaded - len(valid),
            "duplicates_removed": duplicates,
            "quality_score": quality["overall_quality_score"],
            "updated_at": updated_at.isoformat(),
            "output_path": output_path
        }


def run_dim_bookings(
    config_path: str,
    connector,
    dimension_metrics: Optional[DimensionMetrics] = None,
    workers: int = 1,
    chunk_size: int = 50000
) -> Dict:
    """Run the dimension model from a config file."""
    config = read_config(config_path)
    builder = DimBookingsBuilder(
        config,
        connector,
        dimension_metrics=dimension_metrics,
        workers=workers,
        chunk_size=chunk_size
    )
    return builder.run()


if __name__ == "__main__":
    import argparse

    from ingestion.connectors import build_connector

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Bookings Dimension Job")
    parser.add_argument("--config", default="processing/common_code/curated/configs/dim_bookings.json")
    parser.add_argument("--storage", default="jobs/job_settings.json", help="Job settings with storage section")

    args = parser.parse_args()

    storage = read_config(args.storage)["storage"]
    result = run_dim_bookings(args.config, build_connector(storage))
    print(json.dumps(result, indent=2, default=str))
