"""
Bookings Quality Framework
==========================

Quality framework with:
- Landing schema contract (missing columns fatal, drift logged)
- Dimension metrics (completeness, uniqueness) and blocking checks
- Rejection handling and quarantine

Usage:
    from quality_framework import SchemaContract, DimensionMetrics, RejectionHandler

    # Schema validation
    contract = SchemaContract(staging_config_dir="processing/common_code/staging/configs")
    result = contract.validate_landing(df, "raw_bookings")

    # Dimension metrics
    metrics = DimensionMetrics()
    scores = metrics.calculate_all_dimensions(df, "dim_bookings", "curated")
    metrics.assert_unique(df, "booking_key", "dim_bookings")

    # Rejection handling
    handler = RejectionHandler(connector=connector)
    clean_df, rejected_df, summary = handler.process_dataframe(staged_df, "stg_bookings")
"""

from .schema_contract import SchemaContract, DimensionMetrics
from .rejection_handler import RejectionHandler, RejectionRule

__version__ = "1.0.0"
__all__ = [
    "SchemaContract",
    "DimensionMetrics",
    "RejectionHandler",
    "RejectionRule"
]
