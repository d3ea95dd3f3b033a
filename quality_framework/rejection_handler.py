"""
Rejection Handler & Data Quarantine (Soft Contract)
====================================================

Explains and quarantines staged booking rows flagged as invalid.
The pipeline continues (soft contract): invalid rows stay in the staging
table with ``is_invalid = True`` and are excluded from the dimension build.

Features:
- Rule-based rejection reasons (one rule per validity condition)
- Quarantine to the rejected-data area through the storage connector
- Rejection reason tracking
- Metrics integration
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


class RejectionRule:
    """Defines a rejection rule over a staged DataFrame."""

    def __init__(
        self,
        name: str,
        predicate: Callable[[pd.DataFrame], pd.Series],
        severity: str = "warning"
    ):
        self.name = name
        self.predicate = predicate
        self.severity = severity

    def evaluate(self, df: pd.DataFrame) -> pd.Series:
        """Boolean mask of rows violating the rule."""
        return self.predicate(df).fillna(False).astype(bool)


def _negative(value) -> bool:
    return value is not None and not pd.isna(value) and value < 0


# Default rejection rules, mirroring the staging validity conditions
DEFAULT_RULES = [
    RejectionRule(
        name="missing_booking_id",
        predicate=lambda df: df["booking_id"].isna() | df["booking_id"].astype(object).eq(""),
        severity="critical"
    ),
    RejectionRule(
        name="unparseable_check_in_date",
        predicate=lambda df: df["check_in_date"].isna()
    ),
    RejectionRule(
        name="unparseable_check_out_date",
        predicate=lambda df: df["check_out_date"].isna()
    ),
    RejectionRule(
        name="check_out_before_check_in",
        predicate=lambda df: df["check_out_date"] < df["check_in_date"]
    ),
    RejectionRule(
        name="negative_total_price",
        predicate=lambda df: df["total_price"].map(_negative)
    ),
]


class RejectionHandler:
    """
    Handles rejection of staged rows flagged invalid.

    Soft contract: Pipeline continues, bad records quarantined.
    """

    def __init__(
        self,
        connector=None,
        metrics=None,
        rules: Optional[List[RejectionRule]] = None,
        flag_column: str = "is_invalid"
    ):
        """
        Initialize rejection handler.

        Args:
            connector: Storage connector used for quarantine writes
            metrics: Optional MetricsCollector
            rules: Rejection rules (defaults to DEFAULT_RULES)
            flag_column: Boolean column marking invalid rows
        """
        self.connector = connector
        self.metrics = metrics
        self.rules = rules or DEFAULT_RULES
        self.flag_column = flag_column

    # =========================================
    # RULE CHECKING
    # =========================================

    def rejection_reasons(self, df: pd.DataFrame) -> pd.Series:
        """
        List of rule names violated by each row.

        Returns a Series of lists aligned with ``df.index``.
        """
        masks = {rule.name: rule.evaluate(df) for rule in self.rules}
        reasons = [[] for _ in range(len(df))]
        for name, mask in masks.items():
            for position, hit in enumerate(mask.to_numpy()):
                if hit:
                    reasons[position].append(name)
        return pd.Series(reasons, index=df.index, dtype=object)

    # =========================================
    # DATAFRAME PROCESSING
    # =========================================

    def process_dataframe(
        self,
        df: pd.DataFrame,
        table_name: str
    ) -> Tuple[pd.DataFrame, pd.DataFrame, Dict]:
        """
        Separate clean and rejected rows.

        Args:
            df: Staged DataFrame with the flag column
            table_name: Table name for tracking

        Returns:
            Tuple of (clean_df, rejected_df, summary)
        """
        flagged = df[self.flag_column].astype(bool)
        clean_df = df[~flagged]
        rejected_df = df[flagged].copy()

        rejected_df["_rejection_reason"] = self.rejection_reasons(rejected_df)
        rejected_df["_rejection_time"] = datetime.now().isoformat()

        violation_summary = {}
        for rule in self.rules:
            count = int(rejected_df["_rejection_reason"].map(lambda r: rule.name in r).sum())
            if count:
                violation_summary[rule.name] = {"count": count, "severity": rule.severity}

        summary = {
            "table_name": table_name,
            "timestamp": datetime.now().isoformat(),
            "total_records": len(df),
            "clean_records": len(clean_df),
            "rejected_records": len(rejected_df),
            "rejection_rate": round(len(rejected_df) / len(df) * 100, 2) if len(df) > 0 else 0,
            "violations": violation_summary
        }

        if summary["rejected_records"]:
            logger.warning(
                f"Rejected {summary['rejected_records']}/{summary['total_records']} records "
                f"({summary['rejection_rate']}%) in {table_name}"
            )
        self._record_metrics(summary)

        return clean_df, rejected_df, summary

    # =========================================
    # QUARANTINE
    # =========================================

    def quarantine_records(
        self,
        rejected_df: pd.DataFrame,
        table_name: str,
        batch_id: str
    ) -> str:
        """
        Write rejected records to the quarantine area.

        Returns path to quarantined file, or "" when nothing was written.
        """
        if rejected_df.empty or self.connector is None:
            return ""

        path = self.connector.write_quarantine(
            rejected_df.reset_index(drop=True), table_name, batch_id
        )
        logger.info(f"Quarantined {len(rejected_df)} records to {path}")
        return path

    def _record_metrics(self, summary: Dict):
        """Record rejection metrics."""
        if self.metrics is None:
            return

        table_name = summary["table_name"]
        self.metrics.record_gauge(
            "rejection_rate",
            summary["rejection_rate"],
            {"table_name": table_name}
        )
        for rule_name, details in summary["violations"].items():
            self.metrics.record_counter(
                "pipeline_rows_rejected",
                details["count"],
                {"pipeline_name": "bookings", "table_name": table_name, "reason": rule_name}
            )
