"""
Schema Contract Validator & Dimension Metrics
=============================================

Validates landing schemas against the staging configs and scores built
tables on quality dimensions.

Contract rules:
- Missing landing columns are fatal (the staging model cannot resolve them)
- Extra landing columns are schema drift: logged and ignored

Features:
- Schema drift detection (new/missing columns)
- Integrity score calculation
- Completeness and uniqueness scores per column
- Blocking uniqueness / not-null checks for published tables
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from processing.common_code.errors import DataQualityError, SchemaContractError
from processing.common_code.utils import read_config

logger = logging.getLogger(__name__)


class SchemaContract:
    """
    Landing schema contract.

    Expected columns come from the ``landing_columns`` list of every staging
    config in ``staging_config_dir``, keyed by ``landing_zone_table``.
    """

    def __init__(
        self,
        staging_config_dir: Optional[str] = None,
        expected_schemas: Optional[Dict[str, List[str]]] = None,
        metrics=None
    ):
        """
        Initialize Schema Contract.

        Args:
            staging_config_dir: Path to staging configs (JSON files with landing_columns)
            expected_schemas: Explicit table -> columns mapping (overrides configs)
            metrics: Optional MetricsCollector for drift metrics
        """
        self.metrics = metrics
        self._expected_schemas: Dict[str, List[str]] = {}

        if staging_config_dir:
            self._load_expected_schemas(Path(staging_config_dir))
        if expected_schemas:
            self._expected_schemas.update(expected_schemas)

    def _load_expected_schemas(self, config_dir: Path):
        """Load expected schemas from staging config files."""
        if not config_dir.exists():
            logger.warning(f"Staging config dir not found: {config_dir}")
            return

        for config_file in sorted(config_dir.glob("*.json")):
            config = read_config(str(config_file))
            table_name = config.get("landing_zone_table")
            columns = config.get("landing_columns")
            if table_name and columns:
                self._expected_schemas[table_name] = list(columns)
                logger.info(f"Loaded schema contract for {table_name}: {len(columns)} columns")

    def expected_columns(self, table_name: str) -> List[str]:
        """Columns the contract requires for a landing table."""
        if table_name not in self._expected_schemas:
            raise SchemaContractError(f"No schema contract registered for {table_name}")
        return list(self._expected_schemas[table_name])

    def validate_landing(self, df: pd.DataFrame, table_name: str) -> Dict:
        """
        Validate a landing DataFrame against the expected schema.

        Args:
            df: Landing DataFrame
            table_name: Landing table name

        Returns:
            Dict with validation results and drift details

        Raises:
            SchemaContractError: If required columns are missing
        """
        expected = self.expected_columns(table_name)
        source_cols = list(df.columns)

        new_columns = [c for c in source_cols if c not in expected]
        missing_columns = [c for c in expected if c not in source_cols]

        result = {
            "table_name": table_name,
            "timestamp": datetime.now().isoformat(),
            "source_column_count": len(source_cols),
            "expected_column_count": len(expected),
            "has_drift": bool(new_columns or missing_columns),
            "drift_details": {
                "new_columns": new_columns,
                "missing_columns": missing_columns
            },
            "integrity_score": round(
                (len(expected) - len(missing_columns)) / len(expected) * 100, 2
            ) if expected else 100.0
        }

        if self.metrics is not None:
            self.metrics.record_gauge(
                "schema_integrity_score",
                result["integrity_score"],
                {"table_name": table_name}
            )

        if new_columns:
            logger.warning(f"  Schema expansion: {len(new_columns)} unexpected columns ignored")
            logger.warning(f"     New: {new_columns[:10]}{'...' if len(new_columns) > 10 else ''}")

        if missing_columns:
            logger.error(f"  Schema contraction: missing {missing_columns}")
            raise SchemaContractError(
                f"Landing table {table_name} is missing required columns: {missing_columns}"
            )

        return result


class DimensionMetrics:
    """
    Calculates quality dimension metrics for built tables.

    Dimensions:
    - Completeness: % of non-null values
    - Uniqueness: % of unique values
    """

    WEIGHTS = {
        "completeness": 0.5,
        "uniqueness": 0.5
    }

    def __init__(self, metrics=None):
        """
        Args:
            metrics: Optional MetricsCollector for dq_* metrics
        """
        self.metrics = metrics

    def calculate_all_dimensions(
        self,
        df: pd.DataFrame,
        table_name: str,
        stage: str = "curated"
    ) -> Dict:
        """
        Calculate all quality dimension metrics for a DataFrame.

        Returns dict with dimension scores (0-100).
        """
        result = {
            "table_name": table_name,
            "stage": stage,
            "timestamp": datetime.now().isoformat(),
            "row_count": len(df),
            "column_count": len(df.columns),
            "dimensions": {
                "completeness": self._calculate_completeness(df),
                "uniqueness": self._calculate_uniqueness(df)
            }
        }

        overall = sum(
            result["dimensions"][dim]["score"] * weight
            for dim, weight in self.WEIGHTS.items()
        )
        result["overall_quality_score"] = round(overall, 2)

        if self.metrics is not None:
            self.metrics.record_gauge(
                "dq_completeness_score",
                result["dimensions"]["completeness"]["score"],
                {"table_name": table_name}
            )
            self.metrics.record_row_count(table_name, stage, len(df))

        logger.info(f"  Quality score for {table_name}: {result['overall_quality_score']}")
        return result

    def _calculate_completeness(self, df: pd.DataFrame) -> Dict:
        """Calculate completeness (non-null rate) for each column."""
        total_cells = len(df) * len(df.columns)
        null_cells = int(df.isna().sum().sum())

        completeness = {
            "score": round((1 - null_cells / total_cells) * 100, 2) if total_cells > 0 else 100,
            "total_cells": total_cells,
            "null_cells": null_cells,
            "columns": {}
        }

        for col in df.columns:
            null_count = int(df[col].isna().sum())
            completeness["columns"][col] = {
                "null_count": null_count,
                "null_rate": round(null_count / len(df) * 100, 2) if len(df) > 0 else 0
            }

        return completeness

    def _calculate_uniqueness(self, df: pd.DataFrame) -> Dict:
        """Calculate uniqueness (distinct rate) for each column."""
        uniqueness = {
            "score": 100,
            "columns": {}
        }

        scores = []
        for col in df.columns:
            non_null = df[col].dropna()
            total = len(non_null)
            distinct = int(non_null.nunique())

            unique_rate = round(distinct / total * 100, 2) if total > 0 else 100
            scores.append(unique_rate)

            uniqueness["columns"][col] = {
                "total_values": total,
                "distinct_values": distinct,
                "duplicate_values": total - distinct,
                "unique_rate": unique_rate
            }

        uniqueness["score"] = round(sum(scores) / len(scores), 2) if scores else 100
        return uniqueness

    def assert_unique(self, df: pd.DataFrame, column: str, table_name: str):
        """Raise DataQualityError if ``column`` has duplicate values."""
        duplicates = int(df[column].duplicated().sum())
        passed = duplicates == 0

        if self.metrics is not None:
            self.metrics.record_dq_result(table_name, f"unique_{column}", passed, "critical")

        if not passed:
            raise DataQualityError(f"{table_name}.{column} has {duplicates} duplicate values")

    def assert_not_null(self, df: pd.DataFrame, columns: List[str], table_name: str):
        """Raise DataQualityError if any of ``columns`` contains nulls."""
        failures = {}
        for col in columns:
            nulls = int(df[col].isna().sum())
            passed = nulls == 0
            if self.metrics is not None:
                self.metrics.record_dq_result(table_name, f"not_null_{col}", passed, "critical")
            if not passed:
                failures[col] = nulls

        if failures:
            raise DataQualityError(f"{table_name} has nulls in required columns: {failures}")
