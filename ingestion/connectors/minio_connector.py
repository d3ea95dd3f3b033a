"""
MinIO Storage Connector
=======================

Connector for the landing zone, warehouse tables and quarantine area on
MinIO object storage (S3-compatible).

Table layout (per table):
    <warehouse_bucket>/<table>/<version>/data.parquet
    <warehouse_bucket>/<table>/_LATEST            -> "<version>"

A new version is uploaded in full before ``_LATEST`` is overwritten, so
readers that resolve the pointer never see a partially written table.
The version a write replaces is pruned by the following write.
"""

import io
import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pandas as pd
from minio.error import S3Error

from processing.common_code.errors import SinkUnavailableError, SourceUnavailableError
from processing.common_code.utils import get_minio_client, read_landing_csv

logger = logging.getLogger(__name__)


class MinIOConnector:
    """
    MinIO object storage connector for the bookings pipeline.
    """

    LATEST_POINTER = "_LATEST"

    def __init__(self, config: Dict, client=None):
        """
        Initialize MinIO connector.

        Args:
            config: Connection configuration dict with endpoint, access_key,
                secret_key, warehouse_bucket, quarantine_bucket
            client: Pre-built Minio client (skips connect())
        """
        self.config = config
        self.client = client
        self.bucket = config.get("warehouse_bucket", "warehouse")
        self.quarantine_bucket = config.get("quarantine_bucket", "rejected-data")
        self.lines_skipped = 0

    def connect(self):
        """Establish connection to MinIO and ensure output buckets exist."""
        if self.client is None:
            self.client = get_minio_client(self.config)

        try:
            for bucket in (self.bucket, self.quarantine_bucket):
                if not self.client.bucket_exists(bucket):
                    self.client.make_bucket(bucket)
                    logger.info(f"Created bucket: {bucket}")
        except Exception as e:
            raise SinkUnavailableError(f"Cannot connect to MinIO at {self.config.get('endpoint')}: {e}") from e

        logger.info(f"Connected to MinIO: {self.config.get('endpoint')}, bucket: {self.bucket}")

    # =========================================
    # READS
    # =========================================

    def read_landing(self, bucket: str, prefix: str) -> pd.DataFrame:
        """
        Load all landing CSV files under a prefix as text columns.

        Files are read in object-name order. Malformed lines are skipped and
        counted in ``lines_skipped``.

        Raises:
            SourceUnavailableError: If the landing zone cannot be listed or read
        """
        self.lines_skipped = 0
        try:
            objects = sorted(
                (obj.object_name for obj in self.client.list_objects(bucket, prefix=prefix, recursive=True)
                 if obj.object_name.endswith('.csv'))
            )

            dfs = []
            for object_name in objects:
                df, skipped = self._read_csv(bucket, object_name)
                dfs.append(df)
                self.lines_skipped += skipped
        except Exception as e:
            raise SourceUnavailableError(f"Cannot read landing zone minio://{bucket}/{prefix}: {e}") from e

        logger.info(f"  Read {len(dfs)} landing files from minio://{bucket}/{prefix}")
        return pd.concat(dfs, ignore_index=True) if dfs else pd.DataFrame()

    def read_table(self, table: str) -> pd.DataFrame:
        """
        Read the published version of a table.

        Raises:
            SourceUnavailableError: If no version is published or it cannot be read
        """
        try:
            version = self._read_pointer(table)
            response = self.client.get_object(self.bucket, f"{table}/{version}/data.parquet")
            try:
                return pd.read_parquet(io.BytesIO(response.read()))
            finally:
                response.close()
                response.release_conn()
        except Exception as e:
            raise SourceUnavailableError(f"Cannot read table minio://{self.bucket}/{table}: {e}") from e

    def _read_csv(self, bucket: str, object_name: str) -> Tuple[pd.DataFrame, int]:
        response = self.client.get_object(bucket, object_name)
        try:
            return read_landing_csv(io.BytesIO(response.read()), f"minio://{bucket}/{object_name}")
        finally:
            response.close()
            response.release_conn()

    def _read_pointer(self, table: str) -> str:
        response = self.client.get_object(self.bucket, f"{table}/{self.LATEST_POINTER}")
        try:
            return response.read().decode("utf-8").strip()
        finally:
            response.close()
            response.release_conn()

    # =========================================
    # WRITES
    # =========================================

    def write_table(self, df: pd.DataFrame, table: str) -> str:
        """
        Replace a table: upload a new version, then move the pointer.

        The version being replaced is kept until the next write so readers
        that resolved the old pointer can finish.

        Returns:
            Path of the published version

        Raises:
            SinkUnavailableError: If the upload fails (previous version stays published)
        """
        version = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        object_name = f"{table}/{version}/data.parquet"

        try:
            previous = self._current_version(table)
            self._put_parquet(self.bucket, object_name, df)
            pointer = version.encode("utf-8")
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=f"{table}/{self.LATEST_POINTER}",
                data=io.BytesIO(pointer),
                length=len(pointer),
                content_type="text/plain"
            )
        except Exception as e:
            raise SinkUnavailableError(f"Cannot write table minio://{self.bucket}/{table}: {e}") from e

        self._prune_versions(table, [version, previous])
        logger.info(f"Published {len(df)} rows to minio://{self.bucket}/{object_name}")
        return f"minio://{self.bucket}/{object_name}"

    def write_quarantine(self, df: pd.DataFrame, table: str, batch_id: str) -> str:
        """Write rejected rows to the quarantine bucket."""
        date_path = datetime.now().strftime("%Y/%m/%d")
        object_name = f"{table}/{date_path}/rejected_{table}_{batch_id}.parquet"

        try:
            self._put_parquet(self.quarantine_bucket, object_name, df)
        except Exception as e:
            raise SinkUnavailableError(f"Cannot write quarantine for {table}: {e}") from e

        return f"minio://{self.quarantine_bucket}/{object_name}"

    def _put_parquet(self, bucket: str, object_name: str, df: pd.DataFrame):
        buffer = io.BytesIO()
        df.to_parquet(buffer, index=False, engine='pyarrow')
        buffer.seek(0)

        self.client.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=buffer,
            length=buffer.getbuffer().nbytes,
            content_type="application/octet-stream"
        )

    def _current_version(self, table: str) -> Optional[str]:
        """Version named by the pointer, or None for an unpublished table."""
        try:
            return self._read_pointer(table)
        except S3Error as e:
            if e.code == "NoSuchKey":
                return None
            raise

    def _prune_versions(self, table: str, keep_versions: List[Optional[str]]):
        """Remove versions other than ``keep_versions``. Failures are only logged."""
        keep_prefixes = tuple(f"{table}/{v}/" for v in keep_versions if v)
        try:
            stale: List[str] = [
                obj.object_name
                for obj in self.client.list_objects(self.bucket, prefix=f"{table}/", recursive=True)
                if not obj.object_name.startswith(keep_prefixes)
                and obj.object_name != f"{table}/{self.LATEST_POINTER}"
            ]
            for object_name in stale:
                self.client.remove_object(self.bucket, object_name)
            if stale:
                logger.info(f"  Pruned {len(stale)} superseded objects for {table}")
        except Exception as e:
            logger.warning(f"  Could not prune old versions of {table}: {e}")
