"""Unit tests for the local and MinIO storage connectors."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pandas as pd
import pytest

from ingestion.connectors import LocalConnector, MinIOConnector, build_connector
from processing.common_code.errors import (
    ConfigError,
    SinkUnavailableError,
    SourceUnavailableError,
)

from conftest import LANDING_HEADER, ROUND_TRIP_ROW


def _response(payload: bytes) -> MagicMock:
    response = MagicMock()
    response.read.return_value = payload
    return response


def _parquet_bytes(df: pd.DataFrame) -> bytes:
    buffer = io.BytesIO()
    df.to_parquet(buffer, index=False)
    return buffer.getvalue()


def _minio_config() -> dict:
    return {
        "endpoint": "localhost:9000",
        "access_key": "key",
        "secret_key": "secret",
        "warehouse_bucket": "warehouse",
        "quarantine_bucket": "rejected-data",
    }


# =========================================
# LOCAL CONNECTOR
# =========================================


def test_local_read_landing_keeps_text_values(local_connector, write_landing_file) -> None:
    """Landing values are read as text, in file-name order, blanks as null."""
    write_landing_file("b.csv", "BK002,007,HOST001,GUEST001,15/03/24,18/03/24,,USD,pending,01/03/24")
    write_landing_file("a.csv", ROUND_TRIP_ROW)

    df = local_connector.read_landing("landing", "bookings/")

    assert df["booking_id"].tolist() == ["BK001", "BK002"]
    assert df.loc[1, "listing_id"] == "007"
    assert pd.isna(df.loc[1, "total_price"])


def test_local_read_landing_replaces_undecodable_bytes(local_connector, write_landing_bytes) -> None:
    """A stray non UTF-8 byte keeps the row and the rest of the file."""
    write_landing_bytes(
        "a.csv",
        ROUND_TRIP_ROW.encode(),
        b"BK002,L\xff,HOST001,GUEST001,15/03/24,18/03/24,450,USD,confirmed,01/03/24",
    )

    df = local_connector.read_landing("landing", "bookings/")

    assert df["booking_id"].tolist() == ["BK001", "BK002"]
    assert df.loc[1, "listing_id"] == "L\ufffd"
    assert local_connector.lines_skipped == 0


def test_local_read_landing_skips_ragged_lines(local_connector, write_landing_file) -> None:
    """A line with an extra field is skipped and counted, good rows survive."""
    write_landing_file(
        "a.csv",
        ROUND_TRIP_ROW,
        "BK002,LST001,HOST001,GUEST001,15/03/24,18/03/24,450,USD,confirmed,01/03/24,extra",
        "BK003,LST002,HOST002,GUEST003,16/03/24,23/03/24,700,EUR,completed,10/03/24",
    )

    df = local_connector.read_landing("landing", "bookings/")

    assert df["booking_id"].tolist() == ["BK001", "BK003"]
    assert local_connector.lines_skipped == 1


def test_local_read_landing_missing_directory(local_connector) -> None:
    """An absent landing zone is a source failure."""
    with pytest.raises(SourceUnavailableError):
        local_connector.read_landing("landing", "bookings/")


def test_local_read_landing_empty_directory(local_connector, tmp_path) -> None:
    """A landing zone without files yields an empty frame."""
    (tmp_path / "data" / "landing" / "bookings").mkdir(parents=True)

    assert local_connector.read_landing("landing", "bookings/").empty


def test_local_write_table_replaces_whole_table(local_connector, tmp_path) -> None:
    """A second write fully replaces the first and leaves no temp files."""
    local_connector.write_table(pd.DataFrame({"booking_id": ["BK001", "BK002"]}), "stg_bookings")
    local_connector.write_table(pd.DataFrame({"booking_id": ["BK003"]}), "stg_bookings")

    table = local_connector.read_table("stg_bookings")
    warehouse = tmp_path / "data" / "warehouse"

    assert table["booking_id"].tolist() == ["BK003"]
    assert [p.name for p in warehouse.iterdir()] == ["stg_bookings.parquet"]


def test_local_failed_write_keeps_previous_table(local_connector, tmp_path) -> None:
    """A write that fails midway leaves the published table untouched."""
    local_connector.write_table(pd.DataFrame({"booking_id": ["BK001"]}), "stg_bookings")
    unserializable = pd.DataFrame({"booking_id": ["BK002", 2]}, dtype=object)

    with pytest.raises(SinkUnavailableError):
        local_connector.write_table(unserializable, "stg_bookings")

    assert local_connector.read_table("stg_bookings")["booking_id"].tolist() == ["BK001"]
    assert [p.name for p in (tmp_path / "data" / "warehouse").iterdir()] == ["stg_bookings.parquet"]


def test_local_read_missing_table(local_connector) -> None:
    """Reading an unpublished table is a source failure."""
    with pytest.raises(SourceUnavailableError):
        local_connector.read_table("dim_bookings")


def test_local_write_quarantine_partitions_by_date(local_connector, tmp_path) -> None:
    """Quarantine files land under table/YYYY/MM/DD."""
    path = local_connector.write_quarantine(
        pd.DataFrame({"booking_id": ["BK002"]}), "stg_bookings", "20240401_060000"
    )

    assert path.startswith(str(tmp_path / "data" / "rejected-data" / "stg_bookings"))
    assert path.endswith("rejected_stg_bookings_20240401_060000.parquet")
    assert pd.read_parquet(path)["booking_id"].tolist() == ["BK002"]


# =========================================
# MINIO CONNECTOR
# =========================================


def test_minio_connect_creates_missing_buckets() -> None:
    """Warehouse and quarantine buckets are created on connect."""
    client = MagicMock()
    client.bucket_exists.return_value = False

    MinIOConnector(_minio_config(), client=client).connect()

    created = [c.args[0] for c in client.make_bucket.call_args_list]
    assert created == ["warehouse", "rejected-data"]


def test_minio_connect_failure_is_sink_error() -> None:
    """An unreachable endpoint surfaces as a pipeline error."""
    client = MagicMock()
    client.bucket_exists.side_effect = ConnectionError("refused")

    with pytest.raises(SinkUnavailableError):
        MinIOConnector(_minio_config(), client=client).connect()


def test_minio_write_table_uploads_data_before_pointer() -> None:
    """The version pointer moves only after the data object is uploaded."""
    client = MagicMock()
    client.list_objects.return_value = []
    connector = MinIOConnector(_minio_config(), client=client)

    path = connector.write_table(pd.DataFrame({"booking_id": ["BK001"]}), "dim_bookings")

    names = [c.kwargs["object_name"] for c in client.put_object.call_args_list]
    assert len(names) == 2
    assert names[0].startswith("dim_bookings/") and names[0].endswith("/data.parquet")
    assert names[1] == "dim_bookings/_LATEST"
    assert path == f"minio://warehouse/{names[0]}"


def test_minio_failed_upload_leaves_pointer_untouched() -> None:
    """When the data upload fails the pointer is never written."""
    client = MagicMock()
    client.put_object.side_effect = ConnectionError("reset")
    connector = MinIOConnector(_minio_config(), client=client)

    with pytest.raises(SinkUnavailableError):
        connector.write_table(pd.DataFrame({"booking_id": ["BK001"]}), "dim_bookings")

    assert client.put_object.call_count == 1


def test_minio_write_table_keeps_replaced_version() -> None:
    """The version a write replaces survives it, older ones are pruned."""
    client = MagicMock()
    client.get_object.return_value = _response(b"20240102_000000_bbbbbbbb\n")
    oldest = MagicMock(object_name="dim_bookings/20240101_000000_aaaaaaaa/data.parquet")
    replaced = MagicMock(object_name="dim_bookings/20240102_000000_bbbbbbbb/data.parquet")
    pointer = MagicMock(object_name="dim_bookings/_LATEST")
    client.list_objects.return_value = [oldest, replaced, pointer]

    MinIOConnector(_minio_config(), client=client).write_table(
        pd.DataFrame({"booking_id": ["BK001"]}), "dim_bookings"
    )

    client.remove_object.assert_called_once_with("warehouse", oldest.object_name)


def test_minio_prune_failure_does_not_fail_published_write() -> None:
    """Errors while pruning are logged once the new version is live."""
    client = MagicMock()
    client.get_object.return_value = _response(b"v1\n")
    client.list_objects.return_value = [MagicMock(object_name="dim_bookings/v0/data.parquet")]
    client.remove_object.side_effect = ConnectionError("reset")

    path = MinIOConnector(_minio_config(), client=client).write_table(
        pd.DataFrame({"booking_id": ["BK001"]}), "dim_bookings"
    )

    assert path.startswith("minio://warehouse/dim_bookings/")
    assert client.put_object.call_args_list[-1].kwargs["object_name"] == "dim_bookings/_LATEST"


def test_minio_read_table_resolves_pointer() -> None:
    """Reads follow the _LATEST pointer to the published version."""
    client = MagicMock()
    client.get_object.side_effect = [
        _response(b"v1\n"),
        _response(_parquet_bytes(pd.DataFrame({"booking_id": ["BK001"]}))),
    ]
    connector = MinIOConnector(_minio_config(), client=client)

    table = connector.read_table("stg_bookings")

    assert table["booking_id"].tolist() == ["BK001"]
    client.get_object.assert_called_with("warehouse", "stg_bookings/v1/data.parquet")


def test_minio_read_landing_concatenates_csv_objects(landing_frame) -> None:
    """Only CSV objects under the prefix are read, in name order."""
    client = MagicMock()
    client.list_objects.return_value = [
        MagicMock(object_name="bookings/b.csv"),
        MagicMock(object_name="bookings/_SUCCESS"),
        MagicMock(object_name="bookings/a.csv"),
    ]
    first = landing_frame(ROUND_TRIP_ROW).to_csv(index=False).encode()
    second = landing_frame(
        "BK002,LST002,HOST001,GUEST002,20/03/24,27/03/24,700,EUR,pending,05/03/24"
    ).to_csv(index=False).encode()
    client.get_object.side_effect = [_response(first), _response(second)]

    df = MinIOConnector(_minio_config(), client=client).read_landing("landing", "bookings/")

    assert df["booking_id"].tolist() == ["BK001", "BK002"]
    assert [c.args[1] for c in client.get_object.call_args_list] == ["bookings/a.csv", "bookings/b.csv"]


def test_minio_read_landing_tolerates_damaged_lines() -> None:
    """Undecodable bytes are replaced and ragged lines skipped per object."""
    client = MagicMock()
    client.list_objects.return_value = [MagicMock(object_name="bookings/a.csv")]
    payload = b"\n".join([
        LANDING_HEADER.encode(),
        ROUND_TRIP_ROW.encode(),
        b"BK002,L\xff,HOST001,GUEST001,15/03/24,18/03/24,450,USD,confirmed,01/03/24",
        b"BK003,LST002,HOST002,GUEST003,16/03/24,23/03/24,700,EUR,completed,10/03/24,extra",
    ]) + b"\n"
    client.get_object.return_value = _response(payload)
    connector = MinIOConnector(_minio_config(), client=client)

    df = connector.read_landing("landing", "bookings/")

    assert df["booking_id"].tolist() == ["BK001", "BK002"]
    assert df.loc[1, "listing_id"] == "L\ufffd"
    assert connector.lines_skipped == 1


def test_minio_read_landing_failure_is_source_error() -> None:
    """Listing errors surface as a source failure."""
    client = MagicMock()
    client.list_objects.side_effect = ConnectionError("refused")

    with pytest.raises(SourceUnavailableError):
        MinIOConnector(_minio_config(), client=client).read_landing("landing", "bookings/")


# =========================================
# FACTORY
# =========================================


def test_build_connector_local(tmp_path) -> None:
    """The local backend is built and connected from settings."""
    connector = build_connector({"backend": "local", "local": {"root": str(tmp_path)}})

    assert isinstance(connector, LocalConnector)
    assert (tmp_path / "warehouse").is_dir()


def test_build_connector_unknown_backend() -> None:
    """An unsupported backend is a configuration error."""
    with pytest.raises(ConfigError):
        build_connector({"backend": "s3"})
