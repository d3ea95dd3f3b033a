"""Unit tests for shared parsing, hashing and chunking helpers."""

from __future__ import annotations

import hashlib
import io
import math
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from processing.common_code.errors import ConfigError
from processing.common_code.utils import (
    SURROGATE_KEY_NULL,
    bucketize,
    parse_ddmmyy,
    parse_decimal,
    read_config,
    read_landing_csv,
    run_in_chunks,
    surrogate_key,
)


def test_parse_ddmmyy_reads_day_month_year() -> None:
    """Dates are day first, then month, then two-digit year."""
    assert parse_ddmmyy("15/03/24") == date(2024, 3, 15)
    assert parse_ddmmyy("1/2/24") == date(2024, 2, 1)


@pytest.mark.parametrize(
    "raw, expected_year",
    [("01/01/00", 2000), ("01/01/69", 2069), ("01/01/70", 1970), ("01/01/99", 1999)],
)
def test_parse_ddmmyy_places_two_digit_years_from_1970(raw: str, expected_year: int) -> None:
    """Years 70-99 land in the 1900s and 00-69 in the 2000s."""
    assert parse_ddmmyy(raw).year == expected_year


def test_parse_ddmmyy_honours_custom_century_start() -> None:
    """The two-digit year window follows century_start."""
    assert parse_ddmmyy("01/01/49", century_start=1950) == date(2049, 1, 1)
    assert parse_ddmmyy("01/01/50", century_start=1950) == date(1950, 1, 1)


@pytest.mark.parametrize(
    "raw",
    ["not-a-date", "", "2024-03-15", "15/03/2024", "31/02/24", "00/01/24", "15/13/24", None, pd.NA],
)
def test_parse_ddmmyy_returns_none_for_unparseable_values(raw) -> None:
    """Malformed or impossible dates never raise."""
    assert parse_ddmmyy(raw) is None


def test_parsers_accept_only_ascii_digits() -> None:
    """Digits from other scripts are not read as dates or prices."""
    assert parse_ddmmyy("١٥/٠٣/٢٤") is None
    assert parse_ddmmyy("１５/０３/２４") is None
    assert parse_decimal("١٢٣") is None
    assert parse_decimal("４５０") is None


def test_parse_decimal_rounds_to_scale_half_up() -> None:
    """Prices keep two fractional digits, rounding halves away from zero."""
    assert parse_decimal("450") == Decimal("450.00")
    assert parse_decimal("10.005") == Decimal("10.01")
    assert parse_decimal("-50") == Decimal("-50.00")
    assert parse_decimal(" 12.5 ") == Decimal("12.50")


@pytest.mark.parametrize("raw", ["abc", "", "1,000", "NaN", "inf", "12.5.1", None])
def test_parse_decimal_returns_none_for_non_numeric(raw) -> None:
    """Non-numeric price text becomes null."""
    assert parse_decimal(raw) is None


def test_parse_decimal_rejects_values_exceeding_precision() -> None:
    """Ten integer digits do not fit decimal(12, 2)."""
    assert parse_decimal("9999999999.99") == Decimal("9999999999.99")
    assert parse_decimal("10000000000") is None


def test_surrogate_key_is_md5_of_natural_key() -> None:
    """Same booking id always gives the same 32-character key."""
    assert surrogate_key("BK001") == hashlib.md5(b"BK001").hexdigest()
    assert surrogate_key("BK001") == surrogate_key("BK001")
    assert surrogate_key("BK001") != surrogate_key("BK002")
    assert len(surrogate_key("BK001")) == 32


def test_surrogate_key_hashes_placeholder_for_null() -> None:
    """Null keys hash a fixed placeholder instead of failing."""
    assert surrogate_key(None) == hashlib.md5(SURROGATE_KEY_NULL.encode()).hexdigest()


def test_bucketize_uses_inclusive_upper_bounds() -> None:
    """A value equal to a bound falls in that bucket."""
    buckets = [(2, "low", 1), (7, "mid", 2), (math.inf, "high", 3)]

    assert bucketize(2, buckets, ("none", 0)) == ("low", 1)
    assert bucketize(3, buckets, ("none", 0)) == ("mid", 2)
    assert bucketize(100, buckets, ("none", 0)) == ("high", 3)
    assert bucketize(None, buckets, ("none", 0)) == ("none", 0)
    assert bucketize(pd.NA, buckets, ("none", 0)) == ("none", 0)


def test_run_in_chunks_preserves_row_order() -> None:
    """Parallel chunked output matches the single-threaded transform."""
    df = pd.DataFrame({"value": range(25)})

    def double(chunk: pd.DataFrame) -> pd.DataFrame:
        return chunk.assign(value=chunk["value"] * 2)

    chunked = run_in_chunks(df, double, workers=4, chunk_size=3)

    pd.testing.assert_frame_equal(chunked, double(df))


def test_read_config_raises_config_error(tmp_path) -> None:
    """Missing and malformed config files are reported as ConfigError."""
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")

    with pytest.raises(ConfigError):
        read_config(str(tmp_path / "missing.json"))
    with pytest.raises(ConfigError):
        read_config(str(broken))


def test_read_landing_csv_replaces_undecodable_bytes() -> None:
    """A non UTF-8 byte is replaced instead of failing the file."""
    payload = b"booking_id,listing_id\nBK001,L1\nBK002,L\xff\n"

    df, skipped = read_landing_csv(io.BytesIO(payload), "bookings.csv")

    assert df["booking_id"].tolist() == ["BK001", "BK002"]
    assert df.loc[1, "listing_id"] == "L\ufffd"
    assert skipped == 0


def test_read_landing_csv_skips_lines_with_extra_fields() -> None:
    """Lines with more fields than the header are dropped and counted."""
    payload = b"booking_id,listing_id\nBK001,L1\nBK002,L2,extra\nBK003,L3\n"

    df, skipped = read_landing_csv(io.BytesIO(payload), "bookings.csv")

    assert df["booking_id"].tolist() == ["BK001", "BK003"]
    assert skipped == 1
