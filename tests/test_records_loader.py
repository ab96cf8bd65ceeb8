from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest

from interval_report.errors import RecordSourceError
from interval_report.sources.records import load_raw_records, parse_timestamp, records_from_frame


def test_parse_timestamp_handles_garbage() -> None:
    assert parse_timestamp("2024-03-01 09:05:00") == datetime(2024, 3, 1, 9, 5)
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("   ") is None
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(float("nan")) is None
    assert parse_timestamp("2024-03-01T09:05:00+01:00").utcoffset().total_seconds() == 3600
    assert parse_timestamp(datetime(2024, 3, 1, 9, 5)) == datetime(2024, 3, 1, 9, 5)
    assert parse_timestamp(pd.Timestamp("2024-03-01 09:05")) == datetime(2024, 3, 1, 9, 5)
    assert parse_timestamp(pd.NaT) is None


@pytest.mark.parametrize("value", ["09:05", " 9:05 AM", "20240301", 20240301, 1709284500.0, "03/01/2024"])
def test_parse_timestamp_rejects_values_without_a_date(value) -> None:
    assert parse_timestamp(value) is None


def test_load_csv_keeps_bad_rows_as_undated(tmp_path: Path) -> None:
    path = tmp_path / "events.csv"
    path.write_text(
        "timestamp,category,duration_s\n"
        "2024-03-01 09:05:00,sales,30\n"
        "garbage,support,10\n"
        ",sales,\n"
        "2024-03-01T09:31:00,support,5\n",
        encoding="utf-8",
    )

    records = load_raw_records(path)

    assert [r.source_row for r in records] == [1, 2, 3, 4]
    assert records[0].timestamp == datetime(2024, 3, 1, 9, 5)
    assert records[1].timestamp is None
    assert records[2].timestamp is None
    assert records[3].timestamp == datetime(2024, 3, 1, 9, 31)
    assert records[0].get("category") == "sales"
    assert records[0].get("duration_s") == 30
    assert records[2].get("duration_s") is None
    assert "timestamp" not in records[0].fields


def test_load_parquet(tmp_path: Path) -> None:
    path = tmp_path / "events.parquet"
    pd.DataFrame(
        {
            "timestamp": pd.to_datetime(["2024-03-01 09:05", "2024-03-01 09:20"]),
            "agent": ["a", "b"],
        }
    ).to_parquet(path, index=False)

    records = load_raw_records(path)

    assert [r.timestamp for r in records] == [datetime(2024, 3, 1, 9, 5), datetime(2024, 3, 1, 9, 20)]
    assert [r.get("agent") for r in records] == ["a", "b"]


def test_custom_timestamp_column() -> None:
    df = pd.DataFrame({"created": ["2024-03-01 10:00"], "x": [1]})
    records = records_from_frame(df, timestamp_column="created")
    assert records[0].timestamp == datetime(2024, 3, 1, 10, 0)


def test_missing_timestamp_column_is_source_error() -> None:
    with pytest.raises(RecordSourceError, match="no 'timestamp' column"):
        records_from_frame(pd.DataFrame({"when": ["2024-03-01"]}))


def test_missing_file_and_unknown_format(tmp_path: Path) -> None:
    with pytest.raises(RecordSourceError, match="not found"):
        load_raw_records(tmp_path / "nope.csv")

    other = tmp_path / "events.txt"
    other.write_text("x", encoding="utf-8")
    with pytest.raises(RecordSourceError, match="unsupported"):
        load_raw_records(other)


def test_time_only_and_numeric_stamps_become_defects_not_dates() -> None:
    df = pd.DataFrame({"timestamp": ["09:05", 20240301, "2024-03-01 09:05"], "x": [1, 2, 3]})

    records = records_from_frame(df)

    assert [r.timestamp for r in records] == [None, None, datetime(2024, 3, 1, 9, 5)]
