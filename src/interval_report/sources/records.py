from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from interval_report.errors import RecordSourceError

_READERS = {
    ".csv": "csv",
    ".parquet": "parquet",
    ".xlsx": "excel",
}

_ISO_DATE_PREFIX = re.compile(r"^\s*\d{4}-\d{2}-\d{2}(?:$|[T ])")


@dataclass(frozen=True)
class RawRecord:
    """One raw event as delivered by the source.

    timestamp is None when the source value was missing or not parseable;
    the aggregator reports such records as defects.
    """

    timestamp: Optional[datetime]
    fields: Mapping[str, Any] = field(default_factory=dict)
    source_row: Optional[int] = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse one source value into a datetime, or None if missing/malformed.

    Accepts datetime objects and strings that start with an ISO date
    (YYYY-MM-DD). Bare numbers and time-only strings are malformed: pandas
    would otherwise read them as epoch offsets or as today. Timezone
    information is kept as-is; nothing is converted.
    """

    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    elif isinstance(value, str):
        if not _ISO_DATE_PREFIX.match(value):
            return None
        try:
            ts = pd.Timestamp(value.strip())
        except (ValueError, TypeError, OverflowError):
            return None
    else:
        return None
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def records_from_frame(df: pd.DataFrame, *, timestamp_column: str = "timestamp") -> List[RawRecord]:
    """Convert a DataFrame into RawRecords.

    All columns except `timestamp_column` become record fields. NaN cells
    become None. source_row is the 1-based data row number.
    """

    if timestamp_column not in df.columns:
        raise RecordSourceError(
            f"raw records have no '{timestamp_column}' column",
            detail=f"columns: {sorted(str(c) for c in df.columns)}",
        )

    clean = df.astype(object).where(pd.notna(df), None)

    out: List[RawRecord] = []
    for row_no, row in enumerate(clean.to_dict("records"), start=1):
        raw_ts = row.pop(timestamp_column)
        fields: Dict[str, Any] = {str(k): _to_python(v) for k, v in row.items()}
        out.append(RawRecord(timestamp=parse_timestamp(raw_ts), fields=fields, source_row=row_no))

    return out


def load_raw_records(path: Path, *, timestamp_column: str = "timestamp") -> List[RawRecord]:
    """Load raw records from CSV, Parquet or XLSX.

    Timestamps are read as raw values and parsed per record, so one malformed
    cell never fails the whole file.
    """

    if not path.exists():
        raise RecordSourceError(f"raw record source not found: {path}")

    kind = _READERS.get(path.suffix.lower())
    if kind is None:
        raise RecordSourceError(f"unsupported raw record format: {path.suffix or '(none)'}")

    try:
        if kind == "csv":
            df = pd.read_csv(path, dtype={timestamp_column: str}, keep_default_na=True)
        elif kind == "parquet":
            df = pd.read_parquet(path)
        else:
            df = pd.read_excel(path, engine="openpyxl")
    except (OSError, ValueError) as exc:
        raise RecordSourceError(f"failed to read raw records from {path}", detail=str(exc)) from exc

    return records_from_frame(df, timestamp_column=timestamp_column)


def _to_python(value: Any) -> Any:
    # numpy scalars -> builtins, so downstream code sees plain ints/floats
    item = getattr(value, "item", None)
    if callable(item) and not isinstance(value, (str, bytes)):
        try:
            return item()
        except (TypeError, ValueError):
            return value
    return value

