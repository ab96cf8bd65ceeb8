from __future__ import annotations

import re
from datetime import date, datetime

PERIOD_FORMAT = "%Y-%m"

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def period_key_for(ts: datetime | date) -> str:
    """Monthly period key (YYYY-MM) for a generation date."""

    return ts.strftime(PERIOD_FORMAT)


def validate_period_key(period_key: str) -> str:
    if not _PERIOD_RE.match(period_key):
        raise ValueError(f"invalid period key {period_key!r}: expected YYYY-MM")
    return period_key


def period_bounds(period_key: str) -> tuple[date, date]:
    """Return [first_day, first_day_of_next_month) for a period key."""

    validate_period_key(period_key)
    year, month = (int(p) for p in period_key.split("-"))
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def in_period(day: date, period_key: str) -> bool:
    start, end = period_bounds(period_key)
    return start <= day < end
