from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time
from numbers import Real
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from interval_report.period import in_period
from interval_report.sources.records import RawRecord

logger = logging.getLogger(__name__)

DEFAULT_WIDTH_MINUTES = 30
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True, order=True)
class IntervalBucket:
    """Fixed-width time slot. Identity is (date, slot_start)."""

    date: date
    slot_start: time
    width_minutes: int = field(default=DEFAULT_WIDTH_MINUTES, compare=False)

    @property
    def slot_end(self) -> time:
        end_s = _seconds_of_day(self.slot_start) + self.width_minutes * 60
        if end_s >= SECONDS_PER_DAY:
            return time(0, 0)
        return time(end_s // 3600, (end_s % 3600) // 60)

    @property
    def label(self) -> str:
        return f"{self.slot_start.strftime('%H:%M')}-{self.slot_end.strftime('%H:%M')}"


class MetricKey(NamedTuple):
    bucket: IntervalBucket
    dimension: Optional[str]


@dataclass(frozen=True)
class IntervalMetric:
    bucket: IntervalBucket
    dimension: Optional[str]
    count: int
    sums: Dict[str, float] = field(default_factory=dict)

    @property
    def key(self) -> MetricKey:
        return MetricKey(self.bucket, self.dimension)


@dataclass(frozen=True)
class AggregationDefect:
    """Warning-level problem with a single record. Never aborts a run."""

    reason: str  # missing_timestamp / non_numeric_value
    source_row: Optional[int] = None
    field: Optional[str] = None
    value: Optional[str] = None


@dataclass(frozen=True)
class AggregationResult:
    metrics: Dict[MetricKey, IntervalMetric]
    defects: List[AggregationDefect]
    width_minutes: int
    records_seen: int
    records_skipped: int
    sum_fields: tuple[str, ...] = ()
    dimension: Optional[str] = None

    @property
    def buckets(self) -> set[IntervalBucket]:
        return {k.bucket for k in self.metrics}

    def count_for(self, bucket: IntervalBucket) -> int:
        """Total count for a bucket across all dimension values."""

        return sum(m.count for k, m in self.metrics.items() if k.bucket == bucket)

    def ordered(self) -> List[IntervalMetric]:
        """Metrics ordered by date, slot_start, then dimension (None first)."""

        return [
            self.metrics[k]
            for k in sorted(self.metrics, key=lambda k: (k.bucket.date, k.bucket.slot_start, _dim_sort(k.dimension)))
        ]


def _seconds_of_day(t: time) -> int:
    return t.hour * 3600 + t.minute * 60 + t.second


def _dim_sort(dimension: Optional[str]) -> tuple[int, str]:
    return (0, "") if dimension is None else (1, dimension)


def _check_width(width_minutes: int) -> None:
    if isinstance(width_minutes, bool) or not isinstance(width_minutes, int):
        raise ValueError(f"width_minutes must be an int, got {width_minutes!r}")
    if not 1 <= width_minutes <= 24 * 60:
        raise ValueError(f"width_minutes must be within 1..1440, got {width_minutes}")


def bucket_for(timestamp: datetime, width_minutes: int = DEFAULT_WIDTH_MINUTES) -> IntervalBucket:
    """Assign a timestamp to its slot.

    slot_start = floor(time_of_day / width) * width, counted from local
    midnight of the timestamp's own date (no timezone conversion). Lower
    bound inclusive, upper bound exclusive.
    """

    _check_width(width_minutes)
    width_s = width_minutes * 60
    start_s = (_seconds_of_day(timestamp.time()) // width_s) * width_s
    return IntervalBucket(
        date=timestamp.date(),
        slot_start=time(start_s // 3600, (start_s % 3600) // 60),
        width_minutes=width_minutes,
    )


def filter_period(records: Iterable[RawRecord], period_key: str) -> List[RawRecord]:
    """Keep records dated within the period.

    Records without a timestamp are kept so they still surface as defects.
    """

    return [r for r in records if r.timestamp is None or in_period(r.timestamp.date(), period_key)]


def _numeric(value: object) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Real):
        f = float(value)
        return None if math.isnan(f) else f
    if isinstance(value, str):
        try:
            f = float(value.strip())
        except ValueError:
            return None
        return None if math.isnan(f) else f
    return None


def aggregate_intervals(
    records: Iterable[RawRecord],
    *,
    width_minutes: int = DEFAULT_WIDTH_MINUTES,
    dimension: Optional[str] = None,
    sum_fields: Sequence[str] = (),
) -> AggregationResult:
    """Group records into fixed-width slots and compute per-slot metrics.

    - count per (bucket, dimension value) always
    - one sum per entry in sum_fields; a record lacking the field does not
      contribute, a non-numeric value is reported as a defect
    - sums use math.fsum so any permutation of the input gives the same result

    Records without a usable timestamp are skipped and reported.
    """

    _check_width(width_minutes)
    sum_fields = tuple(sum_fields)

    counts: Dict[MetricKey, int] = defaultdict(int)
    values: Dict[MetricKey, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
    defects: List[AggregationDefect] = []
    seen = 0
    skipped = 0

    for record in records:
        seen += 1
        if record.timestamp is None:
            skipped += 1
            defects.append(AggregationDefect(reason="missing_timestamp", source_row=record.source_row))
            continue

        dim_value = record.get(dimension) if dimension else None
        key = MetricKey(
            bucket_for(record.timestamp, width_minutes),
            None if dim_value is None else str(dim_value),
        )
        counts[key] += 1

        for name in sum_fields:
            raw = record.get(name)
            if raw is None:
                continue
            number = _numeric(raw)
            if number is None:
                defects.append(
                    AggregationDefect(
                        reason="non_numeric_value",
                        source_row=record.source_row,
                        field=name,
                        value=str(raw),
                    )
                )
                continue
            values[key][name].append(number)

    metrics: Dict[MetricKey, IntervalMetric] = {}
    for key, count in counts.items():
        per_field = values.get(key, {})
        metrics[key] = IntervalMetric(
            bucket=key.bucket,
            dimension=key.dimension,
            count=count,
            sums={name: math.fsum(per_field.get(name, [])) for name in sum_fields},
        )

    # deterministic defect order regardless of input order
    defects.sort(key=lambda d: (d.source_row is None, d.source_row or 0, d.reason, d.field or ""))

    for defect in defects:
        logger.warning(
            "Aggregation defect (%s) at row %s field=%s value=%s",
            defect.reason,
            defect.source_row,
            defect.field,
            defect.value,
        )

    return AggregationResult(
        metrics=metrics,
        defects=defects,
        width_minutes=width_minutes,
        records_seen=seen,
        records_skipped=skipped,
        sum_fields=sum_fields,
        dimension=dimension,
    )
