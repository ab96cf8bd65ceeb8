"""Fixed-width interval aggregation of raw records."""

from interval_report.aggregate.intervals import (
    DEFAULT_WIDTH_MINUTES,
    AggregationDefect,
    AggregationResult,
    IntervalBucket,
    IntervalMetric,
    MetricKey,
    aggregate_intervals,
    bucket_for,
    filter_period,
)

__all__ = [
    "DEFAULT_WIDTH_MINUTES",
    "AggregationDefect",
    "AggregationResult",
    "IntervalBucket",
    "IntervalMetric",
    "MetricKey",
    "aggregate_intervals",
    "bucket_for",
    "filter_period",
]
