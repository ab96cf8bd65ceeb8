"""Raw record loaders and the operator-maintained recipient sheet."""

from interval_report.sources.recipients import (
    RecipientGroup,
    RecipientSource,
    load_recipient_source,
    read_column,
    resolve_recipients,
)
from interval_report.sources.records import RawRecord, load_raw_records, parse_timestamp, records_from_frame

__all__ = [
    "RawRecord",
    "RecipientGroup",
    "RecipientSource",
    "load_raw_records",
    "load_recipient_source",
    "parse_timestamp",
    "read_column",
    "records_from_frame",
    "resolve_recipients",
]
