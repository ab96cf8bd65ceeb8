"""interval_report - interval-bucketed event reports, stored per month and mailed out.

Raw timestamped records are grouped into fixed-width time slots, rendered
into a report workbook, placed idempotently under a monthly folder and sent
(or staged for review) to the recipients listed in an operator-maintained sheet.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
