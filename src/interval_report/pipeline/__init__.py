"""Pipeline orchestration (aggregate → build → place → recipients → mail)."""

from interval_report.pipeline.dispatch import DispatchMode, ReportDispatcher, RunReportResult, run_report

__all__ = ["DispatchMode", "ReportDispatcher", "RunReportResult", "run_report"]
