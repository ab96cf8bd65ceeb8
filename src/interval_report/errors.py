"""Error taxonomy for a report run.

Per-record problems are not exceptions: they are collected as
`AggregationDefect` values (see `interval_report.aggregate`) and reported
alongside a successful run. Everything here aborts the remaining stages.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

EXIT_UNEXPECTED = 1
EXIT_USAGE = 2


class ReportError(Exception):
    code = "report_error"
    exit_code = EXIT_UNEXPECTED

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.stages_completed: list[str] = []

    def to_event(self) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "error_code": self.code,
            "error_type": type(self).__name__,
            "error_message": self.message,
        }
        if self.detail:
            event["detail"] = self.detail
        return event


class RecordSourceError(ReportError):
    """Raw record source is missing or unreadable."""

    code = "record_source_error"
    exit_code = 11


class BuildError(ReportError):
    """Presentation template missing/corrupt, or artifact could not be rendered."""

    code = "build_error"
    exit_code = 10


class StorageError(ReportError):
    """Folder creation or artifact placement failed.

    kind: permission | path_not_found | io | locked
    """

    code = "storage_error"
    exit_code = 20

    def __init__(self, message: str, *, kind: str, detail: Optional[str] = None) -> None:
        super().__init__(message, detail=detail)
        self.kind = kind

    def to_event(self) -> Dict[str, Any]:
        event = super().to_event()
        event["kind"] = self.kind
        return event


class RecipientResolutionError(ReportError):
    code = "recipient_resolution_error"
    exit_code = 30


class DispatchError(ReportError):
    """Mail collaborator failed.

    reason: not_configured | unreachable | auth | rejected | preview_failed |
            attachment_missing
    The stored artifact is left in place, so the run can simply be repeated.
    """

    code = "dispatch_error"
    exit_code = 40

    def __init__(self, message: str, *, reason: str, detail: Optional[str] = None) -> None:
        super().__init__(message, detail=detail)
        self.reason = reason

    def to_event(self) -> Dict[str, Any]:
        event = super().to_event()
        event["reason"] = self.reason
        return event
