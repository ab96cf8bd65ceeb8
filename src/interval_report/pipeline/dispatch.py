from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from interval_report.aggregate.intervals import AggregationDefect, aggregate_intervals, filter_period
from interval_report.config import ArtifactFormat, Settings
from interval_report.errors import BuildError, ReportError
from interval_report.logging_utils import JsonlLogger
from interval_report.mail.client import MailClient, MailMessage, SmtpMailClient
from interval_report.period import period_key_for, validate_period_key
from interval_report.report.artifact import ReportArtifact, build_artifact, render_artifact
from interval_report.report.template import load_template
from interval_report.sources.recipients import (
    RecipientGroup,
    RecipientSource,
    load_recipient_source,
    resolve_recipients,
)
from interval_report.sources.records import RawRecord, load_raw_records
from interval_report.storage.resolver import PlacementResult, place, render_file_name, resolve

logger = logging.getLogger(__name__)

DEFECT_SAMPLE_MAX = 10


class DispatchMode(str, Enum):
    PREVIEW = "preview"
    SEND = "send"


@dataclass
class RunReportResult:
    mode: DispatchMode
    artifact: ReportArtifact
    placement: PlacementResult
    recipients: RecipientGroup
    message: MailMessage
    defects: List[AggregationDefect] = field(default_factory=list)
    preview_path: Optional[Path] = None
    stages_completed: List[str] = field(default_factory=list)


class ReportDispatcher:
    """Run the report pipeline once, strictly in order.

    aggregate -> build -> place -> recipients -> mail

    Each stage consumes the complete output of the previous one. Any
    ReportError aborts the remaining stages, so the mail client is only
    reached with an artifact that is already stored. The storage lock is
    released before the mail client is called.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        mail_client: MailClient,
        run_log: Optional[JsonlLogger] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.mail_client = mail_client
        self.run_log = run_log
        self.run_id = run_id
        self.stages_completed: List[str] = []

    def _log(self, event: Dict[str, Any]) -> None:
        if self.run_log is None:
            return
        payload = dict(event)
        if self.run_id is not None:
            payload["run_id"] = self.run_id
        self.run_log.log(payload)

    def _stage_done(self, stage: str) -> None:
        self.stages_completed.append(stage)

    def run(
        self,
        *,
        records: Sequence[RawRecord],
        recipient_source: Union[RecipientSource, Path],
        mode: DispatchMode,
        base_path: Optional[Path] = None,
        period_key: Optional[str] = None,
        template_path: Optional[Path] = None,
        generated_at: Optional[datetime] = None,
        fmt: Optional[ArtifactFormat] = None,
    ) -> RunReportResult:
        mode = DispatchMode(mode)
        report_cfg = self.settings.report
        generated_at = generated_at or datetime.now(timezone.utc)
        period_key = validate_period_key(period_key or period_key_for(generated_at))
        base_path = base_path or self.settings.paths.base_dir
        fmt = fmt or report_cfg.format
        self.stages_completed = []

        # 1) aggregate
        in_period = filter_period(records, period_key)
        result = aggregate_intervals(
            in_period,
            width_minutes=report_cfg.width_minutes,
            dimension=report_cfg.dimension,
            sum_fields=report_cfg.sum_fields,
        )
        self._stage_done("aggregate")
        self._log(
            {
                "event": "aggregation_done",
                "period": period_key,
                "records_total": len(records),
                "records_in_period": len(in_period),
                "records_skipped": result.records_skipped,
                "bucket_count": len(result.buckets),
                "metric_count": len(result.metrics),
                "defect_count": len(result.defects),
            }
        )
        if result.defects:
            self._log(
                {
                    "event": "aggregation_defects",
                    "defect_count": len(result.defects),
                    "defect_sample": [
                        {"reason": d.reason, "row": d.source_row, "field": d.field, "value": d.value}
                        for d in result.defects[:DEFECT_SAMPLE_MAX]
                    ],
                }
            )

        # 2) build (nothing touches storage before this succeeds)
        try:
            file_name = render_file_name(
                report_cfg.file_name_template,
                report_type=report_cfg.report_type,
                period=period_key,
                ext=fmt,
            )
        except ValueError as exc:
            raise BuildError("artifact file name could not be rendered", detail=str(exc)) from exc
        template = load_template(template_path or report_cfg.template_path)
        artifact = build_artifact(
            result,
            template=template,
            report_type=report_cfg.report_type,
            period_key=period_key,
            generated_at=generated_at,
            logical_name=Path(file_name).stem,
        )
        content = render_artifact(artifact, template, fmt)
        body = self._greeting(period_key=period_key, file_name=file_name)
        self._stage_done("build")
        self._log(
            {
                "event": "artifact_built",
                "logical_name": artifact.logical_name,
                "format": fmt,
                "rows": len(artifact.interval_table),
                "bytes": len(content),
            }
        )

        # 3) place
        location = resolve(
            base_path,
            period_key,
            report_cfg.file_name_template,
            report_type=report_cfg.report_type,
            ext=fmt,
        )
        placement = place(content, location, lock_timeout_s=self.settings.lock_timeout_s)
        self._stage_done("place")
        self._log(
            {
                "event": "artifact_placed",
                "path": str(location.full_path),
                "replaced": placement.replaced,
                "bytes_written": placement.bytes_written,
            }
        )

        # 4) recipients
        source = (
            load_recipient_source(recipient_source) if isinstance(recipient_source, Path) else recipient_source
        )
        recipients = resolve_recipients(source)
        self._stage_done("recipients")
        self._log(
            {
                "event": "recipients_resolved",
                "source": source.origin,
                "to_count": len(recipients.to),
                "cc_count": len(recipients.cc),
                "bcc_count": len(recipients.bcc),
            }
        )

        # 5) mail (slow, no locks held)
        message = MailMessage(
            to=recipients.to,
            cc=recipients.cc,
            bcc=recipients.bcc,
            subject=artifact.logical_name,
            body=body,
            attachment_path=location.full_path,
        )

        preview_path: Optional[Path] = None
        if mode is DispatchMode.PREVIEW:
            preview_path = self.mail_client.display(message)
            self._log({"event": "message_previewed", "subject": message.subject, "preview_path": preview_path})
        else:
            self.mail_client.send(message)
            self._log(
                {
                    "event": "message_sent",
                    "subject": message.subject,
                    "recipient_count": len(message.envelope_recipients),
                }
            )
        self._stage_done("dispatch")

        return RunReportResult(
            mode=mode,
            artifact=artifact,
            placement=placement,
            recipients=recipients,
            message=message,
            defects=list(result.defects),
            preview_path=preview_path,
            stages_completed=list(self.stages_completed),
        )

    def _greeting(self, *, period_key: str, file_name: str) -> str:
        try:
            return self.settings.report.greeting.format(
                report_type=self.settings.report.report_type,
                period=period_key,
                file_name=file_name,
            )
        except (KeyError, IndexError, ValueError) as exc:
            raise BuildError("greeting template references an unknown field", detail=str(exc)) from exc


def run_report(
    settings: Settings,
    *,
    records_path: Path,
    mode: DispatchMode,
    base_path: Optional[Path] = None,
    period_key: Optional[str] = None,
    recipients_path: Optional[Path] = None,
    template_path: Optional[Path] = None,
    generated_at: Optional[datetime] = None,
    fmt: Optional[ArtifactFormat] = None,
    mail_client: Optional[MailClient] = None,
    run_log: Optional[JsonlLogger] = None,
    run_id: Optional[str] = None,
) -> RunReportResult:
    """Single entry point: load raw records, then run the dispatcher.

    Raises a ReportError subclass on any stage failure; per-record defects
    are returned on the result instead.
    """

    client = mail_client or SmtpMailClient(settings.mail, preview_dir=settings.paths.preview_dir)
    dispatcher = ReportDispatcher(settings, mail_client=client, run_log=run_log, run_id=run_id)

    records = load_raw_records(records_path, timestamp_column=settings.report.timestamp_column)
    if run_log is not None:
        run_log.log({"event": "records_loaded", "run_id": run_id, "path": str(records_path), "count": len(records)})

    try:
        return dispatcher.run(
            records=records,
            recipient_source=recipients_path or settings.paths.recipients_path,
            mode=mode,
            base_path=base_path,
            period_key=period_key,
            template_path=template_path,
            generated_at=generated_at,
            fmt=fmt,
        )
    except ReportError as exc:
        logger.error("Report run aborted after %s: %s", dispatcher.stages_completed or "start", exc)
        exc.stages_completed = list(dispatcher.stages_completed)
        raise
