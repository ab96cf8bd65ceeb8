from __future__ import annotations

import io
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from interval_report.aggregate.intervals import AggregationResult, IntervalMetric
from interval_report.config import ArtifactFormat
from interval_report.errors import BuildError
from interval_report.report.template import ReportTemplate


@dataclass(frozen=True)
class CoverSection:
    title: str
    lines: tuple[str, ...]


@dataclass(frozen=True)
class ReportArtifact:
    """The generated report: a cover section and the aggregated interval table.

    Built from a whitelist of sections only. Raw records are never part of it.
    """

    report_type: str
    period_key: str
    logical_name: str
    cover: CoverSection
    interval_table: tuple[IntervalMetric, ...]
    sum_fields: tuple[str, ...]
    width_minutes: int
    generated_at: datetime
    dimension: Optional[str] = None

    @property
    def has_dimension(self) -> bool:
        return self.dimension is not None

    @property
    def total_count(self) -> int:
        return sum(m.count for m in self.interval_table)


def build_artifact(
    result: AggregationResult,
    *,
    template: Optional[ReportTemplate],
    report_type: str,
    period_key: str,
    generated_at: Optional[datetime] = None,
    logical_name: Optional[str] = None,
) -> ReportArtifact:
    """Assemble the report from the aggregation and the presentation template.

    A missing template is a BuildError; nothing is written here, so a failed
    build never leaves a partial file behind.
    """

    if template is None:
        raise BuildError("no report template available")

    generated_at = generated_at or datetime.now(timezone.utc)
    table = tuple(result.ordered())

    cover_values: Dict[str, Any] = {
        "report_type": report_type,
        "period": period_key,
        "generated_at": generated_at.isoformat(),
        "width_minutes": result.width_minutes,
        "bucket_count": len(result.buckets),
        "total_count": sum(m.count for m in table),
    }

    return ReportArtifact(
        report_type=report_type,
        period_key=period_key,
        logical_name=logical_name or f"{report_type}_{period_key}",
        cover=CoverSection(title=template.cover.title, lines=tuple(template.render_cover_lines(cover_values))),
        interval_table=table,
        sum_fields=result.sum_fields,
        width_minutes=result.width_minutes,
        generated_at=generated_at,
        dimension=result.dimension,
    )


def interval_frame(artifact: ReportArtifact, template: ReportTemplate) -> pd.DataFrame:
    """Interval table as a DataFrame with the template's column labels."""

    cols = template.table
    dim_label = cols.label("dimension", artifact.dimension)
    rows: List[Dict[str, Any]] = []
    for metric in artifact.interval_table:
        row: Dict[str, Any] = {
            cols.label("date"): metric.bucket.date.isoformat(),
            cols.label("interval"): metric.bucket.label,
        }
        if artifact.has_dimension:
            row[dim_label] = metric.dimension if metric.dimension is not None else ""
        row[cols.label("count")] = metric.count
        for name in artifact.sum_fields:
            row[cols.label(name)] = metric.sums.get(name, 0.0)
        rows.append(row)

    columns = [cols.label("date"), cols.label("interval")]
    if artifact.has_dimension:
        columns.append(dim_label)
    columns.append(cols.label("count"))
    columns.extend(cols.label(name) for name in artifact.sum_fields)
    duplicates = sorted({c for c in columns if columns.count(c) > 1})
    if duplicates:
        raise BuildError("interval table has duplicate column labels", detail=", ".join(duplicates))

    return pd.DataFrame(rows, columns=columns)


def render_xlsx(artifact: ReportArtifact, template: ReportTemplate) -> bytes:
    """Render as a workbook: cover sheet first, then the interval sheet.

    With totals_row enabled the interval sheet ends in a row of SUM formulas
    over the count and sum columns.
    """

    df = interval_frame(artifact, template)
    buffer = io.BytesIO()

    try:
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            _write_sheets(writer, df, artifact, template)
    except (ValueError, TypeError, IndexError) as exc:
        # openpyxl rejects titles/values late; the writer may mask it on close
        raise BuildError("workbook could not be rendered", detail=str(exc)) from exc

    return buffer.getvalue()


def _write_sheets(
    writer: pd.ExcelWriter,
    df: pd.DataFrame,
    artifact: ReportArtifact,
    template: ReportTemplate,
) -> None:
    cover_ws = writer.book.create_sheet(template.sheets.cover)
    cover_ws.append([artifact.cover.title])
    cover_ws["A1"].font = Font(bold=True, size=14)
    cover_ws.append([])
    for line in artifact.cover.lines:
        cover_ws.append([line])
    cover_ws.column_dimensions["A"].width = 60

    df.to_excel(writer, index=False, sheet_name=template.sheets.intervals)
    ws = writer.sheets[template.sheets.intervals]

    for idx, column in enumerate(df.columns, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(12, len(str(column)) + 2)

    if template.table.totals_row:
        first_numeric = df.columns.get_loc(template.table.label("count")) + 1
        totals_row = len(df) + 2
        ws.cell(row=totals_row, column=1, value=template.table.totals_label).font = Font(bold=True)
        for col_idx in range(first_numeric, len(df.columns) + 1):
            letter = get_column_letter(col_idx)
            value: Any = f"=SUM({letter}2:{letter}{totals_row - 1})" if len(df) else 0
            ws.cell(row=totals_row, column=col_idx, value=value).font = Font(bold=True)


def artifact_payload(artifact: ReportArtifact) -> Dict[str, Any]:
    return {
        "meta": {
            "report_type": artifact.report_type,
            "period": artifact.period_key,
            "logical_name": artifact.logical_name,
            "generated_at": artifact.generated_at.isoformat(),
            "width_minutes": artifact.width_minutes,
        },
        "cover": {"title": artifact.cover.title, "lines": list(artifact.cover.lines)},
        "table": [
            {
                "date": m.bucket.date.isoformat(),
                "slot_start": m.bucket.slot_start.strftime("%H:%M"),
                "dimension": m.dimension,
                "count": m.count,
                "sums": dict(m.sums),
            }
            for m in artifact.interval_table
        ],
    }


def render_json(artifact: ReportArtifact) -> bytes:
    text = json.dumps(artifact_payload(artifact), ensure_ascii=False, sort_keys=True, indent=2) + "\n"
    return text.encode("utf-8")


def render_artifact(artifact: ReportArtifact, template: ReportTemplate, fmt: ArtifactFormat) -> bytes:
    if fmt == "xlsx":
        return render_xlsx(artifact, template)
    if fmt == "json":
        return render_json(artifact)
    raise BuildError(f"unsupported artifact format: {fmt}")
