from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd
import typer

from interval_report.aggregate import aggregate_intervals, filter_period
from interval_report.config import Settings, load_settings
from interval_report.errors import EXIT_USAGE, ReportError
from interval_report.logging_utils import (
    JsonlLogger,
    RunContext,
    default_log_path,
    new_run_context,
    run_summary_event,
)
from interval_report.pipeline import DispatchMode, run_report
from interval_report.period import validate_period_key
from interval_report.sources import load_raw_records, load_recipient_source, resolve_recipients

app = typer.Typer(add_completion=False, help="interval_report CLI: build, store and mail interval reports")


def _ensure_dirs(settings: Settings) -> None:
    settings.paths.logs_dir.mkdir(parents=True, exist_ok=True)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        exists=True,
        dir_okay=False,
        file_okay=True,
        readable=True,
        help="Path to YAML config (optional)",
    ),
) -> None:
    """Load settings and store them in Typer context."""

    try:
        settings = load_settings(config)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_USAGE)

    _ensure_dirs(settings)
    ctx.obj = {"settings": settings}


def _fail(logger: JsonlLogger, run_ctx: RunContext, exc: ReportError) -> None:
    event = {"event": "run_failed", "run_id": run_ctx.run_id, "stages_completed": exc.stages_completed}
    event.update(exc.to_event())
    logger.log(event)
    logger.log(
        run_summary_event(
            ctx=run_ctx,
            status="error",
            stages_completed=exc.stages_completed,
            error_code=exc.code,
        )
    )
    typer.echo(json.dumps({"status": "error", **exc.to_event()}, sort_keys=True), err=True)


@app.command("run")
def run(
    ctx: typer.Context,
    records: Path = typer.Option(..., "--records", help="Raw records file (CSV, Parquet or XLSX)"),
    mode: DispatchMode = typer.Option(
        DispatchMode.PREVIEW, "--mode", case_sensitive=False, help="preview: stage draft; send: deliver now"
    ),
    base_path: Optional[Path] = typer.Option(None, "--base-path", help="Storage root (default: paths.base_dir)"),
    period: Optional[str] = typer.Option(
        None, "--period", help="Period key YYYY-MM. Defaults to the generation month."
    ),
    recipients: Optional[Path] = typer.Option(None, "--recipients", help="TO/CC/BCC sheet (CSV or XLSX)"),
    template: Optional[Path] = typer.Option(None, "--template", help="Presentation template (YAML)"),
    generated_at: Optional[datetime] = typer.Option(
        None, "--generated-at", help="Generation timestamp. Defaults to now (UTC)."
    ),
    fmt: Optional[str] = typer.Option(None, "--format", help="Artifact format: xlsx or json"),
) -> None:
    """Aggregate, build, store and dispatch the interval report."""

    settings: Settings = ctx.obj["settings"]
    run_ctx = new_run_context()
    logger = JsonlLogger(default_log_path(settings.paths.logs_dir, now_utc=run_ctx.started_at_utc))

    logger.log(
        {
            "event": "command_start",
            "command": "run",
            "run_id": run_ctx.run_id,
            "records": str(records),
            "mode": mode.value,
            "base_path": str(base_path or settings.paths.base_dir),
            "period": period,
            "recipients": str(recipients or settings.paths.recipients_path),
            "generated_at": generated_at.isoformat() if generated_at else None,
        }
    )

    try:
        if period is not None:
            validate_period_key(period)
        if fmt is not None and fmt not in ("xlsx", "json"):
            raise ValueError(f"unsupported format {fmt!r}: expected xlsx or json")
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_USAGE)

    try:
        result = run_report(
            settings,
            records_path=records,
            mode=mode,
            base_path=base_path,
            period_key=period,
            recipients_path=recipients,
            template_path=template,
            generated_at=generated_at,
            fmt=fmt,  # type: ignore[arg-type]
            run_log=logger,
            run_id=run_ctx.run_id,
        )
    except ReportError as exc:
        _fail(logger, run_ctx, exc)
        raise typer.Exit(code=exc.exit_code)

    logger.log(
        run_summary_event(
            ctx=run_ctx,
            status="ok",
            stages_completed=result.stages_completed,
            defect_count=len(result.defects),
        )
    )

    summary = {
        "status": "ok",
        "mode": result.mode.value,
        "path": str(result.placement.location.full_path),
        "replaced": result.placement.replaced,
        "defects": len(result.defects),
    }
    if result.preview_path is not None:
        summary["preview_path"] = str(result.preview_path)
    typer.echo(json.dumps(summary, sort_keys=True))


@app.command("recipients")
def recipients_cmd(
    ctx: typer.Context,
    recipients: Optional[Path] = typer.Option(None, "--recipients", help="TO/CC/BCC sheet (CSV or XLSX)"),
) -> None:
    """Print the resolved recipient group."""

    settings: Settings = ctx.obj["settings"]
    path = recipients or settings.paths.recipients_path

    try:
        group = resolve_recipients(load_recipient_source(path))
    except ReportError as exc:
        typer.echo(json.dumps({"status": "error", **exc.to_event()}, sort_keys=True), err=True)
        raise typer.Exit(code=exc.exit_code)

    typer.echo(json.dumps(group.as_dict(), indent=2))


@app.command("intervals")
def intervals_cmd(
    ctx: typer.Context,
    records: Path = typer.Option(..., "--records", help="Raw records file (CSV, Parquet or XLSX)"),
    period: Optional[str] = typer.Option(None, "--period", help="Only records of this YYYY-MM period"),
) -> None:
    """Print the interval table without building or sending anything."""

    settings: Settings = ctx.obj["settings"]
    cfg = settings.report

    try:
        raw = load_raw_records(records, timestamp_column=cfg.timestamp_column)
        if period is not None:
            raw = filter_period(raw, validate_period_key(period))
    except ReportError as exc:
        typer.echo(json.dumps({"status": "error", **exc.to_event()}, sort_keys=True), err=True)
        raise typer.Exit(code=exc.exit_code)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_USAGE)

    result = aggregate_intervals(
        raw,
        width_minutes=cfg.width_minutes,
        dimension=cfg.dimension,
        sum_fields=cfg.sum_fields,
    )

    rows = [
        {
            "date": m.bucket.date.isoformat(),
            "interval": m.bucket.label,
            "dimension": m.dimension,
            "count": m.count,
            **m.sums,
        }
        for m in result.ordered()
    ]
    if rows:
        typer.echo(pd.DataFrame(rows).to_string(index=False))
    else:
        typer.echo("no intervals")
    if result.defects:
        typer.echo(f"{len(result.defects)} record(s) skipped or partially ignored", err=True)


if __name__ == "__main__":
    app()
