"""Report artifact assembly (cover + interval table) and rendering."""

from interval_report.report.artifact import (
    CoverSection,
    ReportArtifact,
    build_artifact,
    render_artifact,
    render_json,
    render_xlsx,
)
from interval_report.report.template import DEFAULT_TEMPLATE_PATH, ReportTemplate, load_template

__all__ = [
    "DEFAULT_TEMPLATE_PATH",
    "CoverSection",
    "ReportArtifact",
    "ReportTemplate",
    "build_artifact",
    "load_template",
    "render_artifact",
    "render_json",
    "render_xlsx",
]
