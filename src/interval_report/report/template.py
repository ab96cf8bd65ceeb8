from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from interval_report.errors import BuildError

DEFAULT_TEMPLATE_PATH = Path(__file__).parent / "templates" / "default.yaml"

# Excel refuses these in sheet titles
_FORBIDDEN_SHEET_CHARS = set('[]:*?/\\')


class CoverTemplate(BaseModel):
    title: str
    lines: List[str] = Field(default_factory=list)


class TableTemplate(BaseModel):
    # "dimension" is optional; without it the column carries the dimension field name
    columns: Dict[str, str] = Field(
        default_factory=lambda: {
            "date": "Date",
            "interval": "Interval",
            "count": "Count",
        }
    )
    totals_row: bool = Field(default=True)
    totals_label: str = Field(default="Total")

    @field_validator("columns")
    @classmethod
    def _unique_labels(cls, v: Dict[str, str]) -> Dict[str, str]:
        seen: Dict[str, str] = {}
        for key, label in v.items():
            if label in seen:
                raise ValueError(f"column label {label!r} used for both {seen[label]!r} and {key!r}")
            seen[label] = key
        return v

    def label(self, key: str, default: Optional[str] = None) -> str:
        return self.columns.get(key, default if default is not None else key)


class SheetNames(BaseModel):
    cover: str = Field(default="Cover", min_length=1, max_length=31)
    intervals: str = Field(default="Intervals", min_length=1, max_length=31)

    @field_validator("cover", "intervals")
    @classmethod
    def _valid_sheet_title(cls, v: str) -> str:
        bad = sorted(_FORBIDDEN_SHEET_CHARS.intersection(v))
        if bad:
            raise ValueError(f"sheet name {v!r} contains forbidden characters: {''.join(bad)}")
        return v

    @model_validator(mode="after")
    def _distinct(self) -> "SheetNames":
        if self.cover.casefold() == self.intervals.casefold():
            raise ValueError("cover and intervals sheets need different names")
        return self


class ReportTemplate(BaseModel):
    """Fixed cover layout + table labels for the report.

    Only presentation lives here; the values come from the aggregation.
    """

    version: int = Field(default=1)
    cover: CoverTemplate
    table: TableTemplate = Field(default_factory=TableTemplate)
    sheets: SheetNames = Field(default_factory=SheetNames)

    def render_cover_lines(self, values: Dict[str, Any]) -> List[str]:
        try:
            return [line.format_map(values) for line in self.cover.lines]
        except (KeyError, IndexError, ValueError) as exc:
            raise BuildError("template cover line references an unknown field", detail=str(exc)) from exc


def load_template(path: Optional[Path] = None) -> ReportTemplate:
    """Load and validate a presentation template (YAML).

    path=None loads the packaged default. A missing, unparsable or invalid
    template raises BuildError.
    """

    path = path or DEFAULT_TEMPLATE_PATH

    if not path.exists():
        raise BuildError(f"report template not found: {path}")

    try:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise BuildError(f"report template unreadable: {path}", detail=str(exc)) from exc

    if not isinstance(parsed, dict):
        raise BuildError(f"report template must be a mapping/object at the top level: {path}")

    try:
        return ReportTemplate.model_validate(parsed)
    except ValidationError as exc:
        raise BuildError(f"invalid report template: {path}", detail=str(exc)) from exc
