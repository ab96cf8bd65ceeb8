from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

ArtifactFormat = Literal["xlsx", "json"]

DEFAULT_GREETING = (
    "Hello,\n\n"
    "please find attached the {report_type} for {period} ({file_name}).\n\n"
    "Best regards"
)


class PathsConfig(BaseModel):
    base_dir: Path = Field(default=Path("reports"))
    logs_dir: Path = Field(default=Path("logs"))
    preview_dir: Path = Field(default=Path("outbox"))
    recipients_path: Path = Field(default=Path("config/recipients.csv"))


class ReportConfig(BaseModel):
    report_type: str = Field(default="interval_report")

    # Bucket width in minutes; must divide into a day (1..1440)
    width_minutes: int = Field(default=30, ge=1, le=1440)

    # Optional record field used to split each bucket (e.g. category, agent)
    dimension: Optional[str] = Field(default=None)
    sum_fields: List[str] = Field(default_factory=list)

    timestamp_column: str = Field(default="timestamp")

    file_name_template: str = Field(default="{report_type}_{period}.{ext}")
    format: ArtifactFormat = Field(default="xlsx")

    greeting: str = Field(default=DEFAULT_GREETING)

    # None -> packaged default template
    template_path: Optional[Path] = Field(default=None)

    @field_validator("file_name_template")
    @classmethod
    def _file_name_fields(cls, v: str) -> str:
        # only report_type, period and ext are available when the name is rendered
        try:
            name = v.format(report_type="r", period="2000-01", ext="x")
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"file_name_template may only use {{report_type}}, {{period}}, {{ext}}: {exc}") from exc
        if not name or "/" in name or "\\" in name:
            raise ValueError("file_name_template must produce a plain file name")
        return v


class MailConfig(BaseModel):
    # Host/credentials come from env (SMTP_*) and must not be committed
    host: Optional[str] = Field(default=None)
    port: int = Field(default=587)
    sender: Optional[str] = Field(default=None)
    user: Optional[str] = Field(default=None)
    password: Optional[SecretStr] = Field(default=None)

    starttls: bool = Field(default=True)
    use_ssl: bool = Field(default=False)

    timeout_s: float = Field(default=30.0)
    max_attempts: int = Field(default=3, ge=1)


class Settings(BaseModel):
    """Application settings.

    Recipients:
    - paths.recipients_path points to the TO/CC/BCC sheet (single source of truth).
      It is read on every run; no addresses live in code or config.

    Storage layout:
    - {paths.base_dir}/{YYYY-MM}/{report.file_name_template}
    """

    report: ReportConfig = Field(default_factory=ReportConfig)
    mail: MailConfig = Field(default_factory=MailConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    lock_timeout_s: float = Field(default=30.0)


_ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "SMTP_HOST": ("mail", "host"),
    "SMTP_PORT": ("mail", "port"),
    "SMTP_USER": ("mail", "user"),
    "SMTP_PASSWORD": ("mail", "password"),
    "MAIL_SENDER": ("mail", "sender"),
    "REPORT_BASE_DIR": ("paths", "base_dir"),
}


def load_settings(config_path: Optional[Path]) -> Settings:
    """Load settings from .env + optional YAML.

    Precedence:
      1) defaults
      2) .env / process env (SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD,
         MAIL_SENDER, REPORT_BASE_DIR)
      3) YAML file (if provided)

    Only the project's local `.env` is loaded, never one from a parent directory.
    """

    load_dotenv(dotenv_path=Path(".env"), override=False)

    base = Settings()

    merged: Dict[str, Any] = base.model_dump(mode="python")

    for env_key, (section, field) in _ENV_OVERRIDES.items():
        value = _getenv(env_key)
        if value is not None:
            merged[section][field] = value

    if config_path is not None:
        cfg = _load_yaml(config_path)
        merged = _deep_merge(merged, cfg)

    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _getenv(key: str) -> Optional[str]:
    import os

    value = os.getenv(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(str(path))
    raw = path.read_text(encoding="utf-8")
    parsed = yaml.safe_load(raw) or {}
    if not isinstance(parsed, dict):
        raise ValueError("YAML config must be a mapping/object at the top level")
    return parsed


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if (
            k in out
            and isinstance(out[k], dict)
            and isinstance(v, dict)
        ):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out
