from __future__ import annotations

import logging
import mimetypes
import re
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import Optional, Tuple

from interval_report.config import MailConfig
from interval_report.errors import DispatchError
from interval_report.retry_utils import RetryConfig, retry_call

logger = logging.getLogger(__name__)

PREVIEW_SENDER = "interval-report@localhost"

# not in every platform's mime.types
mimetypes.add_type("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ".xlsx")


@dataclass(frozen=True)
class MailMessage:
    to: Tuple[str, ...]
    cc: Tuple[str, ...]
    bcc: Tuple[str, ...]
    subject: str
    body: str
    attachment_path: Path

    @property
    def envelope_recipients(self) -> list[str]:
        return list(self.to + self.cc + self.bcc)


class MailClient(ABC):
    @abstractmethod
    def display(self, message: MailMessage) -> Optional[Path]:
        """Stage the composed message for human review instead of sending it."""

    @abstractmethod
    def send(self, message: MailMessage) -> None:
        """Deliver the message immediately. Raises DispatchError on failure."""


def compose(message: MailMessage, *, sender: str) -> EmailMessage:
    """Build the MIME message. BCC goes to the envelope only, never a header."""

    if not message.attachment_path.exists():
        raise DispatchError(f"attachment not found: {message.attachment_path}", reason="attachment_missing")

    msg = EmailMessage()
    msg["Subject"] = message.subject
    msg["From"] = sender
    msg["To"] = ", ".join(message.to)
    if message.cc:
        msg["Cc"] = ", ".join(message.cc)
    msg.set_content(message.body)

    ctype, encoding = mimetypes.guess_type(message.attachment_path.name)
    if ctype is None or encoding is not None:
        ctype = "application/octet-stream"
    maintype, subtype = ctype.split("/", 1)
    msg.add_attachment(
        message.attachment_path.read_bytes(),
        maintype=maintype,
        subtype=subtype,
        filename=message.attachment_path.name,
    )
    return msg


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)):
        return True
    if isinstance(exc, smtplib.SMTPResponseException):
        # 4xx replies are temporary per RFC 5321
        return 400 <= exc.smtp_code < 500
    return isinstance(exc, (ConnectionError, TimeoutError))


def _safe_file_stem(subject: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", subject).strip("._")
    return stem or "message"


class SmtpMailClient(MailClient):
    """SMTP mail collaborator.

    display() writes an .eml draft (X-Unsent: 1) into preview_dir; most mail
    clients open it as an editable message with the attachment in place.
    send() delivers via SMTP with a bounded retry on transient errors.
    """

    def __init__(self, config: MailConfig, *, preview_dir: Path) -> None:
        self.config = config
        self.preview_dir = preview_dir

    def display(self, message: MailMessage) -> Path:
        msg = compose(message, sender=self.config.sender or PREVIEW_SENDER)
        if message.bcc:
            # drafts keep BCC so the reviewer sees the full routing
            msg["Bcc"] = ", ".join(message.bcc)
        msg["X-Unsent"] = "1"

        path = self.preview_dir / f"{_safe_file_stem(message.subject)}.eml"
        try:
            self.preview_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(msg.as_bytes())
        except OSError as exc:
            raise DispatchError(f"failed to stage preview {path}", reason="preview_failed", detail=str(exc)) from exc

        logger.info("Staged message for review: %s", path)
        return path

    def send(self, message: MailMessage) -> None:
        if not self.config.host or not self.config.sender:
            raise DispatchError("SMTP host and sender must be configured to send", reason="not_configured")

        msg = compose(message, sender=self.config.sender)
        recipients = message.envelope_recipients
        cfg = RetryConfig(max_attempts=self.config.max_attempts)

        def _on_retry(attempt: int, exc: Exception, delay_s: float) -> None:
            logger.warning(
                "SMTP attempt %d/%d to %s failed: %s. Waiting %.1fs.",
                attempt,
                cfg.max_attempts,
                self.config.host,
                exc,
                delay_s,
            )

        try:
            retry_call(lambda: self._deliver(msg, recipients), cfg=cfg, should_retry=_is_transient, on_retry=_on_retry)
        except smtplib.SMTPAuthenticationError as exc:
            raise DispatchError("SMTP authentication failed", reason="auth", detail=str(exc)) from exc
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused, smtplib.SMTPDataError) as exc:
            raise DispatchError("SMTP server rejected the message", reason="rejected", detail=str(exc)) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DispatchError(
                f"SMTP server {self.config.host} unreachable", reason="unreachable", detail=str(exc)
            ) from exc

        logger.info("Sent '%s' to %d recipients", message.subject, len(recipients))

    def _deliver(self, msg: EmailMessage, recipients: list[str]) -> None:
        cfg = self.config
        smtp_cls = smtplib.SMTP_SSL if cfg.use_ssl else smtplib.SMTP
        with smtp_cls(cfg.host, cfg.port, timeout=cfg.timeout_s) as smtp:
            if not cfg.use_ssl and cfg.starttls:
                smtp.starttls()
            if cfg.user and cfg.password:
                smtp.login(cfg.user, cfg.password.get_secret_value())
            smtp.send_message(msg, from_addr=cfg.sender, to_addrs=recipients)
