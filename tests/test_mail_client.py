from __future__ import annotations

import smtplib
from email import message_from_bytes
from pathlib import Path

import pytest

from interval_report.config import MailConfig
from interval_report.errors import DispatchError
from interval_report.mail import client as mail_client
from interval_report.mail.client import MailMessage, SmtpMailClient, compose


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []
    fail_connects = 0
    send_error: Exception | None = None

    def __init__(self, host, port, timeout=None) -> None:
        if _FakeSMTP.fail_connects > 0:
            _FakeSMTP.fail_connects -= 1
            raise smtplib.SMTPServerDisconnected("connection dropped")
        self.host = host
        self.port = port
        self.started_tls = False
        self.login_args = None
        self.sent: list[tuple] = []
        _FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self) -> None:
        self.started_tls = True

    def login(self, user, password) -> None:
        self.login_args = (user, password)

    def send_message(self, msg, from_addr=None, to_addrs=None) -> None:
        if _FakeSMTP.send_error is not None:
            raise _FakeSMTP.send_error
        self.sent.append((msg, from_addr, list(to_addrs)))


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch: pytest.MonkeyPatch):
    _FakeSMTP.instances = []
    _FakeSMTP.fail_connects = 0
    _FakeSMTP.send_error = None
    monkeypatch.setattr(mail_client.smtplib, "SMTP", _FakeSMTP)
    monkeypatch.setattr(mail_client.retry_call.__globals__["time"], "sleep", lambda *_: None)
    return _FakeSMTP


def _message(tmp_path: Path) -> MailMessage:
    attachment = tmp_path / "interval_report_2024-03.xlsx"
    attachment.write_bytes(b"PK\x03\x04fake")
    return MailMessage(
        to=("a@x", "b@x"),
        cc=("c@x",),
        bcc=("hidden@x",),
        subject="interval_report_2024-03",
        body="Hello",
        attachment_path=attachment,
    )


def _client(tmp_path: Path, **overrides) -> SmtpMailClient:
    cfg = MailConfig(host="smtp.example.com", sender="reports@example.com", **overrides)
    return SmtpMailClient(cfg, preview_dir=tmp_path / "outbox")


def test_compose_keeps_bcc_out_of_headers(tmp_path: Path) -> None:
    msg = compose(_message(tmp_path), sender="reports@example.com")

    assert msg["To"] == "a@x, b@x"
    assert msg["Cc"] == "c@x"
    assert msg["Bcc"] is None
    attachments = list(msg.iter_attachments())
    assert [a.get_filename() for a in attachments] == ["interval_report_2024-03.xlsx"]
    assert attachments[0].get_content_type() == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def test_compose_missing_attachment(tmp_path: Path) -> None:
    message = _message(tmp_path)
    message.attachment_path.unlink()

    with pytest.raises(DispatchError) as excinfo:
        compose(message, sender="reports@example.com")
    assert excinfo.value.reason == "attachment_missing"


def test_display_writes_draft_with_full_routing(tmp_path: Path, fake_smtp) -> None:
    path = _client(tmp_path).display(_message(tmp_path))

    assert path == tmp_path / "outbox" / "interval_report_2024-03.eml"
    parsed = message_from_bytes(path.read_bytes())
    assert parsed["X-Unsent"] == "1"
    assert parsed["Bcc"] == "hidden@x"
    assert parsed["Subject"] == "interval_report_2024-03"
    assert fake_smtp.instances == []


def test_send_delivers_to_envelope_including_bcc(tmp_path: Path, fake_smtp) -> None:
    client = _client(tmp_path, user="bot", password="pw")

    client.send(_message(tmp_path))

    (smtp,) = fake_smtp.instances
    assert smtp.started_tls is True
    assert smtp.login_args == ("bot", "pw")
    msg, from_addr, to_addrs = smtp.sent[0]
    assert from_addr == "reports@example.com"
    assert to_addrs == ["a@x", "b@x", "c@x", "hidden@x"]
    assert msg["Bcc"] is None


def test_send_retries_transient_disconnect(tmp_path: Path, fake_smtp) -> None:
    fake_smtp.fail_connects = 2

    _client(tmp_path, max_attempts=3).send(_message(tmp_path))

    assert len(fake_smtp.instances) == 1
    assert len(fake_smtp.instances[0].sent) == 1


def test_send_gives_up_after_max_attempts(tmp_path: Path, fake_smtp) -> None:
    fake_smtp.fail_connects = 5

    with pytest.raises(DispatchError) as excinfo:
        _client(tmp_path, max_attempts=2).send(_message(tmp_path))

    assert excinfo.value.reason == "unreachable"
    assert fake_smtp.fail_connects == 3


def test_send_rejected_is_not_retried(tmp_path: Path, fake_smtp) -> None:
    fake_smtp.send_error = smtplib.SMTPRecipientsRefused({"a@x": (550, b"no such user")})

    with pytest.raises(DispatchError) as excinfo:
        _client(tmp_path).send(_message(tmp_path))

    assert excinfo.value.reason == "rejected"
    assert len(fake_smtp.instances) == 1


def test_send_auth_failure(tmp_path: Path, fake_smtp) -> None:
    fake_smtp.send_error = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    with pytest.raises(DispatchError) as excinfo:
        _client(tmp_path).send(_message(tmp_path))

    assert excinfo.value.reason == "auth"


def test_send_requires_configuration(tmp_path: Path, fake_smtp) -> None:
    client = SmtpMailClient(MailConfig(), preview_dir=tmp_path)

    with pytest.raises(DispatchError) as excinfo:
        client.send(_message(tmp_path))

    assert excinfo.value.reason == "not_configured"
    assert fake_smtp.instances == []
