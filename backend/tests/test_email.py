from __future__ import annotations

import smtplib
from types import SimpleNamespace

import pytest

from classsched.services import email as email_service
from classsched.services.email import EmailDeliveryError


def _settings(**overrides):
    defaults = dict(
        smtp_host="smtp.primary.test",
        smtp_port=587,
        smtp_username="primary-user",
        smtp_password="primary-pass",
        smtp_from_email="scheduler@example.com",
        smtp_from_name="Scheduler",
        smtp_use_tls=True,
        smtp_use_ssl=False,
        smtp_retry_attempts=2,
        smtp_retry_backoff_seconds=0.0,
        smtp_timeout_seconds=5,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def _fake_smtp(sends, failures):
    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.host = host
            self.port = port

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def starttls(self, context=None):
            return None

        def login(self, username, password):
            return None

        def send_message(self, message):
            sends.append((self.host, message["To"], message["Subject"], message["From"]))
            if failures:
                raise failures.pop(0)
            return {}

    return FakeSMTP


def test_send_email_retries_connection_drop_and_succeeds(monkeypatch):
    monkeypatch.setattr(email_service, "get_settings", lambda: _settings())
    sends: list[tuple] = []
    fake = _fake_smtp(sends, [smtplib.SMTPServerDisconnected("network drop")])
    monkeypatch.setattr(email_service.smtplib, "SMTP", fake)
    monkeypatch.setattr(email_service.smtplib, "SMTP_SSL", fake)

    email_service.send_email(
        to_email="gita.g@faculty.example.com",
        subject="Substitute Request: DS101",
        text_content="Please cover DS101",
    )

    assert len(sends) == 2
    assert sends[-1][1] == "gita.g@faculty.example.com"
    assert sends[-1][3] == "Scheduler <scheduler@example.com>"


def test_send_email_gives_up_after_last_attempt(monkeypatch):
    monkeypatch.setattr(email_service, "get_settings", lambda: _settings(smtp_retry_attempts=2))
    sends: list[tuple] = []
    fake = _fake_smtp(sends, [smtplib.SMTPServerDisconnected("drop"), smtplib.SMTPServerDisconnected("drop")])
    monkeypatch.setattr(email_service.smtplib, "SMTP", fake)

    with pytest.raises(EmailDeliveryError, match="SMTP connection failed"):
        email_service.send_email(to_email="a@example.com", subject="s", text_content="b")
    assert len(sends) == 2


def test_send_email_does_not_retry_rejected_recipient(monkeypatch):
    monkeypatch.setattr(email_service, "get_settings", lambda: _settings(smtp_retry_attempts=3))
    sends: list[tuple] = []
    refused = smtplib.SMTPRecipientsRefused({"a@example.com": (550, b"no such user")})
    monkeypatch.setattr(email_service.smtplib, "SMTP", _fake_smtp(sends, [refused]))

    with pytest.raises(EmailDeliveryError, match="recipient rejected"):
        email_service.send_email(to_email="a@example.com", subject="s", text_content="b")
    assert len(sends) == 1


def test_send_email_requires_configuration(monkeypatch):
    monkeypatch.setattr(email_service, "get_settings", lambda: _settings(smtp_host=None))

    assert email_service.smtp_configured() is False
    with pytest.raises(EmailDeliveryError, match="not configured"):
        email_service.send_email(to_email="a@example.com", subject="s", text_content="b")
