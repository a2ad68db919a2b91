"""Tests for core/mailer.py -- template rendering and SMTP retry behaviour."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock

import pytest
from jinja2 import UndefinedError

from core.mailer import Mailer, render

WELCOME_DATA = {"user_id": 42, "activation_token": "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "ttl_hours": 72}


@pytest.fixture
def mailer() -> Mailer:
    return Mailer("smtp.test", 2525, "", "", "Marquee <no-reply@marquee.test>", timeout=1.0)


@pytest.fixture
def smtp(monkeypatch) -> MagicMock:
    """Replace smtplib.SMTP; the fake's context manager yields itself."""
    fake_cls = MagicMock()
    session = fake_cls.return_value.__enter__.return_value
    session.has_extn.return_value = False
    monkeypatch.setattr("core.mailer.smtplib.SMTP", fake_cls)
    monkeypatch.setattr(Mailer._deliver.retry, "sleep", lambda _s: None)
    return fake_cls


class TestRender:
    def test_welcome_has_all_parts(self) -> None:
        subject, plain, html = render("user_welcome.tmpl", WELCOME_DATA)
        assert subject
        assert "ABCDEFGHIJKLMNOPQRSTUVWXYZ" in plain
        assert "ABCDEFGHIJKLMNOPQRSTUVWXYZ" in html
        assert "42" in plain

    def test_activation_template(self) -> None:
        subject, plain, _ = render("token_activation.tmpl", {"activation_token": "TOKEN", "ttl_hours": 72})
        assert subject
        assert "TOKEN" in plain

    def test_missing_variable_is_an_error(self) -> None:
        with pytest.raises(UndefinedError):
            render("user_welcome.tmpl", {"user_id": 1})


class TestMailer:
    def test_build_message(self, mailer) -> None:
        msg = mailer.build_message("alice@example.com", "user_welcome.tmpl", WELCOME_DATA)
        assert msg["To"] == "alice@example.com"
        assert msg["From"] == "Marquee <no-reply@marquee.test>"
        assert msg.is_multipart()

    def test_send_delivers_once(self, mailer, smtp) -> None:
        mailer.send("alice@example.com", "user_welcome.tmpl", WELCOME_DATA)
        session = smtp.return_value.__enter__.return_value
        smtp.assert_called_once_with("smtp.test", 2525, timeout=1.0)
        session.send_message.assert_called_once()
        session.login.assert_not_called()

    def test_login_when_credentials_configured(self, smtp) -> None:
        mailer = Mailer("smtp.test", 587, "user", "secret", "no-reply@marquee.test")
        mailer.send("alice@example.com", "user_welcome.tmpl", WELCOME_DATA)
        smtp.return_value.__enter__.return_value.login.assert_called_once_with("user", "secret")

    def test_retries_transient_failure(self, mailer, smtp) -> None:
        session = smtp.return_value.__enter__.return_value
        session.send_message.side_effect = [smtplib.SMTPServerDisconnected("bye"), None]
        mailer.send("alice@example.com", "user_welcome.tmpl", WELCOME_DATA)
        assert session.send_message.call_count == 2

    def test_raises_after_final_attempt(self, mailer, smtp) -> None:
        session = smtp.return_value.__enter__.return_value
        session.send_message.side_effect = ConnectionRefusedError("no server")
        with pytest.raises(ConnectionRefusedError):
            mailer.send("alice@example.com", "user_welcome.tmpl", WELCOME_DATA)
        assert session.send_message.call_count == 3

    def test_waits_between_attempts(self, mailer, smtp, monkeypatch) -> None:
        naps = []
        monkeypatch.setattr(Mailer._deliver.retry, "sleep", naps.append)
        session = smtp.return_value.__enter__.return_value
        session.send_message.side_effect = smtplib.SMTPServerDisconnected("bye")
        with pytest.raises(smtplib.SMTPServerDisconnected):
            mailer.send("alice@example.com", "user_welcome.tmpl", WELCOME_DATA)
        assert naps == [0.5, 0.5]

    def test_template_errors_are_not_retried(self, mailer, smtp) -> None:
        with pytest.raises(UndefinedError):
            mailer.send("alice@example.com", "user_welcome.tmpl", {"user_id": 1})
        smtp.assert_not_called()
