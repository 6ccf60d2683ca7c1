"""
tests/test_mailer.py -- Email backends and message templates (auth/mailer.py).

No real network: SendGrid gets a stub session, SMTP gets a patched smtplib.SMTP.
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest
import requests

from auth.mailer import (
    SENDGRID_API,
    ConsoleMailer,
    MailerError,
    SendGridMailer,
    SMTPMailer,
    build_mailer,
    password_reset_message,
    welcome_message,
)
from auth.models import User
from core.config import Settings

USER = User(name="Leo Gillespie", email="leo@example.com")
RESET_URL = "http://testserver/api/v1/users/resetPassword/abc123"


class TestTemplates:
    def test_welcome_greets_first_name(self) -> None:
        subject, body = welcome_message(USER, "http://testserver/me")
        assert "Leo" in body
        assert "Gillespie" not in body
        assert "http://testserver/me" in body
        assert subject

    def test_reset_contains_link_and_validity(self) -> None:
        subject, body = password_reset_message(USER, RESET_URL)
        assert RESET_URL in body
        assert "10 minutes" in subject or "10 minutes" in body


class TestSendGrid:
    def _mailer(self, response=None, error=None):
        session = MagicMock()
        if error is not None:
            session.post.side_effect = error
        else:
            session.post.return_value = response or MagicMock()
        return SendGridMailer(api_key="SG.test", sender="Natours <hello@natours.io>", session=session), session

    def test_posts_payload(self) -> None:
        mailer, session = self._mailer()
        mailer.send_password_reset(USER, RESET_URL)

        args, kwargs = session.post.call_args
        assert args[0] == SENDGRID_API
        assert kwargs["headers"]["Authorization"] == "Bearer SG.test"
        payload = kwargs["json"]
        assert payload["personalizations"][0]["to"] == [{"email": "leo@example.com"}]
        assert payload["from"] == {"email": "hello@natours.io", "name": "Natours"}
        assert RESET_URL in payload["content"][0]["value"]

    def test_http_error_becomes_mailer_error(self) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
        mailer, _ = self._mailer(response=response)
        with pytest.raises(MailerError):
            mailer.send_welcome(USER, "http://testserver/me")

    def test_connection_error_becomes_mailer_error(self) -> None:
        mailer, _ = self._mailer(error=requests.ConnectionError("unreachable"))
        with pytest.raises(MailerError):
            mailer.send_password_reset(USER, RESET_URL)


class TestSMTP:
    def test_sends_with_tls_and_login(self) -> None:
        mailer = SMTPMailer(host="mail", port=587, sender="hello@natours.io", username="u", password="p")
        with patch("auth.mailer.smtplib.SMTP") as smtp_cls:
            smtp = smtp_cls.return_value.__enter__.return_value
            mailer.send_password_reset(USER, RESET_URL)

        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("u", "p")
        msg = smtp.send_message.call_args[0][0]
        assert msg["To"] == "leo@example.com"
        assert RESET_URL in msg.get_content()

    def test_failure_becomes_mailer_error(self) -> None:
        mailer = SMTPMailer(host="mail", port=587, sender="hello@natours.io")
        with patch("auth.mailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, b"busy")):
            with pytest.raises(MailerError):
                mailer.send_welcome(USER, "http://testserver/me")


class TestBuildMailer:
    @pytest.mark.parametrize(
        ("backend", "expected"),
        [("console", ConsoleMailer), ("smtp", SMTPMailer), ("sendgrid", SendGridMailer)],
    )
    def test_selects_backend(self, backend, expected) -> None:
        settings = Settings(_env_file=None, debug=True, email_backend=backend, sendgrid_api_key="SG.x")
        assert isinstance(build_mailer(settings), expected)

    def test_console_never_fails(self) -> None:
        ConsoleMailer().send_password_reset(USER, RESET_URL)
