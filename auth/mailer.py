"""
auth/mailer.py -- Outbound email for welcome and password-reset messages.

Three interchangeable backends implement the Mailer protocol:
  ConsoleMailer  -- logs the message instead of sending it (development).
  SMTPMailer     -- stdlib smtplib with optional STARTTLS (Mailtrap, Postfix).
  SendGridMailer -- SendGrid v3 HTTP API through a pooled requests.Session.

Every backend raises MailerError on any delivery failure, so callers handle a
single exception type regardless of transport. The flows in auth/flows.py
decide what a failure means (fatal for reset, logged for welcome).

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed
(for the Settings type only).
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import parseaddr
from typing import TYPE_CHECKING, Protocol

import requests

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("natours.mailer")

SENDGRID_API = "https://api.sendgrid.com/v3/mail/send"


class MailerError(Exception):
    """An outbound message could not be delivered."""


class Mailer(Protocol):
    def send_welcome(self, user: User, url: str) -> None: ...

    def send_password_reset(self, user: User, url: str) -> None: ...


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


def _first_name(user: User) -> str:
    return user.name.split(" ")[0] if user.name else "there"


def welcome_message(user: User, url: str) -> tuple[str, str]:
    """Return (subject, body) for the welcome email."""
    subject = "Welcome to the Natours Family!"
    body = (
        f"Hi {_first_name(user)},\n\n"
        "Welcome to Natours, we're glad to have you.\n"
        f"Upload your user photo and complete your profile here: {url}\n"
    )
    return subject, body


def password_reset_message(user: User, url: str) -> tuple[str, str]:
    """Return (subject, body) for the password-reset email.

    The link carries the plaintext reset token; it is valid for 10 minutes by
    default (RESET_TOKEN_EXPIRE_SECONDS).
    """
    subject = "Your password reset token (valid for 10 minutes)"
    body = (
        f"Hi {_first_name(user)},\n\n"
        "Forgot your password? Submit a PATCH request with your new password to:\n"
        f"{url}\n\n"
        "If you didn't forget your password, please ignore this email.\n"
    )
    return subject, body


class _TemplateMailer:
    """Shared send_welcome/send_password_reset on top of a _deliver() primitive."""

    def send_welcome(self, user: User, url: str) -> None:
        subject, body = welcome_message(user, url)
        self._deliver(user.email, subject, body)

    def send_password_reset(self, user: User, url: str) -> None:
        subject, body = password_reset_message(user, url)
        self._deliver(user.email, subject, body)

    def _deliver(self, to: str, subject: str, body: str) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class ConsoleMailer(_TemplateMailer):
    """Writes messages to the log. Never fails."""

    def _deliver(self, to: str, subject: str, body: str) -> None:
        logger.info("Email to %s -- %s\n%s", to, subject, body)


class SMTPMailer(_TemplateMailer):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _deliver(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", to, exc)
            raise MailerError(str(exc)) from exc


class SendGridMailer(_TemplateMailer):
    def __init__(self, api_key: str, sender: str, session: requests.Session | None = None) -> None:
        self.api_key = api_key
        self.sender = sender
        # max_redirects=3 replaces the requests default of 30 for a known endpoint.
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def _deliver(self, to: str, subject: str, body: str) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": _sender_field(self.sender),
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        try:
            resp = self._session.post(
                SENDGRID_API,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=10,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("SendGrid delivery to %s failed: %s", to, exc)
            raise MailerError(str(exc)) from exc


def _sender_field(sender: str) -> dict:
    """Split "Name <addr>" into the SendGrid {"email", "name"} shape."""
    name, addr = parseaddr(sender)
    field = {"email": addr or sender}
    if name:
        field["name"] = name
    return field


def build_mailer(settings: Settings) -> Mailer:
    """Return the Mailer selected by EMAIL_BACKEND."""
    if settings.email_backend == "smtp":
        return SMTPMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.email_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    if settings.email_backend == "sendgrid":
        return SendGridMailer(api_key=settings.sendgrid_api_key, sender=settings.email_from)
    return ConsoleMailer()
