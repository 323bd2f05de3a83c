"""
auth/notifier.py -- Outbound mail for password reset links.

Notifier is the delivery contract: send() returns on success and raises
NotificationError on any transport failure. It never decides whether a
failure matters; the Password Reset Coordinator does (it logs and carries
on so the caller cannot learn whether an address is registered).

Backends (selected by MAIL_BACKEND):
  log      -- writes the message to the "portalauth.mail" logger. Local dev.
  smtp     -- smtplib with optional STARTTLS and login.
  sendgrid -- SendGrid v3 HTTP API via requests.

build_reset_email() owns the subject and both bodies so every backend sends
the same content.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Protocol

import requests

from auth.errors import NotificationError
from core.config import Settings

logger = logging.getLogger("portalauth.mail")

SENDGRID_API = "https://api.sendgrid.com/v3/mail/send"

# Shared session for connection pooling. A fixed, known endpoint needs no
# long redirect chains.
_session = requests.Session()
_session.max_redirects = 3


class Notifier(Protocol):
    def send(self, to_address: str, subject: str, body_text: str, body_html: str) -> None: ...


def build_reset_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/reset-password/{token}"


def build_reset_email(link: str, ttl_seconds: int = 3600) -> tuple[str, str, str]:
    """Return (subject, text body, html body) for a password reset message."""
    minutes = ttl_seconds // 60
    window = "one hour" if minutes == 60 else f"{minutes} minutes"
    subject = "Password Reset Request"
    body_text = (
        "You requested a password reset.\n\n"
        f"Open the following link to choose a new password:\n{link}\n\n"
        f"This link expires in {window}.\n\n"
        "If you did not request this, ignore this email and your password will remain unchanged."
    )
    safe_link = escape(link, quote=True)
    body_html = (
        "<p>You requested a password reset.</p>"
        f'<p><a href="{safe_link}">Reset your password</a></p>'
        f"<p>If the button does not work, copy this link:<br>{safe_link}</p>"
        f"<p>This link expires in {window}.</p>"
        "<p>If you did not request this, ignore this email and your password will remain unchanged.</p>"
    )
    return subject, body_text, body_html


class LogNotifier:
    """Logs messages instead of sending them."""

    def __init__(self, sender: str = "passwordreset@portalauth.local") -> None:
        self.sender = sender

    def send(self, to_address: str, subject: str, body_text: str, body_html: str) -> None:
        logger.info("Mail (log backend) from=%s to=%s subject=%r\n%s", self.sender, to_address, subject, body_text)


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to_address: str, subject: str, body_text: str, body_html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls()
                    server.ehlo()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError() from exc
        logger.info("Email sent via SMTP to %s", to_address)


class SendGridNotifier:
    def __init__(self, api_key: str, *, sender: str, timeout: float = 10) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, to_address: str, subject: str, body_text: str, body_html: str) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to_address}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": body_text},
                {"type": "text/html", "value": body_html},
            ],
        }
        try:
            resp = _session.post(
                SENDGRID_API,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationError() from exc
        logger.info("Email sent via SendGrid to %s", to_address)


def build_notifier(settings: Settings) -> Notifier:
    """Construct the notifier selected by MAIL_BACKEND.

    A backend selected without its credentials is a configuration error and
    raises ValueError at startup rather than failing on the first reset.
    """
    if settings.mail_backend == "smtp":
        if not settings.smtp_host:
            raise ValueError("MAIL_BACKEND=smtp requires SMTP_HOST.")
        return SmtpNotifier(
            settings.smtp_host,
            settings.smtp_port,
            sender=settings.mail_from,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_tls,
        )
    if settings.mail_backend == "sendgrid":
        if not settings.sendgrid_api_key:
            raise ValueError("MAIL_BACKEND=sendgrid requires SENDGRID_API_KEY.")
        return SendGridNotifier(settings.sendgrid_api_key, sender=settings.mail_from)
    return LogNotifier(sender=settings.mail_from)
