"""
notifications/mailer.py -- Outbound email over SMTP with aiosmtplib.

Mailer builds RFC 5322 messages (plain text, HTML, or both as
multipart/alternative) and hands them to aiosmtplib. Two entry points:

  deliver()  -- raises aiosmtplib.SMTPException / OSError on failure. The
                send_email job uses this so Celery can retry.
  send()     -- logs the failure and returns False. For callers that treat
                email as best effort.

Routes never call the mailer directly: registration enqueues a send_email job
(see jobs/service.py) so a slow or unreachable SMTP server never holds up an
HTTP response.

Templates return an EmailTemplate(subject, html, text). Interpolated names
are HTML-escaped; tokens are URL-quoted.

Usage:
    mailer = Mailer.from_settings(get_settings())
    await mailer.send(["a@x.com"], "Hello", text="Hi there")
    template = welcome_template("Ada")
"""

from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Optional, Union
from urllib.parse import quote

import aiosmtplib

from core.config import Settings

logger = logging.getLogger("starterapi.mail")

Recipients = Union[str, Sequence[str]]

# Pause between messages in send_bulk() so relays do not throttle us.
BULK_SEND_DELAY = 0.1


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str
    text: str


def _as_list(value: Optional[Recipients]) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_LAYOUT = '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{body}</div>'
_BUTTON = (
    '<div style="text-align: center; margin: 30px 0;">'
    '<a href="{url}" style="background-color: {color}; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 4px; display: inline-block;">{label}</a>'
    "</div>"
)


def welcome_template(name: str) -> EmailTemplate:
    safe = html.escape(name)
    return EmailTemplate(
        subject="Welcome to Our Platform!",
        html=_LAYOUT.format(
            body=(
                f'<h2 style="color: #333;">Welcome {safe}!</h2>'
                "<p>Thank you for joining our platform. We're excited to have you on board!</p>"
                "<p>If you have any questions, feel free to reach out to our support team.</p>"
                "<p>Best regards,<br>The Team</p>"
            )
        ),
        text=f"Welcome {name}! Thank you for joining our platform. We're excited to have you on board!",
    )


def password_reset_template(name: str, reset_token: str, client_url: str) -> EmailTemplate:
    url = f"{client_url.rstrip('/')}/reset-password?token={quote(reset_token, safe='')}"
    return EmailTemplate(
        subject="Password Reset Request",
        html=_LAYOUT.format(
            body=(
                '<h2 style="color: #333;">Password Reset Request</h2>'
                f"<p>Hi {html.escape(name)},</p>"
                "<p>You requested a password reset for your account. "
                "Click the button below to reset your password:</p>"
                + _BUTTON.format(url=html.escape(url), color="#007bff", label="Reset Password")
                + "<p>If you didn't request this, please ignore this email.</p>"
                "<p>This link will expire in 1 hour.</p>"
                "<p>Best regards,<br>The Team</p>"
            )
        ),
        text=f"Hi {name}, you requested a password reset. Visit: {url}",
    )


def verification_template(name: str, verification_token: str, client_url: str) -> EmailTemplate:
    url = f"{client_url.rstrip('/')}/verify-email?token={quote(verification_token, safe='')}"
    return EmailTemplate(
        subject="Verify Your Email Address",
        html=_LAYOUT.format(
            body=(
                '<h2 style="color: #333;">Verify Your Email</h2>'
                f"<p>Hi {html.escape(name)},</p>"
                "<p>Please verify your email address by clicking the button below:</p>"
                + _BUTTON.format(url=html.escape(url), color="#28a745", label="Verify Email")
                + "<p>If you didn't create this account, please ignore this email.</p>"
                "<p>Best regards,<br>The Team</p>"
            )
        ),
        text=f"Hi {name}, please verify your email by visiting: {url}",
    )


# ---------------------------------------------------------------------------
# Mailer
# ---------------------------------------------------------------------------


class Mailer:
    def __init__(
        self,
        hostname: str = "localhost",
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = False,
        start_tls: bool = True,
        timeout: float = 10.0,
        default_sender: str = "no-reply@localhost",
        client_url: str = "http://localhost:3000",
    ) -> None:
        self.hostname = hostname
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        # STARTTLS on an implicit-TLS connection is an error in aiosmtplib.
        self.start_tls = start_tls and not use_tls
        self.timeout = timeout
        self.default_sender = default_sender
        self.client_url = client_url

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            start_tls=settings.smtp_start_tls,
            timeout=settings.smtp_timeout,
            default_sender=settings.email_from,
            client_url=settings.client_url,
        )

    def _connection_kwargs(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "port": self.port,
            "username": self.username or None,
            "password": self.password or None,
            "use_tls": self.use_tls,
            "start_tls": self.start_tls,
            "timeout": self.timeout,
        }

    def build_message(
        self,
        to: Recipients,
        subject: str,
        text: Optional[str] = None,
        html_body: Optional[str] = None,
        cc: Optional[Recipients] = None,
        bcc: Optional[Recipients] = None,
        sender: Optional[str] = None,
    ) -> tuple[EmailMessage, list[str]]:
        """Return the message and the full envelope recipient list.

        Bcc addresses are envelope-only; they never appear in a header.
        """
        to_list, cc_list, bcc_list = _as_list(to), _as_list(cc), _as_list(bcc)
        if not to_list:
            raise ValueError("At least one recipient is required")
        if text is None and html_body is None:
            raise ValueError("Email needs a text or HTML body")

        message = EmailMessage()
        message["From"] = sender or self.default_sender
        message["To"] = ", ".join(to_list)
        if cc_list:
            message["Cc"] = ", ".join(cc_list)
        message["Subject"] = subject
        if text is not None:
            message.set_content(text)
            if html_body is not None:
                message.add_alternative(html_body, subtype="html")
        else:
            message.set_content(html_body, subtype="html")
        return message, to_list + cc_list + bcc_list

    async def deliver(self, message: EmailMessage, recipients: Sequence[str]) -> None:
        """Hand message to the SMTP server. Raises on any SMTP or socket failure."""
        await aiosmtplib.send(message, recipients=list(recipients), **self._connection_kwargs())
        logger.info("Email %r sent to %s", message["Subject"], ", ".join(recipients))

    async def send(
        self,
        to: Recipients,
        subject: str,
        text: Optional[str] = None,
        html_body: Optional[str] = None,
        cc: Optional[Recipients] = None,
        bcc: Optional[Recipients] = None,
        sender: Optional[str] = None,
    ) -> bool:
        message, recipients = self.build_message(to, subject, text, html_body, cc, bcc, sender)
        try:
            await self.deliver(message, recipients)
        except (aiosmtplib.SMTPException, OSError):
            logger.exception("Failed to send email %r to %s", subject, ", ".join(recipients))
            return False
        return True

    async def send_template(self, to: Recipients, template: EmailTemplate) -> bool:
        return await self.send(to, template.subject, text=template.text, html_body=template.html)

    async def send_welcome(self, to: str, name: str) -> bool:
        return await self.send_template(to, welcome_template(name))

    async def send_password_reset(self, to: str, reset_token: str, name: str) -> bool:
        return await self.send_template(to, password_reset_template(name, reset_token, self.client_url))

    async def send_verification(self, to: str, verification_token: str, name: str) -> bool:
        return await self.send_template(to, verification_template(name, verification_token, self.client_url))

    async def send_bulk(self, messages: Iterable[dict[str, Any]], delay: float = BULK_SEND_DELAY) -> dict[str, int]:
        """Send each message (send() keyword arguments) in turn. Returns sent/failed counts."""
        sent = failed = 0
        for i, kwargs in enumerate(messages):
            if i and delay:
                await asyncio.sleep(delay)
            if await self.send(**kwargs):
                sent += 1
            else:
                failed += 1
        logger.info("Bulk email results: %d sent, %d failed", sent, failed)
        return {"sent": sent, "failed": failed}

    async def verify_connection(self) -> bool:
        """Connect (and log in, when credentials are set) without sending anything."""
        kwargs = self._connection_kwargs()
        username, password = kwargs.pop("username"), kwargs.pop("password")
        smtp = aiosmtplib.SMTP(**kwargs)
        try:
            await smtp.connect()
            if username:
                await smtp.login(username, password or "")
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("Email service connection failed: %s", exc)
            return False
        logger.info("Email service connection verified")
        return True
