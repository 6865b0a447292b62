"""
auth/mail.py -- Outbound email for login codes.

The Credential Issuer only depends on the MailDispatcher protocol:

    send(to, subject, body) -> None     raises MailDeliveryError on failure

Two implementations:
  SmtpMailer     stdlib smtplib, one connection per message, STARTTLS and
                 login when configured.
  LoggingMailer  development fallback selected when SMTP_HOST is empty.
                 Writes recipient and subject to the log; the body (which
                 contains the code) is logged only in debug mode.

Failures are never retried here. A transport error surfaces as
MailDeliveryError so the API can answer 503 and the client can try again.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from auth.errors import MailDeliveryError
from core.config import Settings

logger = logging.getLogger("benefits.auth.mail")

LOGIN_SUBJECT = "Your sign-in code"

_LOGIN_BODY = """Hello {name},

Your one-time sign-in code is: {code}

The code expires in {minutes} minutes and can be used once.
If you did not ask to sign in, you can ignore this message.
"""


class MailDispatcher(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    """Deliver mail through an SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, to: str, subject: str, body: str) -> None:
        s = self._settings
        message = EmailMessage()
        message["From"] = s.mail_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as smtp:
                if s.smtp_starttls:
                    smtp.starttls()
                if s.smtp_username:
                    smtp.login(s.smtp_username, s.smtp_password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s via %s:%s failed: %s", to, s.smtp_host, s.smtp_port, exc)
            raise MailDeliveryError() from exc
        logger.info("Mail '%s' sent to %s", subject, to)


class LoggingMailer:
    """Log messages instead of sending them (no SMTP relay configured)."""

    def __init__(self, debug: bool = False) -> None:
        self._debug = debug

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail '%s' for %s not sent: no SMTP host configured", subject, to)
        if self._debug:
            logger.debug("Mail body for %s:\n%s", to, body)


def build_mailer(settings: Settings) -> MailDispatcher:
    """SmtpMailer when SMTP_HOST is set, LoggingMailer otherwise."""
    if settings.smtp_host:
        return SmtpMailer(settings)
    logger.warning("SMTP_HOST is not set; login codes will be logged instead of emailed")
    return LoggingMailer(debug=settings.debug)


def render_login_body(name: str, code: int, expire_seconds: int) -> str:
    minutes = max(1, expire_seconds // 60)
    return _LOGIN_BODY.format(name=name, code=code, minutes=minutes)


def send_login_code(mailer: MailDispatcher, to: str, name: str, code: int, expire_seconds: int = 300) -> None:
    """Email a login code. MailDeliveryError propagates to the caller."""
    mailer.send(to, LOGIN_SUBJECT, render_login_body(name, code, expire_seconds))
