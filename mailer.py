"""
Outbound transactional email: an SMTP relay sender and an in-memory double.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """Raised when a message could not be handed to the relay."""


@dataclass
class MailMessage:
    to: str
    subject: str
    body: str


class Mailer(Protocol):
    def send(self, to: Optional[str], subject: str, body: str) -> None:
        ...


def welcome_message(name: Optional[str]) -> tuple[str, str]:
    subject = "Welcome to the club"
    body = (
        f"Hi {name or 'there'},\n\n"
        "Thank you for registering. We have received your application and "
        "will contact you about the next steps.\n"
    )
    return subject, body


def meeting_message(name: Optional[str], date: Optional[str], time: Optional[str]) -> tuple[str, str]:
    subject = "Your interview has been scheduled"
    body = (
        f"Hi {name or 'there'},\n\n"
        f"Your interview is scheduled for {date} at {time}.\n"
    )
    return subject, body


@dataclass
class InMemoryMailer:
    """Records outgoing messages instead of sending them."""

    sent: List[MailMessage] = field(default_factory=list)
    fail: bool = False

    def send(self, to: Optional[str], subject: str, body: str) -> None:
        if not to:
            raise MailDeliveryError("No recipient address")
        if self.fail:
            raise MailDeliveryError(f"delivery to {to} failed")
        self.sent.append(MailMessage(to=to, subject=subject, body=body))


@dataclass
class SmtpMailer:
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout: float = 30.0
    sender: Optional[str] = None

    def send(self, to: Optional[str], subject: str, body: str) -> None:
        if not to:
            raise MailDeliveryError("No recipient address")
        sender = self.sender or self.username
        if not sender:
            raise MailDeliveryError("No sender address configured (MAIL_FROM or SMTP_USERNAME)")

        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(str(exc)) from exc
        logger.info("Sent '%s' to %s", subject, to)
