"""Outbound mail dispatchers."""

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from storefront.core import config
from storefront.core.errors import MailDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailMessage:
    sender: str
    recipient: str
    subject: str
    html: str


class MailDispatcher(Protocol):
    def send(self, message: MailMessage) -> None:
        ...


class SmtpMailer:
    """Delivers messages through an SMTP relay, one connection per message."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def _build(self, message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = message.sender
        email["To"] = message.recipient
        email["Subject"] = message.subject
        email.set_content("This message requires an HTML capable mail client.")
        email.add_alternative(message.html, subtype="html")
        return email

    def send(self, message: MailMessage) -> None:
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as connection:
                if self._use_tls:
                    connection.starttls()
                if self._username:
                    connection.login(self._username, self._password)
                connection.send_message(self._build(message))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send %r to %s: %s", message.subject, message.recipient, exc)
            raise MailDeliveryError() from exc


class LoggingMailer:
    """Writes messages to the log instead of sending them. Used when no SMTP host is set."""

    def __init__(self) -> None:
        self.outbox: list[MailMessage] = []

    def send(self, message: MailMessage) -> None:
        self.outbox.append(message)
        logger.info("Mail to %s (%s):\n%s", message.recipient, message.subject, message.html)


def get_mailer() -> MailDispatcher:
    if config.SMTP_HOST:
        return SmtpMailer(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
        )
    return LoggingMailer()
