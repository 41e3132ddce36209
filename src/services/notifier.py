"""Outbound message delivery for confirmation and reset links."""

from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

import aiosmtplib
import structlog

from src.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class Notifier(ABC):
    """Delivers a message to an address.

    ``send`` returns True on success and False on failure; callers decide
    what a failure means. Implementations do not retry.
    """

    @abstractmethod
    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Send a plain-text message."""


class SmtpNotifier(Notifier):
    """Sends plain-text email via SMTP."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _build_message(self, to_address: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f"{self.settings.email_from_name} <{self.settings.email_from}>"
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Send an email via SMTP.

        Returns True on success, False on failure.
        """
        settings = self.settings

        try:
            await aiosmtplib.send(
                self._build_message(to_address, subject, body),
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
                start_tls=settings.smtp_start_tls and not settings.smtp_use_tls,
                timeout=settings.notification_timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(
                "email_send_failed",
                to=to_address,
                subject=subject,
                error=str(e),
            )
            return False

        logger.info("email_sent", to=to_address, subject=subject)
        return True
