"""
Email delivery over SMTP.

EmailTransport is the contract the dispatcher depends on; EmailService is
the SMTP implementation used in production. smtplib is blocking, so each
send runs in a worker thread.

Typical usage:
    service = EmailService.from_settings(get_settings())
    await service.send(to="ann@example.com", subject="Reminder",
                       html="<p>Soon</p>", text="Soon")
"""

import asyncio
import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from notifications.errors import ChannelDeliveryError

logger = logging.getLogger(__name__)


class EmailTransport(ABC):
    """Anything that can deliver one email.

    Implementations raise on failure; returning normally means the
    message was accepted for delivery.
    """

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        pass


class EmailService(EmailTransport):
    """SMTP email sender with TLS support.

    Args:
        smtp_host: SMTP server hostname (e.g. smtp.gmail.com).
        smtp_port: SMTP port (587 for STARTTLS, 465 for SSL).
        username: SMTP login username.
        password: SMTP login password.
        from_address: Envelope/header sender address.
        from_name: Display name for the sender.
        enabled: When False every send raises ChannelDeliveryError.
        timeout: Socket timeout in seconds.
    """

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        username: Optional[str],
        password: Optional[str],
        from_address: str = "noreply@patientcare.com",
        from_name: str = "PatientCare",
        enabled: bool = True,
        timeout: float = 30.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.enabled = enabled
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "EmailService":
        """Build the service from application Settings."""
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.smtp_from_address,
            from_name=settings.smtp_from_name,
            enabled=settings.email_enabled and settings.smtp_configured,
            timeout=settings.smtp_timeout_seconds,
        )

    def _build_message(self, to: str, subject: str, html: str, text: str) -> MIMEMultipart:
        """Build a multipart/alternative message (plain text first)."""
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _send_sync(self, to: str, subject: str, html: str, text: str) -> None:
        """Synchronous SMTP send (runs in a thread via asyncio).

        Raises:
            ChannelDeliveryError: On any SMTP or socket failure.
        """
        msg = self._build_message(to, subject, html, text)
        context = ssl.create_default_context()

        try:
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port,
                                      context=context, timeout=self.timeout) as server:
                    server.login(self.username, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.ehlo()
                    server.starttls(context=context)
                    server.ehlo()
                    server.login(self.username, self.password)
                    server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth failed (check username/password): {e}")
            raise ChannelDeliveryError(f"SMTP authentication failed: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            raise ChannelDeliveryError(f"SMTP send failed: {e}") from e

        logger.info(f"Email sent to {to}: {subject}")

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        """Send an email asynchronously (runs SMTP in a thread).

        Raises:
            ChannelDeliveryError: If email is disabled or the send fails.
        """
        if not self.enabled:
            raise ChannelDeliveryError("Email delivery is not configured")
        await asyncio.to_thread(self._send_sync, to, subject, html, text)
