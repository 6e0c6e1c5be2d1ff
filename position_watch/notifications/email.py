"""Email notification service."""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Collection

from ..config import EmailConfig

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Send notifications via email, one message per recipient."""

    def __init__(self, config: EmailConfig) -> None:
        self.smtp_server = config.smtp_server
        self.smtp_port = config.smtp_port
        self.sender_email = config.sender_email
        self.sender_password = config.sender_password

    def _send_sync(self, recipient: str, message: str, subject: str) -> None:
        msg = MIMEMultipart()
        msg["From"] = self.sender_email
        msg["To"] = recipient
        msg["Subject"] = subject

        msg.attach(MIMEText(message.replace("\n", "<br>\n"), "html"))

        server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30)
        try:
            server.starttls()
            server.login(self.sender_email, self.sender_password)
            server.send_message(msg)
        finally:
            server.quit()

    async def _send_to(self, recipient: str, message: str, subject: str) -> bool:
        try:
            await asyncio.to_thread(self._send_sync, recipient, message, subject)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", recipient, e)
            return False
        logger.info("Alert email sent to %s", recipient)
        return True

    async def send(
        self, text: str, destinations: Collection[str], subject: str = ""
    ) -> dict[str, bool]:
        """Send ``text`` to every recipient concurrently."""
        recipients = list(destinations)
        if not self.sender_email or not self.sender_password:
            logger.warning("Email credentials not configured")
            return {recipient: False for recipient in recipients}

        results = await asyncio.gather(
            *(self._send_to(r, text, subject) for r in recipients)
        )
        return dict(zip(recipients, results))
