# services/email_service.py
"""
Transactional email over SMTP (aiosmtplib).

Emails are best effort: failures are logged and never raised to callers,
so a broken SMTP relay cannot block registration or password resets.
When SMTP_HOST is not configured the service only logs what it would send.

Usage:
    from services.email_service import get_email_service

    await get_email_service().send_password_reset(user.email, token)
"""

import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from config import SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM, FRONTEND_URL

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    host: Optional[str] = SMTP_HOST
    port: int = SMTP_PORT
    username: Optional[str] = SMTP_USER
    password: Optional[str] = SMTP_PASSWORD
    sender: str = SMTP_FROM
    frontend_url: str = FRONTEND_URL

    @property
    def enabled(self) -> bool:
        return bool(self.host)


class EmailService:

    def __init__(self, config: Optional[EmailConfig] = None):
        self.config = config or EmailConfig()

    async def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        """Sends one email. Returns False when disabled or on failure."""
        if not self.config.enabled:
            logger.info(f"SMTP disabled, email not sent: to={to} subject='{subject}'")
            return False

        msg = MIMEMultipart("alternative")
        msg["From"] = self.config.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(text, "plain", "utf-8"))
        if html:
            msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                start_tls=self.config.port == 587,
            )
            logger.info(f"Email sent: to={to} subject='{subject}'")
            return True
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False

    async def send_password_reset(self, to: str, token: str) -> bool:
        link = f"{self.config.frontend_url}/reset-password?token={token}"
        text = (
            "We received a request to reset your Dokus password.\n\n"
            f"Open this link to choose a new password (valid for 1 hour):\n{link}\n\n"
            "If you did not request this, you can ignore this email."
        )
        return await self.send(to, "Reset your Dokus password", text)

    async def send_invitation(self, to: str, tenant_name: str, inviter_name: str, role: str, token: str) -> bool:
        link = f"{self.config.frontend_url}/invitations/accept?token={token}"
        text = (
            f"{inviter_name} invited you to join {tenant_name} on Dokus as {role}.\n\n"
            f"Accept the invitation:\n{link}\n\n"
            "The invitation expires in 30 days."
        )
        return await self.send(to, f"You are invited to {tenant_name} on Dokus", text)

    async def send_welcome(self, to: str, first_name: str) -> bool:
        text = (
            f"Welcome to Dokus, {first_name or 'there'}!\n\n"
            "Upload your first invoice or receipt and we will take it from there.\n"
            f"{self.config.frontend_url}"
        )
        return await self.send(to, "Welcome to Dokus", text)


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Singleton used by the services and as a FastAPI dependency"""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
