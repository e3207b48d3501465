"""Email service using SendGrid."""

import asyncio
import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from rental_auth.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending transactional emails via SendGrid."""

    @staticmethod
    def _send_email(to_email: str, subject: str, html_content: str) -> bool:
        """Send email via SendGrid. Returns True if successful."""
        if not settings.sendgrid_api_key:
            logger.warning("SendGrid API key not configured, skipping email send")
            return False

        message = Mail(
            from_email=(settings.email_from_address, settings.email_from_name),
            to_emails=to_email,
            subject=subject,
            html_content=html_content,
        )

        try:
            sg = SendGridAPIClient(settings.sendgrid_api_key)
            response = sg.send(message)
            logger.info(f"Email sent, status: {response.status_code}")
            return response.status_code in (200, 201, 202)
        except Exception:
            logger.exception("Failed to send email")
            return False

    @classmethod
    async def send(cls, to_email: str, subject: str, html_content: str) -> bool:
        """Send an email without blocking the event loop."""
        return await asyncio.to_thread(cls._send_email, to_email, subject, html_content)

    @classmethod
    async def send_confirm_email_code(cls, email: str, code: str, valid_minutes: int) -> bool:
        """Send the email confirmation code."""
        html = f"""
        <h2>Confirm Your Email</h2>
        <p>Your verification code is:</p>
        <h1 style="font-size: 32px; letter-spacing: 8px; font-family: monospace;">{code}</h1>
        <p>This code expires in {valid_minutes} minutes.</p>
        <p>If you didn't create an account, you can ignore this email.</p>
        """
        return await cls.send(email, "Confirm Your Email - Rental Platform", html)

    @classmethod
    async def send_reset_password_code(cls, email: str, code: str, valid_minutes: int) -> bool:
        """Send the password reset code."""
        html = f"""
        <h2>Reset Your Password</h2>
        <p>Your password reset code is:</p>
        <h1 style="font-size: 32px; letter-spacing: 8px; font-family: monospace;">{code}</h1>
        <p>This code expires in {valid_minutes} minutes.</p>
        <p>If you didn't request this, you can ignore this email.</p>
        """
        return await cls.send(email, "Reset Your Password - Rental Platform", html)

    @classmethod
    async def send_welcome_email(cls, email: str) -> bool:
        """Send welcome email after verification."""
        login_url = f"{settings.frontend_url}/login"
        html = f"""
        <h2>Welcome to Rental Platform!</h2>
        <p>Your email has been verified. You can now log in to your account.</p>
        <p><a href="{login_url}">Log in to Rental Platform</a></p>
        """
        return await cls.send(email, "Welcome to Rental Platform!", html)

    @classmethod
    async def send_password_changed_notification(cls, email: str) -> bool:
        """Notify user their password was changed."""
        html = """
        <h2>Password Changed</h2>
        <p>Your password was successfully changed and all sessions were signed out.</p>
        <p>If you didn't make this change, please contact support immediately.</p>
        """
        return await cls.send(email, "Your Password Was Changed - Rental Platform", html)
