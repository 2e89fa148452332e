import logging
import os
import smtplib
from email.message import EmailMessage
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

SITE_NAME = os.getenv("SITE_NAME", "ReelStream")


class EmailService:
    """SMTP sender for account emails (password reset)."""

    @staticmethod
    def is_configured() -> bool:
        return bool(os.getenv("SMTP_HOST") and os.getenv("EMAIL_FROM"))

    @staticmethod
    def _get_config() -> dict:
        if not EmailService.is_configured():
            logger.error("SMTP_HOST and EMAIL_FROM must be configured for email sending")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Email service is not configured",
            )

        return {
            "host": os.getenv("SMTP_HOST"),
            "port": int(os.getenv("SMTP_PORT", "587")),
            "username": os.getenv("SMTP_USERNAME"),
            "password": os.getenv("SMTP_PASSWORD"),
            "from_email": os.getenv("EMAIL_FROM"),
            "use_tls": os.getenv("SMTP_USE_TLS", "true").lower() == "true",
        }

    @classmethod
    def send_password_reset_email(cls, recipient: str, reset_link: str) -> None:
        subject = f"Reset your {SITE_NAME} password"
        body = (
            "Hi there,\n\n"
            f"Someone asked to reset the password for your {SITE_NAME} account.\n"
            "Open the link below to choose a new one:\n\n"
            f"{reset_link}\n\n"
            "The link works once and expires soon. If this wasn't you, ignore this email.\n\n"
            f"The {SITE_NAME} Team"
        )
        cls._send_email(recipient, subject, body)

    @classmethod
    def _send_email(cls, recipient: str, subject: str, body: str) -> None:
        config = cls._get_config()

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = config["from_email"]
        message["To"] = recipient
        message.set_content(body)

        try:
            with smtplib.SMTP(config["host"], config["port"]) as server:
                server.ehlo()
                if config["use_tls"]:
                    server.starttls()
                    server.ehlo()
                if config["username"] and config["password"]:
                    server.login(config["username"], config["password"])
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("Failed to send email via SMTP: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Unable to send email at this time",
            )
