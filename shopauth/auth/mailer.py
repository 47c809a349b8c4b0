"""Outbound mail for password reset links."""
from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from ..config import settings
from .errors import EmailDeliveryError

logger = logging.getLogger(__name__)

RESET_SUBJECT = "Password reset"


class ResetMailer:
    """Deliver reset links over SMTP.

    One instance is built at startup and shared by every request.  Without a
    ``host`` the mailer only logs that delivery is disabled, which keeps local
    development and tests free of a mail server.
    """

    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        use_tls: bool = True,
        public_base: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.public_base = public_base.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "ResetMailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            sender=settings.MAIL_SENDER,
            use_tls=settings.SMTP_USE_TLS,
            public_base=settings.PUBLIC_BASE,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def reset_link(self, token: str) -> str:
        return f"{self.public_base}/reset/{token}"

    def build_reset_message(self, recipient: str, token: str) -> EmailMessage:
        link = self.reset_link(token)
        message = EmailMessage()
        message["Subject"] = RESET_SUBJECT
        message["From"] = self.sender
        message["To"] = recipient
        message.set_content(
            "You requested a password reset.\n\n"
            f"Open this link to set a new password: {link}\n\n"
            "The link expires in one hour. If you did not ask for a reset, "
            "ignore this email.\n"
        )
        message.add_alternative(
            "<p>You requested a password reset</p>"
            f'<p>Click this <a href="{link}">link</a> to set a new password.</p>',
            subtype="html",
        )
        return message

    def send_reset_email(self, recipient: str, token: str) -> None:
        """Send the reset link for ``token`` to ``recipient``."""

        if not self.enabled:
            logger.warning("SMTP_HOST not configured; reset email to %s not sent", recipient)
            return

        message = self.build_reset_message(recipient, token)
        try:
            self._deliver(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"could not deliver reset email to {recipient}") from exc
        logger.info("Sent password reset email to %s", recipient)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls(context=ssl.create_default_context())
            if self.username:
                client.login(self.username, self.password)
            client.send_message(message)


__all__ = ["RESET_SUBJECT", "ResetMailer"]
