"""Outgoing mail over SMTP."""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from html import escape
from urllib.parse import urlencode

from localheroes_service.logging import get_logger


class MailClient:
    """
    Sends transactional mail (password reset links).

    SMTP is blocking, so each send runs in a worker thread. With
    ``enabled`` false, messages are logged instead of sent, which is what
    development and test configurations use.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        use_tls: bool,
        from_address: str,
        frontend_origin: str,
        timeout_seconds: int,
    ) -> None:
        self._enabled = enabled
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._from_address = from_address
        self._frontend_origin = frontend_origin.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._logger = get_logger(__name__)

    def password_reset_url(self, token: str) -> str:
        """Frontend URL that lets the user confirm a password reset."""
        return f"{self._frontend_origin}/auth/confirm-reset-password?{urlencode({'token': token})}"

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)

    async def send(self, to_address: str, subject: str, text: str, html: str | None) -> None:
        """
        Send a message.

        Raises:
            smtplib.SMTPException / OSError: On delivery failure. Callers
                treating mail as best effort catch and log these.
        """
        if not self._enabled:
            self._logger.info("Mail delivery disabled", extra={"to": to_address, "subject": subject})
            return

        message = EmailMessage()
        message["From"] = self._from_address
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(text)
        if html is not None:
            message.add_alternative(html, subtype="html")

        await asyncio.to_thread(self._deliver, message)
        self._logger.info("Mail sent", extra={"to": to_address, "subject": subject})

    async def send_password_reset(self, to_address: str, first_name: str, token: str) -> None:
        """Send the password reset link."""
        url = self.password_reset_url(token)
        text = (
            f"Hello {first_name},\n\n"
            "We received a request to reset your LocalHeroes password.\n"
            f"Open the following link to choose a new one:\n\n{url}\n\n"
            "The link expires shortly. If you did not request a reset, ignore this mail.\n"
        )
        html = (
            f"<p>Hello {escape(first_name)},</p>"
            "<p>We received a request to reset your LocalHeroes password.</p>"
            f'<p><a href="{escape(url)}">Reset your password</a></p>'
            "<p>The link expires shortly. If you did not request a reset, ignore this mail.</p>"
        )
        await self.send(to_address, "Reset your LocalHeroes password", text, html)
