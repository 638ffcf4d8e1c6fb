# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Email notification channel using async SMTP.

Sends multipart (plain text and HTML) email with aiosmtplib.

Configuration (via environment variables, see SMTPSettings):
- SMTP_HOST, SMTP_PORT: SMTP server
- SMTP_USERNAME, SMTP_PASSWORD: optional authentication
- SMTP_START_TLS / SMTP_USE_TLS: transport security
- SMTP_FROM_EMAIL, SMTP_FROM_NAME: sender
"""

import html
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

import aiosmtplib

from src.core.config.settings import SMTPSettings, get_settings
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)


class EmailChannel(BaseChannel):
    """Email notification channel using async SMTP."""

    def __init__(self, settings: SMTPSettings | None = None) -> None:
        super().__init__()
        self._settings = settings or get_settings().smtp

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.EMAIL

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        """Send email notification via SMTP.

        Args:
            payload: The notification payload.

        Returns:
            ChannelResult with delivery status.
        """
        settings = self._settings
        if not settings.is_configured:
            return self.create_failure_result("Email channel not configured")

        if not payload.recipient_email:
            return self.create_failure_result("No recipient email address")

        message = self._build_email_message(payload)

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.host,
                port=settings.port,
                username=settings.username,
                password=settings.password.get_secret_value() if settings.password else None,
                use_tls=settings.use_tls,
                start_tls=settings.start_tls and not settings.use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            self.logger.error(
                "Failed to send email to %s: %s",
                payload.recipient_email,
                str(e),
            )
            return self.create_failure_result(
                f"SMTP error: {e}",
                metadata={"recipient": payload.recipient_email},
            )

        self.logger.info("Email sent to %s: %s", payload.recipient_email, payload.title)
        return self.create_success_result(
            message_id=message["Message-ID"],
            metadata={"recipient": payload.recipient_email},
        )

    def _build_email_message(self, payload: NotificationPayload) -> MIMEMultipart:
        settings = self._settings
        message = MIMEMultipart("alternative")
        message["From"] = formataddr((settings.from_name, settings.from_email))
        message["To"] = payload.recipient_email
        message["Subject"] = payload.title
        message["Message-ID"] = make_msgid(domain=settings.from_email.split("@")[-1])

        body = payload.html_body or payload.message
        message.attach(MIMEText(body, "plain", "utf-8"))
        message.attach(MIMEText(self._build_html(payload.title, body), "html", "utf-8"))
        return message

    def _build_html(self, title: str, body: str) -> str:
        paragraphs = "".join(
            f"<p>{html.escape(block).replace(chr(10), '<br>')}</p>"
            for block in body.split("\n\n")
            if block.strip()
        )
        return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #1F2937;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="margin-top: 0;">{html.escape(title)}</h2>
        {paragraphs}
        <p style="color: #9CA3AF; font-size: 12px;">Sent by {html.escape(self._settings.from_name)}.</p>
    </div>
</body>
</html>"""
