# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SMS notification channel using the Twilio REST API over httpx.

Configuration (via environment variables, see SMSSettings):
- SMS_ACCOUNT_SID, SMS_AUTH_TOKEN: Twilio credentials
- SMS_FROM_NUMBER: sender number
- SMS_DEFAULT_COUNTRY_CODE: prefix for local numbers (default: 250)
"""

import re

import httpx

from src.core.config.settings import SMSSettings, get_settings
from src.core.risk.exceptions import DeliveryError
from src.infrastructure.database.models.message import MAX_CONTENT_LENGTH
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)

_NON_DIGITS = re.compile(r"[^\d+]")


def format_phone_number(phone: str, country_code: str = "250") -> str:
    """Normalise a phone number to E.164.

    >>> format_phone_number("0788 123 456")
    '+250788123456'
    >>> format_phone_number("250788123456")
    '+250788123456'
    """
    cleaned = _NON_DIGITS.sub("", phone)
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        return f"+{cleaned[2:]}"
    if cleaned.startswith(country_code):
        return f"+{cleaned}"
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"+{country_code}{cleaned}"


class SMSChannel(BaseChannel):
    """Delivers SMS through the Twilio Messages endpoint.

    An httpx.AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise one client is created per send.
    """

    def __init__(
        self,
        settings: SMSSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self._settings = settings or get_settings().sms
        self._client = client

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.SMS

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        if not self._settings.is_configured:
            return self.create_failure_result("SMS provider not configured")

        if not payload.recipient_phone:
            return self.create_failure_result("No recipient phone number")

        to_number = format_phone_number(
            payload.recipient_phone, self._settings.default_country_code
        )

        try:
            sid = await self._post_message(to_number, payload.message[:MAX_CONTENT_LENGTH])
        except (DeliveryError, httpx.HTTPError) as e:
            self.logger.error("Failed to send SMS to %s: %s", to_number, e)
            return self.create_failure_result(
                f"SMS error: {e}", metadata={"recipient": to_number}
            )

        self.logger.info("SMS sent to %s (sid=%s)", to_number, sid)
        return self.create_success_result(message_id=sid, metadata={"recipient": to_number})

    async def _post_message(self, to_number: str, body: str) -> str:
        settings = self._settings
        url = f"{settings.api_base_url}/Accounts/{settings.account_sid}/Messages.json"
        data = {"To": to_number, "From": settings.from_number, "Body": body}
        auth = (settings.account_sid, settings.auth_token.get_secret_value())

        if self._client is not None:
            response = await self._client.post(url, data=data, auth=auth)
        else:
            async with httpx.AsyncClient(timeout=settings.timeout_seconds) as client:
                response = await client.post(url, data=data, auth=auth)

        if response.status_code >= 400:
            raise DeliveryError(
                f"Provider returned {response.status_code}: {response.text[:200]}",
                channel=ChannelType.SMS.value,
                status_code=response.status_code,
            )

        return response.json().get("sid", "")
