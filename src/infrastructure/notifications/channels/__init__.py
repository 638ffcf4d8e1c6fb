# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification delivery channels."""

from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    NotificationPayload,
)
from src.infrastructure.notifications.channels.email import EmailChannel
from src.infrastructure.notifications.channels.in_app import InAppChannel
from src.infrastructure.notifications.channels.sms import SMSChannel, format_phone_number

__all__ = [
    "BaseChannel",
    "ChannelResult",
    "ChannelType",
    "DeliveryStatus",
    "NotificationPayload",
    "EmailChannel",
    "InAppChannel",
    "SMSChannel",
    "format_phone_number",
]
