# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification system for the EduGuard risk engine.

This package delivers guardian messages and staff notifications:
- SMS (Twilio REST API)
- Email (SMTP)
- In-app notifications (database records for school staff)

Key Components:
- MessageService: guardian messages with per-channel status and retry,
  plus staff notifications for risk flag events
- Channels: SMSChannel, EmailChannel, InAppChannel
- TemplateRegistry: bilingual (en, rw) message templates

Usage:
    from src.infrastructure.notifications import MessageService

    service = MessageService(session)
    message = await service.send_alert(
        student_id,
        "BOTH",
        "absence_alert",
        {"date": "2025-03-04"},
        actor_id=teacher_id,
    )
    await session.commit()

Configuration (environment variables):
- SMS_ACCOUNT_SID, SMS_AUTH_TOKEN, SMS_FROM_NUMBER: Twilio credentials
- SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD: SMTP server
- NOTIFICATION_MAX_RETRIES: delivery rounds before a message is FAILED
"""

from src.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    EmailChannel,
    InAppChannel,
    NotificationPayload,
    SMSChannel,
)
from src.infrastructure.notifications.service import (
    ChannelStatus,
    GuardianContact,
    MessageChannel,
    MessageService,
    MessageStatus,
    MessageType,
    ProcessSummary,
    is_retry_eligible,
    resolve_guardian,
)
from src.infrastructure.notifications.templates import (
    TemplateRegistry,
    get_template_registry,
)

__all__ = [
    # Service
    "MessageService",
    "ProcessSummary",
    "GuardianContact",
    "resolve_guardian",
    "is_retry_eligible",
    # Status values
    "ChannelStatus",
    "MessageChannel",
    "MessageStatus",
    "MessageType",
    # Channel types
    "BaseChannel",
    "ChannelResult",
    "ChannelType",
    "DeliveryStatus",
    "NotificationPayload",
    # Channels
    "EmailChannel",
    "InAppChannel",
    "SMSChannel",
    # Templates
    "TemplateRegistry",
    "get_template_registry",
]
