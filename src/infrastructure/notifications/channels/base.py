# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base classes for notification channels.

Each channel delivers through one medium (SMS, email, in-app). send()
never raises: provider and transport errors come back as a FAILED
ChannelResult so the dispatcher can record them per channel.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from src.utils.datetime import utc_now


class ChannelType(str, Enum):
    """Available notification channel types."""

    SMS = "sms"
    EMAIL = "email"
    IN_APP = "in_app"


class DeliveryStatus(str, Enum):
    """Outcome of one channel attempt."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class NotificationPayload:
    """Everything a channel needs to deliver one notification.

    Attributes:
        notification_type: Message or notification type.
        title: Subject line (email) or notification title (in-app).
        message: Plain text body; the SMS text.
        recipient_id: Staff user ID (in-app channel).
        recipient_name: Display name of the recipient.
        recipient_phone: Phone number (SMS channel).
        recipient_email: Email address (email channel).
        html_body: Optional email body; `message` is used when absent.
        school_id: School the notification belongs to.
        student_id: Student the notification is about.
        student_name: Student's display name.
        related_flag_id: Risk flag that triggered the notification.
        priority: LOW, NORMAL, HIGH or URGENT.
        data: Additional data stored with in-app notifications.
    """

    notification_type: str
    title: str
    message: str
    recipient_id: str | None = None
    recipient_name: str | None = None
    recipient_phone: str | None = None
    recipient_email: str | None = None
    html_body: str | None = None
    school_id: str | None = None
    student_id: str | None = None
    student_name: str | None = None
    related_flag_id: str | None = None
    priority: str = "NORMAL"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChannelResult:
    """Result of a channel send operation.

    Attributes:
        channel: Which channel was used.
        status: Delivery status.
        message_id: Provider message ID (Twilio SID, SMTP Message-ID).
        error_message: Error message if failed or skipped.
        sent_at: When the attempt finished.
        metadata: Additional result metadata.
    """

    channel: ChannelType
    status: DeliveryStatus
    message_id: str | None = None
    error_message: str | None = None
    sent_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.SENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "metadata": self.metadata,
        }


class BaseChannel(ABC):
    """Abstract base class for notification channels."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """Return the channel type."""
        ...

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> ChannelResult:
        """Deliver a notification through this channel.

        Args:
            payload: The notification payload to send.

        Returns:
            ChannelResult with delivery status. Never raises.
        """
        ...

    def create_success_result(
        self,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        return ChannelResult(
            channel=self.channel_type,
            status=DeliveryStatus.SENT,
            message_id=message_id,
            sent_at=utc_now(),
            metadata=metadata or {},
        )

    def create_failure_result(
        self,
        error_message: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        return ChannelResult(
            channel=self.channel_type,
            status=DeliveryStatus.FAILED,
            error_message=error_message,
            sent_at=utc_now(),
            metadata=metadata or {},
        )

    def create_skipped_result(self, reason: str) -> ChannelResult:
        return ChannelResult(
            channel=self.channel_type,
            status=DeliveryStatus.SKIPPED,
            error_message=reason,
            sent_at=utc_now(),
        )
