# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian message model with independent per-channel delivery status."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)

MAX_CONTENT_LENGTH = 1600


class Message(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A message to a student's guardian over SMS, email or both.

    `status` is derived from `sms_status` and `email_status` after every
    delivery round; see MessageService.
    """

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_status_created", "status", "created_at"),)

    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    school_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sender_id: Mapped[str | None] = mapped_column(String(36))

    recipient_name: Mapped[str | None] = mapped_column(String(200))
    recipient_phone: Mapped[str | None] = mapped_column(String(30))
    recipient_email: Mapped[str | None] = mapped_column(String(255))

    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    message_type: Mapped[str] = mapped_column(String(30), default="GENERAL", nullable=False)
    template: Mapped[str | None] = mapped_column(String(50))
    language: Mapped[str] = mapped_column(String(5), default="en", nullable=False)
    variables: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    email_body: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(10), default="PENDING", nullable=False)
    sms_status: Mapped[str] = mapped_column(String(15), default="NOT_REQUESTED", nullable=False)
    email_status: Mapped[str] = mapped_column(
        String(15), default="NOT_REQUESTED", nullable=False
    )
    sms_sid: Mapped[str | None] = mapped_column(String(64))
    email_message_id: Mapped[str | None] = mapped_column(String(255))
    sms_error: Mapped[str | None] = mapped_column(Text)
    email_error: Mapped[str | None] = mapped_column(Text)

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    related_flag_id: Mapped[str | None] = mapped_column(String(36))
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
