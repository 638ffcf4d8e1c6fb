# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-app notification channel.

Creates Notification rows that school staff see in their notification
center. Requires a database session set via set_session().
"""

from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models.notification import Notification
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)
from src.utils.datetime import utc_now


class InAppChannel(BaseChannel):
    """In-app notification channel for staff."""

    DEFAULT_EXPIRATION_DAYS = 30

    def __init__(self, session: AsyncSession | None = None) -> None:
        super().__init__()
        self._session = session

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.IN_APP

    def set_session(self, session: AsyncSession) -> None:
        self._session = session

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        if self._session is None:
            return self.create_failure_result(
                "Database session not set. Call set_session() first."
            )
        if not payload.recipient_id:
            return self.create_failure_result("No recipient user")

        notification = Notification(
            user_id=payload.recipient_id,
            school_id=payload.school_id,
            notification_type=payload.notification_type,
            priority=payload.priority,
            title=payload.title,
            message=payload.message,
            data={
                "student_id": payload.student_id,
                "student_name": payload.student_name,
                **payload.data,
            },
            related_flag_id=payload.related_flag_id,
            expires_at=utc_now() + timedelta(days=self.DEFAULT_EXPIRATION_DAYS),
        )

        try:
            self._session.add(notification)
            await self._session.flush()
        except SQLAlchemyError as e:
            self.logger.error(
                "Failed to create in-app notification for user %s: %s",
                payload.recipient_id,
                str(e),
            )
            return self.create_failure_result(f"Database error: {e}")

        self.logger.info(
            "Created in-app notification %s for user %s",
            notification.id,
            payload.recipient_id,
        )
        return self.create_success_result(message_id=notification.id)
