# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian messaging and staff notification service.

This service handles the complete guardian message flow:
1. Resolving the guardian contact (primary first, else the first listed)
2. Rendering the template in the requested language
3. Attempting every requested channel independently
4. Folding the channel outcomes into the message status

Status bookkeeping after each delivery round:
- any requested channel SENT            -> SENT
- a channel failed, retries exhausted   -> FAILED
- otherwise                             -> PENDING

A round in which any attempted channel failed counts as one retry.
Channel errors are recorded on the message and never raised.

Like the detection service, this service flushes and leaves the commit
to its caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config.settings import NotificationSettings, get_settings
from src.core.risk.exceptions import (
    MessageNotFoundError,
    RiskValidationError,
    StudentNotFoundError,
)
from src.core.risk.types import FlagEvent, Severity
from src.infrastructure.database.models.message import Message
from src.infrastructure.database.models.notification import Notification
from src.infrastructure.database.models.school import School, StaffUser, Student
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
from src.infrastructure.notifications.templates import (
    TemplateRegistry,
    get_template_registry,
)
from src.utils.datetime import ensure_utc, hours_ago, utc_now

logger = logging.getLogger(__name__)


class MessageChannel(str, Enum):
    """Channels a guardian message can be requested on."""

    SMS = "SMS"
    EMAIL = "EMAIL"
    BOTH = "BOTH"

    @property
    def requested(self) -> tuple[ChannelType, ...]:
        if self == MessageChannel.BOTH:
            return (ChannelType.SMS, ChannelType.EMAIL)
        if self == MessageChannel.SMS:
            return (ChannelType.SMS,)
        return (ChannelType.EMAIL,)


class MessageStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class ChannelStatus(str, Enum):
    NOT_REQUESTED = "NOT_REQUESTED"
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class MessageType(str, Enum):
    ABSENCE_ALERT = "ABSENCE_ALERT"
    PERFORMANCE_ALERT = "PERFORMANCE_ALERT"
    MEETING_REQUEST = "MEETING_REQUEST"
    GENERAL = "GENERAL"
    INTERVENTION = "INTERVENTION"
    EMERGENCY = "EMERGENCY"


# Flag severity to staff notification priority
SEVERITY_PRIORITY = {
    Severity.CRITICAL: "URGENT",
    Severity.HIGH: "HIGH",
    Severity.MEDIUM: "NORMAL",
    Severity.LOW: "LOW",
}

# Message columns holding each channel's outcome
_CHANNEL_FIELDS = {
    ChannelType.SMS: ("sms_status", "sms_sid", "sms_error"),
    ChannelType.EMAIL: ("email_status", "email_message_id", "email_error"),
}

# Free-text messages are rendered through this template
BULK_TEMPLATE = "general"
DEFAULT_BULK_SUBJECT = "Message from the school"


@dataclass(frozen=True)
class GuardianContact:
    """A guardian entry from Student.guardian_contacts.

    Attributes:
        name: Guardian's name.
        phone: Phone number, any format.
        email: Email address.
        relation: Relation to the student.
        is_primary: Preferred contact.
    """

    name: str
    phone: str | None = None
    email: str | None = None
    relation: str | None = None
    is_primary: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "GuardianContact":
        """Build a contact from stored JSON.

        Raises:
            RiskValidationError: The entry is not a mapping, has no name,
                or has neither phone nor email.
        """
        if not isinstance(data, dict):
            raise RiskValidationError("Guardian contact must be a mapping")
        name = str(data.get("name") or "").strip()
        phone = data.get("phone") or None
        email = data.get("email") or None
        if not name:
            raise RiskValidationError("Guardian contact has no name")
        if not phone and not email:
            raise RiskValidationError(
                "Guardian contact has neither phone nor email", {"name": name}
            )
        return cls(
            name=name,
            phone=phone,
            email=email,
            relation=data.get("relation"),
            is_primary=bool(data.get("is_primary") or data.get("isPrimary")),
        )


def resolve_guardian(contacts: list[dict[str, Any]] | None) -> GuardianContact:
    """Pick the primary guardian contact, else the first one.

    Raises:
        RiskValidationError: No contacts, or the chosen one is malformed.
    """
    if not contacts:
        raise RiskValidationError("Student has no guardian contacts")
    primary = next(
        (
            contact
            for contact in contacts
            if isinstance(contact, dict)
            and (contact.get("is_primary") or contact.get("isPrimary"))
        ),
        contacts[0],
    )
    return GuardianContact.from_dict(primary)


@dataclass
class ProcessSummary:
    """Outcome of one pending-message sweep."""

    processed: int = 0
    sent: int = 0
    failed: int = 0
    still_pending: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "stillPending": self.still_pending,
        }


@dataclass
class BulkSendResult:
    """Per-student outcome of a bulk guardian message.

    `results` holds one entry per stored message, whatever its delivery
    status; `errors` one entry per student that got no message.
    """

    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": len(self.results),
            "failed": len(self.errors),
            "results": self.results,
            "errors": self.errors,
        }


@dataclass
class DeliveryStats:
    """Message counts for one school over a time window."""

    school_id: str
    start: datetime
    end: datetime
    total: int = 0
    sent: int = 0
    failed: int = 0
    pending: int = 0
    by_type: dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in MessageType}
    )
    by_channel: dict[str, int] = field(
        default_factory=lambda: {channel.value: 0 for channel in MessageChannel}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schoolId": self.school_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "pending": self.pending,
            "byType": dict(self.by_type),
            "byChannel": dict(self.by_channel),
        }


def _parse_channel(channel: str | MessageChannel) -> MessageChannel:
    try:
        return MessageChannel(str(getattr(channel, "value", channel)).upper())
    except ValueError as e:
        raise RiskValidationError(f"Invalid message channel: {channel!r}") from e


def _parse_message_type(message_type: str | MessageType) -> MessageType:
    try:
        return MessageType(str(getattr(message_type, "value", message_type)).upper())
    except ValueError as e:
        raise RiskValidationError(
            f"Invalid message type: {message_type!r}",
            {"allowed": [t.value for t in MessageType]},
        ) from e


def requested_channels(message: Message) -> tuple[ChannelType, ...]:
    return MessageChannel(message.channel).requested


def channel_status(message: Message, channel: ChannelType) -> ChannelStatus:
    return ChannelStatus(getattr(message, _CHANNEL_FIELDS[channel][0]))


def is_retry_eligible(message: Message) -> bool:
    """Whether the pending sweep would pick this message up."""
    if message.retry_count >= message.max_retries:
        return False
    if message.status == MessageStatus.PENDING.value:
        return True
    return any(
        channel_status(message, channel) == ChannelStatus.FAILED
        for channel in requested_channels(message)
    )


def pending_messages(limit: int) -> Select:
    """Retry-eligible messages, oldest first.

    Rows another worker is already sweeping are skipped rather than
    waited on, so parallel sweeps never deliver the same message twice.
    """
    return (
        select(Message)
        .where(
            Message.retry_count < Message.max_retries,
            or_(
                Message.status == MessageStatus.PENDING.value,
                Message.sms_status == ChannelStatus.FAILED.value,
                Message.email_status == ChannelStatus.FAILED.value,
            ),
        )
        .order_by(Message.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )


class MessageService:
    """Sends guardian messages and staff notifications.

    Attributes:
        channels: Delivery channels for guardian messages, by type.
    """

    def __init__(
        self,
        db: AsyncSession,
        channels: dict[ChannelType, BaseChannel] | None = None,
        templates: TemplateRegistry | None = None,
        settings: NotificationSettings | None = None,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings().notification
        self._templates = templates or get_template_registry()
        self.channels = channels if channels is not None else {
            ChannelType.SMS: SMSChannel(),
            ChannelType.EMAIL: EmailChannel(),
        }
        self._in_app = InAppChannel(db)

    # =========================================================================
    # Guardian messages
    # =========================================================================

    async def send_alert(
        self,
        student_id: str,
        channel: str | MessageChannel,
        template: str,
        variables: dict[str, Any] | None = None,
        actor_id: str | None = None,
        *,
        language: str | None = None,
        related_flag_id: str | None = None,
        message_type: str | MessageType | None = None,
    ) -> Message:
        """Render, store and deliver a guardian message.

        Delivery failures are recorded on the returned message; only
        input problems raise. `message_type` overrides the template's.

        Raises:
            StudentNotFoundError: Unknown student.
            RiskValidationError: Bad channel or message type, unknown
                template, or no
                usable guardian contact.
        """
        requested = _parse_channel(channel)
        kind = _parse_message_type(message_type) if message_type else None
        student = await self._db.get(Student, student_id)
        if student is None:
            raise StudentNotFoundError(student_id)

        guardian = resolve_guardian(student.guardian_contacts)
        school = await self._db.get(School, student.school_id)
        language = language or self._settings.default_language

        context = {
            "studentName": student.full_name,
            "guardianName": guardian.name,
            "schoolName": school.name if school else "",
            "contactInfo": (school.phone if school else None) or self._settings.contact_info,
            **(variables or {}),
        }
        rendered = self._templates.render(template, language, context)

        message = Message(
            student_id=student.id,
            school_id=student.school_id,
            sender_id=actor_id,
            recipient_name=guardian.name,
            recipient_phone=guardian.phone,
            recipient_email=guardian.email,
            channel=requested.value,
            message_type=kind.value if kind else rendered.message_type,
            template=template,
            language=rendered.language,
            variables=dict(variables or {}),
            subject=rendered.subject,
            content=rendered.sms,
            email_body=rendered.email_body,
            status=MessageStatus.PENDING.value,
            retry_count=0,
            max_retries=self._settings.max_retries,
            related_flag_id=related_flag_id,
        )
        for channel_type, (status_field, _, _) in _CHANNEL_FIELDS.items():
            status = (
                ChannelStatus.PENDING
                if channel_type in requested.requested
                else ChannelStatus.NOT_REQUESTED
            )
            setattr(message, status_field, status.value)

        self._db.add(message)
        await self._db.flush()

        await self._deliver(message, requested.requested)

        logger.info(
            "Guardian message %s for student %s: status=%s sms=%s email=%s",
            message.id,
            student_id,
            message.status,
            message.sms_status,
            message.email_status,
        )
        return message

    async def retry_message(self, message_id: str) -> Message:
        """Reset a message and re-attempt every requested channel.

        Raises:
            MessageNotFoundError: Unknown message.
        """
        message = await self.get_message(message_id)

        message.status = MessageStatus.PENDING.value
        message.retry_count = 0
        for channel_type in requested_channels(message):
            status_field, _, error_field = _CHANNEL_FIELDS[channel_type]
            setattr(message, status_field, ChannelStatus.PENDING.value)
            setattr(message, error_field, None)

        await self._deliver(message, requested_channels(message))
        logger.info("Message %s retried: status=%s", message_id, message.status)
        return message

    async def process_pending_messages(self, limit: int | None = None) -> ProcessSummary:
        """Re-attempt messages that are pending or have a failed channel.

        Only channels that are not SENT are attempted again. One message
        failing unexpectedly does not stop the sweep.
        """
        limit = limit or self._settings.pending_batch_size
        result = await self._db.execute(pending_messages(limit))

        summary = ProcessSummary()
        for message in result.scalars().all():
            summary.processed += 1
            channels = tuple(
                channel
                for channel in requested_channels(message)
                if channel_status(message, channel) != ChannelStatus.SENT
            )
            try:
                await self._deliver(message, channels)
            except Exception:
                logger.exception("Pending delivery failed for message %s", message.id)

            if message.status == MessageStatus.SENT.value:
                summary.sent += 1
            elif message.status == MessageStatus.FAILED.value:
                summary.failed += 1
            else:
                summary.still_pending += 1

        if summary.processed:
            logger.info(
                "Processed %d pending messages: sent=%d failed=%d pending=%d",
                summary.processed,
                summary.sent,
                summary.failed,
                summary.still_pending,
            )
        return summary

    async def get_message(self, message_id: str) -> Message:
        message = await self._db.get(Message, message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    async def send_bulk(
        self,
        student_ids: list[str],
        content: str,
        *,
        subject: str | None = None,
        channel: str | MessageChannel = MessageChannel.SMS,
        message_type: str | MessageType = MessageType.GENERAL,
        actor_id: str | None = None,
        language: str | None = None,
    ) -> BulkSendResult:
        """Send the same free-text message to several students' guardians.

        Content goes through the `general` template. A student that is
        unknown or has no usable guardian contact is reported in
        `errors` and does not stop the others.

        Raises:
            RiskValidationError: Empty content, bad channel or message
                type, or no `general` template.
        """
        if not content or not content.strip():
            raise RiskValidationError("Message content is required")
        requested = _parse_channel(channel)
        kind = _parse_message_type(message_type)
        self._templates.get(BULK_TEMPLATE)

        variables = {"message": content.strip(), "subject": subject or DEFAULT_BULK_SUBJECT}
        outcome = BulkSendResult()
        for student_id in dict.fromkeys(student_ids):
            try:
                message = await self.send_alert(
                    student_id,
                    requested,
                    BULK_TEMPLATE,
                    variables,
                    actor_id,
                    language=language,
                    message_type=kind,
                )
            except StudentNotFoundError:
                outcome.errors.append({"studentId": student_id, "error": "Student not found"})
                continue
            except RiskValidationError as e:
                outcome.errors.append({"studentId": student_id, "error": e.message})
                continue
            outcome.results.append(
                {"studentId": student_id, "messageId": message.id, "status": message.status}
            )

        logger.info(
            "Bulk message: %d stored, %d skipped",
            len(outcome.results),
            len(outcome.errors),
        )
        return outcome

    async def delivery_stats(
        self,
        school_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> DeliveryStats:
        """Count a school's guardian messages created in [start, end].

        The window defaults to the last `stats_window_days` days. Naive
        bounds are taken as UTC.

        Raises:
            RiskValidationError: start is after end.
        """
        end = ensure_utc(end) if end else utc_now()
        start = (
            ensure_utc(start)
            if start
            else end - timedelta(days=self._settings.stats_window_days)
        )
        if start > end:
            raise RiskValidationError("start must not be after end")

        stats = DeliveryStats(school_id=school_id, start=start, end=end)
        result = await self._db.execute(
            select(Message.status, Message.message_type, Message.channel, func.count())
            .where(
                Message.school_id == school_id,
                Message.created_at >= start,
                Message.created_at <= end,
            )
            .group_by(Message.status, Message.message_type, Message.channel)
        )
        for status, message_type, channel, count in result.all():
            stats.total += count
            if status == MessageStatus.SENT.value:
                stats.sent += count
            elif status == MessageStatus.FAILED.value:
                stats.failed += count
            else:
                stats.pending += count
            stats.by_type[message_type] = stats.by_type.get(message_type, 0) + count
            stats.by_channel[channel] = stats.by_channel.get(channel, 0) + count
        return stats

    # =========================================================================
    # Flag events
    # =========================================================================

    async def notify_flag_event(self, event: FlagEvent) -> dict[str, Any]:
        """Alert the guardian and the school's administrators about a flag.

        A student without usable guardian contacts still gets staff
        notifications.
        """
        message_id = None
        try:
            message = await self.send_alert(
                event.student_id,
                MessageChannel.BOTH,
                "risk_alert",
                {
                    "riskTitle": event.title,
                    "riskDescription": event.description,
                    "severity": event.severity.value,
                },
                event.actor_id,
                related_flag_id=event.flag_id,
            )
            message_id = message.id
        except RiskValidationError as e:
            logger.warning(
                "No guardian alert for flag %s: %s", event.flag_id, e.message
            )

        notified = await self._notify_admins(event)
        return {"messageId": message_id, "staffNotified": notified}

    async def _notify_admins(self, event: FlagEvent) -> int:
        student = await self._db.get(Student, event.student_id)
        admins = await self._db.execute(
            select(StaffUser).where(
                StaffUser.school_id == event.school_id,
                StaffUser.role == "ADMIN",
                StaffUser.is_active.is_(True),
            )
        )

        since = hours_ago(self._settings.admin_dedup_hours)
        notified = 0
        for admin in admins.scalars().all():
            if await self._recently_notified(admin.id, event.flag_id, since):
                logger.debug("Skipping duplicate notification for %s", admin.id)
                continue

            result = await self._in_app.send(
                NotificationPayload(
                    notification_type="RISK_ALERT",
                    title=f"{event.severity.value} risk: {event.title}",
                    message=event.description,
                    recipient_id=admin.id,
                    recipient_name=admin.full_name,
                    school_id=event.school_id,
                    student_id=event.student_id,
                    student_name=student.full_name if student else None,
                    related_flag_id=event.flag_id,
                    priority=SEVERITY_PRIORITY[event.severity],
                    data={"risk_type": event.type.value, "kind": event.kind.value},
                )
            )
            if result.succeeded:
                notified += 1
        return notified

    async def _recently_notified(
        self, user_id: str, flag_id: str, since: datetime
    ) -> bool:
        result = await self._db.execute(
            select(Notification.id)
            .where(
                Notification.user_id == user_id,
                Notification.related_flag_id == flag_id,
                Notification.created_at >= since,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _deliver(self, message: Message, channels: tuple[ChannelType, ...]) -> None:
        payload = NotificationPayload(
            notification_type=message.message_type,
            title=message.subject or "",
            message=message.content,
            recipient_name=message.recipient_name,
            recipient_phone=message.recipient_phone,
            recipient_email=message.recipient_email,
            html_body=message.email_body,
            school_id=message.school_id,
            student_id=message.student_id,
            related_flag_id=message.related_flag_id,
        )

        round_failed = False
        for channel_type in channels:
            result = await self._attempt(channel_type, payload)
            self._record(message, channel_type, result)
            if not result.succeeded:
                round_failed = True

        message.last_attempt_at = utc_now()
        self._finalize(message, round_failed)
        await self._db.flush()

    async def _attempt(
        self, channel_type: ChannelType, payload: NotificationPayload
    ) -> ChannelResult:
        channel = self.channels.get(channel_type)
        if channel is None:
            return ChannelResult(
                channel=channel_type,
                status=DeliveryStatus.FAILED,
                error_message=f"{channel_type.value} channel not available",
                sent_at=utc_now(),
            )
        try:
            return await channel.send(payload)
        except Exception as e:
            logger.error(
                "Channel %s raised during send: %s", channel_type.value, e, exc_info=True
            )
            return ChannelResult(
                channel=channel_type,
                status=DeliveryStatus.FAILED,
                error_message=str(e),
                sent_at=utc_now(),
            )

    def _record(
        self, message: Message, channel_type: ChannelType, result: ChannelResult
    ) -> None:
        status_field, id_field, error_field = _CHANNEL_FIELDS[channel_type]
        if result.succeeded:
            setattr(message, status_field, ChannelStatus.SENT.value)
            setattr(message, id_field, result.message_id)
            setattr(message, error_field, None)
        else:
            setattr(message, status_field, ChannelStatus.FAILED.value)
            setattr(message, error_field, result.error_message)

    def _finalize(self, message: Message, round_failed: bool) -> None:
        if round_failed:
            message.retry_count += 1

        statuses = [channel_status(message, c) for c in requested_channels(message)]
        if ChannelStatus.SENT in statuses:
            message.status = MessageStatus.SENT.value
            message.sent_at = message.sent_at or utc_now()
        elif ChannelStatus.FAILED in statuses and message.retry_count >= message.max_retries:
            message.status = MessageStatus.FAILED.value
        else:
            message.status = MessageStatus.PENDING.value

