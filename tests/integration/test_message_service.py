# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for guardian messaging and staff notifications."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config.settings import NotificationSettings
from src.core.risk.config import RiskConfig
from src.core.risk.exceptions import (
    MessageNotFoundError,
    RiskValidationError,
    StudentNotFoundError,
)
from src.core.risk.service import RiskDetectionService
from src.core.risk.types import FlagEvent, FlagEventKind, RiskType, Severity
from src.infrastructure.database.models.message import Message
from src.infrastructure.database.models.notification import Notification
from src.infrastructure.database.models.risk import RiskFlag
from src.infrastructure.database.models.school import School, Student
from src.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)
from src.infrastructure.notifications.service import MessageService, is_retry_eligible
from src.infrastructure.notifications.templates import TemplateRegistry
from src.utils.datetime import utc_now

TEMPLATES = {
    "templates": {
        "absence_alert": {
            "message_type": "ABSENCE_ALERT",
            "sms": {
                "en": "Dear {guardianName}, {studentName} was absent from {schoolName} on {date}.",
                "rw": "Mubyeyi {guardianName}, {studentName} ntiyaje ku ishuri ku itariki {date}.",
            },
            "email_subject": {"en": "Absence notice: {studentName}"},
            "email_body": {"en": "Dear {guardianName}, contact {contactInfo}."},
        },
        "risk_alert": {
            "message_type": "INTERVENTION",
            "sms": {"en": "Concern about {studentName}: {riskTitle} ({severity})"},
            "email_subject": {"en": "Important: {riskTitle}"},
            "email_body": {"en": "{riskDescription}"},
        },
        "general": {
            "message_type": "GENERAL",
            "sms": {"en": "Dear {guardianName}, {message} - {schoolName}"},
            "email_subject": {"en": "{subject}"},
            "email_body": {"en": "{message}"},
        },
    }
}


class ExplodingChannel(BaseChannel):
    """A channel whose client raises instead of returning a result."""

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.EMAIL

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        raise RuntimeError("socket closed")


@pytest.fixture
def templates() -> TemplateRegistry:
    return TemplateRegistry.from_mapping(TEMPLATES)


@pytest.fixture
def settings() -> NotificationSettings:
    return NotificationSettings(max_retries=3, admin_dedup_hours=24)


@pytest.fixture
def make_service(db_session, templates, settings):
    def _make(channels: dict[ChannelType, BaseChannel]) -> MessageService:
        return MessageService(db_session, channels, templates, settings)

    return _make


def flag_event(student: Student, flag_id: str = "flag-1") -> FlagEvent:
    return FlagEvent(
        flag_id=flag_id,
        student_id=student.id,
        school_id=student.school_id,
        type=RiskType.ATTENDANCE,
        severity=Severity.CRITICAL,
        title="Consecutive Absences",
        description="5 consecutive absences in the last 7 days",
        kind=FlagEventKind.CREATED,
    )


async def all_flags(db: AsyncSession) -> list[RiskFlag]:
    result = await db.execute(select(RiskFlag).order_by(RiskFlag.id))
    return list(result.scalars().all())


@pytest.mark.integration
class TestSendAlert:
    """Tests for the per-channel delivery state."""

    @pytest.mark.asyncio
    async def test_sms_sent_email_failed(
        self, db_session: AsyncSession, make_service, student: Student, sms_channel, fake_channel
    ) -> None:
        """Test that one delivered channel makes the message SENT."""
        email = fake_channel(ChannelType.EMAIL, succeed=False)
        service = make_service({ChannelType.SMS: sms_channel, ChannelType.EMAIL: email})

        message = await service.send_alert(
            student.id, "BOTH", "absence_alert", {"date": "2025-03-04"}, "teacher-1"
        )
        await db_session.commit()

        assert message.status == "SENT"
        assert message.sms_status == "SENT"
        assert message.email_status == "FAILED"
        assert message.sms_sid == "sms-1"
        assert message.email_error == "email provider down"
        assert message.retry_count == 1
        assert message.sent_at is not None
        assert is_retry_eligible(message)

    @pytest.mark.asyncio
    async def test_template_context(
        self, db_session: AsyncSession, make_service, student: Student, sms_channel, email_channel
    ) -> None:
        service = make_service({ChannelType.SMS: sms_channel, ChannelType.EMAIL: email_channel})

        message = await service.send_alert(
            student.id, "sms", "absence_alert", {"date": "2025-03-04"}
        )

        assert message.content == (
            "Dear Jean Uwase, Aline Uwase was absent from GS Kigali on 2025-03-04."
        )
        assert message.recipient_phone == "0788123456"
        assert message.email_status == "NOT_REQUESTED"
        assert email_channel.sent == []
        assert sms_channel.sent[0].recipient_phone == "0788123456"

    @pytest.mark.asyncio
    async def test_school_phone_is_contact_info(
        self, db_session: AsyncSession, make_service, student: Student, email_channel
    ) -> None:
        service = make_service({ChannelType.EMAIL: email_channel})

        message = await service.send_alert(student.id, "EMAIL", "absence_alert", {})

        assert message.email_body == "Dear Jean Uwase, contact +250788000000."

    @pytest.mark.asyncio
    async def test_kinyarwanda(
        self, db_session: AsyncSession, make_service, student: Student, sms_channel
    ) -> None:
        service = make_service({ChannelType.SMS: sms_channel})

        message = await service.send_alert(
            student.id, "SMS", "absence_alert", {"date": "2025-03-04"}, language="rw"
        )

        assert message.language == "rw"
        assert message.content.startswith("Mubyeyi Jean Uwase")

    @pytest.mark.asyncio
    async def test_all_channels_failing_stays_pending(
        self, db_session: AsyncSession, make_service, student: Student, fake_channel
    ) -> None:
        service = make_service(
            {
                ChannelType.SMS: fake_channel(ChannelType.SMS, succeed=False),
                ChannelType.EMAIL: fake_channel(ChannelType.EMAIL, succeed=False),
            }
        )

        message = await service.send_alert(student.id, "BOTH", "absence_alert", {})

        assert message.status == "PENDING"
        assert message.retry_count == 1

    @pytest.mark.asyncio
    async def test_raising_channel_is_recorded(
        self, db_session: AsyncSession, make_service, student: Student, sms_channel
    ) -> None:
        service = make_service({ChannelType.SMS: sms_channel, ChannelType.EMAIL: ExplodingChannel()})

        message = await service.send_alert(student.id, "BOTH", "absence_alert", {})

        assert message.status == "SENT"
        assert message.email_status == "FAILED"
        assert message.email_error == "socket closed"

    @pytest.mark.asyncio
    async def test_missing_channel_counts_as_failure(
        self, db_session: AsyncSession, make_service, student: Student
    ) -> None:
        service = make_service({})

        message = await service.send_alert(student.id, "SMS", "absence_alert", {})

        assert message.sms_status == "FAILED"
        assert message.sms_error == "sms channel not available"

    @pytest.mark.asyncio
    async def test_input_errors(
        self, db_session: AsyncSession, make_service, factory, sms_channel
    ) -> None:
        service = make_service({ChannelType.SMS: sms_channel})
        school = await factory.school()
        orphan = await factory.student(school, guardian_contacts=[])
        known = await factory.student(school)

        with pytest.raises(StudentNotFoundError):
            await service.send_alert("missing", "SMS", "absence_alert", {})
        with pytest.raises(RiskValidationError):
            await service.send_alert(orphan.id, "SMS", "absence_alert", {})
        with pytest.raises(RiskValidationError):
            await service.send_alert(known.id, "FAX", "absence_alert", {})
        with pytest.raises(RiskValidationError):
            await service.send_alert(known.id, "SMS", "birthday", {})
        assert sms_channel.sent == []


@pytest.mark.integration
class TestRetries:
    """Tests for manual retry and the pending sweep."""

    @pytest.mark.asyncio
    async def test_pending_sweep_only_retries_failed_channel(
        self, db_session: AsyncSession, make_service, student: Student, sms_channel, fake_channel
    ) -> None:
        email = fake_channel(ChannelType.EMAIL, succeed=False)
        service = make_service({ChannelType.SMS: sms_channel, ChannelType.EMAIL: email})
        message = await service.send_alert(student.id, "BOTH", "absence_alert", {})
        await db_session.commit()

        email.succeed = True
        summary = await service.process_pending_messages()
        await db_session.commit()

        assert summary.processed == 1
        assert summary.sent == 1
        assert len(sms_channel.sent) == 1
        assert len(email.sent) == 2
        assert message.email_status == "SENT"
        assert message.retry_count == 1
        assert not is_retry_eligible(message)

    @pytest.mark.asyncio
    async def test_retries_run_out(
        self, db_session: AsyncSession, make_service, student: Student, fake_channel
    ) -> None:
        """Test that a message fails once max_retries rounds have failed."""
        sms = fake_channel(ChannelType.SMS, succeed=False)
        service = make_service({ChannelType.SMS: sms})
        message = await service.send_alert(student.id, "SMS", "absence_alert", {})

        await service.process_pending_messages()
        await service.process_pending_messages()
        third = await service.process_pending_messages()

        assert message.status == "FAILED"
        assert message.retry_count == 3
        assert third.processed == 0
        assert len(sms.sent) == 3

    @pytest.mark.asyncio
    async def test_manual_retry_resets_counter(
        self, db_session: AsyncSession, make_service, student: Student, fake_channel
    ) -> None:
        sms = fake_channel(ChannelType.SMS, succeed=False)
        service = make_service({ChannelType.SMS: sms})
        message = await service.send_alert(student.id, "SMS", "absence_alert", {})
        message.retry_count = 3
        message.status = "FAILED"
        await db_session.flush()

        sms.succeed = True
        retried = await service.retry_message(message.id)

        assert retried.status == "SENT"
        assert retried.retry_count == 0
        assert retried.sms_error is None

    @pytest.mark.asyncio
    async def test_retry_unknown_message(self, make_service) -> None:
        with pytest.raises(MessageNotFoundError):
            await make_service({}).retry_message("missing")


@pytest.mark.integration
class TestFlagEventNotifications:
    """Tests for guardian and staff alerts about a flag."""

    @pytest.mark.asyncio
    async def test_guardian_and_admins_are_notified(
        self,
        db_session: AsyncSession,
        make_service,
        factory,
        school: School,
        student: Student,
        sms_channel,
        email_channel,
    ) -> None:
        await factory.staff(school, role="ADMIN", full_name="Head Teacher")
        await factory.staff(school, role="TEACHER", full_name="Class Teacher")
        await factory.staff(school, role="ADMIN", full_name="Deputy", is_active=False)
        service = make_service({ChannelType.SMS: sms_channel, ChannelType.EMAIL: email_channel})

        result = await service.notify_flag_event(flag_event(student))
        await db_session.commit()

        assert result["messageId"] is not None
        assert result["staffNotified"] == 1
        assert "Consecutive Absences (CRITICAL)" in sms_channel.sent[0].message

        notifications = (await db_session.execute(select(Notification))).scalars().all()
        assert len(notifications) == 1
        assert notifications[0].priority == "URGENT"
        assert notifications[0].related_flag_id == "flag-1"
        assert notifications[0].data["student_name"] == "Aline Uwase"

    @pytest.mark.asyncio
    async def test_admin_notifications_are_deduplicated(
        self, db_session: AsyncSession, make_service, factory, school: School, student: Student
    ) -> None:
        """Test that a redelivered event does not notify the same admin twice."""
        await factory.staff(school, role="ADMIN")
        service = make_service({})

        first = await service.notify_flag_event(flag_event(student))
        second = await service.notify_flag_event(flag_event(student))
        other = await service.notify_flag_event(flag_event(student, flag_id="flag-2"))

        assert first["staffNotified"] == 1
        assert second["staffNotified"] == 0
        assert other["staffNotified"] == 1

    @pytest.mark.asyncio
    async def test_staff_notified_without_guardian(
        self, db_session: AsyncSession, make_service, factory, school: School
    ) -> None:
        await factory.staff(school, role="ADMIN")
        orphan = await factory.student(school, guardian_contacts=[])

        result = await make_service({}).notify_flag_event(flag_event(orphan))

        assert result == {"messageId": None, "staffNotified": 1}

    @pytest.mark.asyncio
    async def test_delivery_failures_leave_flags_untouched(
        self,
        db_session: AsyncSession,
        make_service,
        factory,
        school: School,
        student: Student,
        fake_channel,
    ) -> None:
        """Test that a failing notification path never rewrites the flag it reports."""
        await factory.staff(school, role="ADMIN")
        flag, _ = await RiskDetectionService(db_session, RiskConfig()).create_manual_flag(
            student.id, "BEHAVIOR", "HIGH", "Repeated fights", "Three incidents", "teacher-1"
        )
        await db_session.commit()
        event = flag_event(student, flag_id=flag.id)
        db_session.expire_all()
        before = [(f.id, f.severity, f.updated_at) for f in await all_flags(db_session)]

        service = make_service(
            {
                ChannelType.SMS: fake_channel(ChannelType.SMS, succeed=False),
                ChannelType.EMAIL: ExplodingChannel(),
            }
        )
        result = await service.notify_flag_event(event)
        await db_session.commit()

        message = await service.get_message(result["messageId"])
        assert message.status == "PENDING"
        assert result["staffNotified"] == 1
        db_session.expire_all()
        after = [(f.id, f.severity, f.updated_at) for f in await all_flags(db_session)]
        assert after == before


@pytest.mark.integration
class TestBulkSend:
    """Tests for free-text messages to many guardians."""

    @pytest.mark.asyncio
    async def test_per_student_errors(
        self,
        db_session: AsyncSession,
        make_service,
        factory,
        school: School,
        student: Student,
        sms_channel,
    ) -> None:
        orphan = await factory.student(school, first_name="Orphan", guardian_contacts=[])
        service = make_service({ChannelType.SMS: sms_channel})

        outcome = await service.send_bulk(
            [student.id, orphan.id, "missing", student.id],
            "  School closes early on Friday ",
            message_type="emergency",
            actor_id="head-1",
        )

        body = outcome.to_dict()
        assert body["sent"] == 1
        assert body["failed"] == 2
        assert body["errors"] == [
            {"studentId": orphan.id, "error": "Student has no guardian contacts"},
            {"studentId": "missing", "error": "Student not found"},
        ]
        assert body["results"][0]["studentId"] == student.id
        assert body["results"][0]["status"] == "SENT"

        message = await service.get_message(body["results"][0]["messageId"])
        assert message.message_type == "EMERGENCY"
        assert message.sender_id == "head-1"
        assert message.content == "Dear Jean Uwase, School closes early on Friday - GS Kigali"
        assert len(sms_channel.sent) == 1

    @pytest.mark.asyncio
    async def test_request_errors_send_nothing(
        self, make_service, student: Student, sms_channel
    ) -> None:
        service = make_service({ChannelType.SMS: sms_channel})

        with pytest.raises(RiskValidationError):
            await service.send_bulk([student.id], "   ")
        with pytest.raises(RiskValidationError):
            await service.send_bulk([student.id], "Hello", message_type="NEWSLETTER")
        with pytest.raises(RiskValidationError):
            await service.send_bulk([student.id], "Hello", channel="FAX")
        assert sms_channel.sent == []


@pytest.mark.integration
class TestDeliveryStats:
    """Tests for per-school message statistics."""

    @pytest.mark.asyncio
    async def test_counts_by_status_type_and_channel(
        self,
        db_session: AsyncSession,
        make_service,
        factory,
        school: School,
        student: Student,
        sms_channel,
        fake_channel,
    ) -> None:
        failing = fake_channel(ChannelType.EMAIL, succeed=False)
        service = make_service({ChannelType.SMS: sms_channel, ChannelType.EMAIL: failing})
        await service.send_alert(student.id, "SMS", "absence_alert", {"date": "2025-03-04"})
        await service.send_alert(student.id, "EMAIL", "risk_alert", {"riskTitle": "Grades"})
        old = await service.send_alert(student.id, "SMS", "absence_alert", {"date": "2025-01-02"})
        old.created_at = utc_now() - timedelta(days=40)
        db_session.add(
            Message(
                student_id=student.id,
                school_id=student.school_id,
                channel="BOTH",
                message_type="GENERAL",
                content="Term report ready",
                status="FAILED",
            )
        )
        other_school = await factory.school(name="GS Huye")
        elsewhere = await factory.student(other_school)
        await service.send_alert(elsewhere.id, "SMS", "absence_alert", {"date": "2025-03-04"})
        await db_session.commit()

        stats = await service.delivery_stats(school.id)

        body = stats.to_dict()
        assert (body["total"], body["sent"], body["failed"], body["pending"]) == (3, 1, 1, 1)
        assert body["byType"]["ABSENCE_ALERT"] == 1
        assert body["byType"]["INTERVENTION"] == 1
        assert body["byType"]["GENERAL"] == 1
        assert body["byType"]["EMERGENCY"] == 0
        assert body["byChannel"] == {"SMS": 1, "EMAIL": 1, "BOTH": 1}

    @pytest.mark.asyncio
    async def test_explicit_window(self, make_service, school: School) -> None:
        service = make_service({})
        end = utc_now()

        stats = await service.delivery_stats(school.id, start=end - timedelta(days=1), end=end)

        assert stats.total == 0
        assert set(stats.to_dict()["byType"]) == {
            "ABSENCE_ALERT",
            "PERFORMANCE_ALERT",
            "MEETING_REQUEST",
            "GENERAL",
            "INTERVENTION",
            "EMERGENCY",
        }
        with pytest.raises(RiskValidationError):
            await service.delivery_stats(school.id, start=end, end=end - timedelta(days=1))
