# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for RiskDetectionService."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.risk.config import RiskConfig
from src.core.risk.exceptions import (
    FlagNotFoundError,
    RiskValidationError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from src.core.risk.service import RiskDetectionService
from src.core.risk.types import FlagEventKind, RiskLevel, RiskType
from src.infrastructure.database.models.records import AttendanceRecord, PerformanceRecord
from src.infrastructure.database.models.risk import RiskFlag
from src.infrastructure.database.models.school import Student
from src.utils.datetime import utc_today


async def add_attendance(db: AsyncSession, student: Student, *statuses: str) -> None:
    """Store daily records ending today, oldest first."""
    today = utc_today()
    for offset, status in enumerate(reversed(statuses)):
        db.add(
            AttendanceRecord(
                student_id=student.id,
                school_id=student.school_id,
                date=today - timedelta(days=offset),
                status=status,
            )
        )
    await db.flush()


async def add_score(
    db: AsyncSession, student: Student, score: float, grade: str, term: str = "TERM_1"
) -> None:
    db.add(
        PerformanceRecord(
            student_id=student.id,
            school_id=student.school_id,
            subject="Mathematics",
            term=term,
            academic_year="2025",
            score=score,
            max_score=100,
            grade=grade,
        )
    )
    await db.flush()


async def flags_of(db: AsyncSession, student_id: str, active_only: bool = True) -> list[RiskFlag]:
    query = select(RiskFlag).where(RiskFlag.student_id == student_id)
    if active_only:
        query = query.where(RiskFlag.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


@pytest.fixture
def service(db_session: AsyncSession, risk_config: RiskConfig) -> RiskDetectionService:
    return RiskDetectionService(db_session, risk_config)


@pytest.mark.integration
class TestDetectForStudent:
    """Tests for the per-student detection pipeline."""

    @pytest.mark.asyncio
    async def test_consecutive_absences_create_one_high_flag(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        await add_attendance(db_session, student, "PRESENT", "PRESENT", "ABSENT", "ABSENT", "ABSENT")

        result = await service.detect_for_student(student.id)
        await db_session.commit()

        flags = await flags_of(db_session, student.id)
        assert len(flags) == 1
        assert flags[0].type == "ATTENDANCE"
        assert flags[0].severity == "HIGH"
        assert result.flags_created == 1
        assert result.risk_level == RiskLevel.HIGH
        assert [e.kind for e in result.events] == [FlagEventKind.CREATED]

        await db_session.refresh(student)
        assert student.risk_level == "HIGH"

    @pytest.mark.asyncio
    async def test_long_distance_is_critical_and_idempotent(
        self, db_session: AsyncSession, service: RiskDetectionService, factory
    ) -> None:
        """Test that re-running detection on unchanged data changes nothing."""
        school = await factory.school(name="GS Nyamata")
        student = await factory.student(school, distance_to_school_km=8)
        await db_session.commit()

        first = await service.detect_for_student(student.id)
        await db_session.commit()
        second = await service.detect_for_student(student.id)
        await db_session.commit()

        flags = await flags_of(db_session, student.id)
        assert [(f.type, f.severity) for f in flags] == [("SOCIOECONOMIC", "CRITICAL")]
        assert first.flags_created == 1
        assert second.flags_created == 0
        assert second.flags_updated == 0
        assert second.events == []
        assert second.risk_level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_failing_score_flag_is_not_auto_resolved(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        """Test that a later passing score leaves the performance flag active."""
        await add_score(db_session, student, 45, "F", term="TERM_1")
        await service.detect_for_student(student.id)
        await db_session.commit()

        await add_score(db_session, student, 85, "B", term="TERM_2")
        result = await service.detect_for_student(student.id)
        await db_session.commit()

        flags = await flags_of(db_session, student.id)
        assert [(f.type, f.severity) for f in flags] == [("PERFORMANCE", "HIGH")]
        assert result.flags_created == 0
        assert result.risk_level == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_worsening_attendance_escalates(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        await add_attendance(db_session, student, "PRESENT", "ABSENT", "ABSENT", "ABSENT")
        first = await service.detect_for_student(student.id)
        await db_session.commit()

        tomorrow = utc_today() + timedelta(days=1)
        after = utc_today() + timedelta(days=2)
        for day in (tomorrow, after):
            db_session.add(
                AttendanceRecord(
                    student_id=student.id, school_id=student.school_id, date=day, status="ABSENT"
                )
            )
        result = await service.detect_for_student(student.id, as_of=after)
        await db_session.commit()

        flags = await flags_of(db_session, student.id)
        assert len(flags) == 1
        assert flags[0].id == first.events[0].flag_id
        assert flags[0].severity == "CRITICAL"
        assert result.flags_updated == 1
        assert result.events[0].kind == FlagEventKind.ESCALATED

    @pytest.mark.asyncio
    async def test_two_high_flags_make_student_critical(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        await add_attendance(db_session, student, "ABSENT", "ABSENT", "ABSENT")
        await add_score(db_session, student, 45, "F")

        result = await service.detect_for_student(student.id)
        await db_session.commit()

        assert result.flags_created == 2
        assert result.risk_level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_school_overrides_apply(
        self, db_session: AsyncSession, service: RiskDetectionService, factory
    ) -> None:
        school = await factory.school(
            name="GS Rural",
            settings={"risk_rules": {"socioeconomic": {"distance_km": {"HIGH": 10}}}},
        )
        student = await factory.student(school, distance_to_school_km=8)
        await db_session.commit()

        result = await service.detect_for_student(student.id)

        assert result.flags_created == 0
        assert result.risk_level == RiskLevel.NONE

    @pytest.mark.asyncio
    async def test_school_mismatch_is_not_found(
        self, service: RiskDetectionService, student: Student
    ) -> None:
        with pytest.raises(StudentNotFoundError):
            await service.detect_for_student(student.id, school_id="other-school")

    @pytest.mark.asyncio
    async def test_socioeconomic_only(
        self, db_session: AsyncSession, service: RiskDetectionService, factory
    ) -> None:
        school = await factory.school()
        student = await factory.student(school, distance_to_school_km=6)
        await add_attendance(db_session, student, "ABSENT", "ABSENT", "ABSENT")
        await db_session.commit()

        result = await service.detect_socioeconomic(student.id)

        assert result.risks_detected == 1
        assert [(f.type, f.severity) for f in await flags_of(db_session, student.id)] == [
            ("SOCIOECONOMIC", "HIGH")
        ]


@pytest.mark.integration
class TestManualFlags:
    """Tests for staff-submitted flags."""

    @pytest.mark.asyncio
    async def test_manual_flag_goes_through_dedup(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        flag, result = await service.create_manual_flag(
            student.id, "BEHAVIOR", "MEDIUM", "Fighting", "Fight at break", "teacher-1"
        )
        again, second = await service.create_manual_flag(
            student.id, "BEHAVIOR", "LOW", "Talking in class", "", "teacher-1"
        )
        await db_session.commit()

        assert flag.auto_generated is False
        assert flag.created_by == "teacher-1"
        assert result.flags_created == 1
        assert again.id == flag.id
        assert again.severity == "MEDIUM"
        assert second.events == []

    @pytest.mark.asyncio
    async def test_invalid_manual_flag_writes_nothing(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        with pytest.raises(RiskValidationError):
            await service.create_manual_flag(student.id, "TRUANCY", "HIGH", "x", "", None)

        assert await flags_of(db_session, student.id, active_only=False) == []


@pytest.mark.integration
class TestFlagLifecycle:
    """Tests for resolve, update and delete."""

    @pytest.mark.asyncio
    async def test_resolve_recomputes_risk_level(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        attendance, _ = await service.create_manual_flag(
            student.id, RiskType.ATTENDANCE, "HIGH", "Absences", "", None
        )
        await service.create_manual_flag(
            student.id, RiskType.PERFORMANCE, "HIGH", "Grades", "", None
        )
        await db_session.commit()
        await db_session.refresh(student)
        assert student.risk_level == "CRITICAL"

        resolved = await service.resolve_flag(attendance.id, "head-1", "Family visit done")
        await db_session.commit()

        await db_session.refresh(student)
        assert resolved.is_active is False
        assert resolved.is_resolved is True
        assert resolved.resolved_by == "head-1"
        assert student.risk_level == "HIGH"

    @pytest.mark.asyncio
    async def test_resolve_twice_raises(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        flag, _ = await service.create_manual_flag(student.id, "OTHER", "LOW", "Note", "", None)
        await service.resolve_flag(flag.id, None)

        with pytest.raises(RiskValidationError):
            await service.resolve_flag(flag.id, None)

    @pytest.mark.asyncio
    async def test_downgrade_recomputes_risk_level(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        flag, _ = await service.create_manual_flag(
            student.id, "BEHAVIOR", "CRITICAL", "Violence", "", None
        )

        updated = await service.update_flag(flag.id, severity="medium", title=" Scuffle ")
        await db_session.commit()

        await db_session.refresh(student)
        assert updated.severity == "MEDIUM"
        assert updated.title == "Scuffle"
        assert student.risk_level == "MEDIUM"

    @pytest.mark.asyncio
    async def test_update_rejects_bad_severity(
        self, service: RiskDetectionService, student: Student
    ) -> None:
        flag, _ = await service.create_manual_flag(student.id, "OTHER", "LOW", "Note", "", None)

        with pytest.raises(RiskValidationError):
            await service.update_flag(flag.id, severity="SEVERE")

    @pytest.mark.asyncio
    async def test_delete_recomputes_risk_level(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        flag, _ = await service.create_manual_flag(student.id, "OTHER", "HIGH", "Note", "", None)
        await db_session.commit()

        student_id = await service.delete_flag(flag.id)
        await db_session.commit()

        await db_session.refresh(student)
        assert student_id == student.id
        assert student.risk_level == "NONE"
        assert await flags_of(db_session, student.id, active_only=False) == []

    @pytest.mark.asyncio
    async def test_update_risk_level_repairs_stale_value(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        await service.create_manual_flag(student.id, "BEHAVIOR", "MEDIUM", "Note", "", None)
        student.risk_level = "CRITICAL"
        await db_session.commit()

        level = await service.update_risk_level(student.id)
        await db_session.commit()

        await db_session.refresh(student)
        assert level == RiskLevel.MEDIUM
        assert student.risk_level == "MEDIUM"

    @pytest.mark.asyncio
    async def test_unknown_flag(self, service: RiskDetectionService) -> None:
        with pytest.raises(FlagNotFoundError):
            await service.delete_flag("missing")

    @pytest.mark.asyncio
    async def test_list_flags(
        self, db_session: AsyncSession, service: RiskDetectionService, student: Student
    ) -> None:
        flag, _ = await service.create_manual_flag(student.id, "OTHER", "LOW", "Note", "", None)
        await service.create_manual_flag(student.id, "BEHAVIOR", "LOW", "Note", "", None)
        await service.resolve_flag(flag.id, None)

        active = await service.list_flags(student.id)
        every = await service.list_flags(student.id, active_only=False)

        assert [f.type for f in active] == ["BEHAVIOR"]
        assert len(every) == 2


@pytest.mark.integration
class TestSchoolSummary:
    """Tests for per-school active flag counts."""

    @pytest.mark.asyncio
    async def test_counts_active_flags_only(
        self, db_session: AsyncSession, service: RiskDetectionService, factory
    ) -> None:
        school = await factory.school()
        first = await factory.student(school, first_name="First")
        second = await factory.student(school, first_name="Second")
        elsewhere = await factory.student(await factory.school(name="GS Huye"))
        await service.create_manual_flag(first.id, "BEHAVIOR", "HIGH", "Fights", "", None)
        await service.create_manual_flag(first.id, "ATTENDANCE", "MEDIUM", "Late", "", None)
        resolved, _ = await service.create_manual_flag(second.id, "OTHER", "LOW", "Note", "", None)
        await service.resolve_flag(resolved.id, None)
        await service.create_manual_flag(second.id, "BEHAVIOR", "CRITICAL", "Weapon", "", None)
        await service.create_manual_flag(elsewhere.id, "BEHAVIOR", "LOW", "Note", "", None)

        summary = await service.school_summary(school.id)

        assert summary.total_active == 3
        assert summary.students_at_risk == 2
        assert summary.by_severity == {"LOW": 0, "MEDIUM": 1, "HIGH": 1, "CRITICAL": 1}
        assert summary.by_type == {
            "ATTENDANCE": 1,
            "PERFORMANCE": 0,
            "BEHAVIOR": 2,
            "SOCIOECONOMIC": 0,
            "OTHER": 0,
        }

    @pytest.mark.asyncio
    async def test_unknown_school(self, service: RiskDetectionService) -> None:
        with pytest.raises(SchoolNotFoundError):
            await service.school_summary("missing")
