# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for flag aggregation against SQLite."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.risk.aggregator import FlagAggregator
from src.core.risk.types import CandidateSignal, FlagEventKind, RiskType, Severity
from src.infrastructure.database.models.risk import RiskFlag
from src.infrastructure.database.models.school import Student


def signal(severity: Severity, risk_type: RiskType = RiskType.ATTENDANCE) -> CandidateSignal:
    return CandidateSignal(
        type=risk_type,
        severity=severity,
        title=f"{severity.value} signal",
        description=f"{risk_type.value} at {severity.value}",
        evidence={"severity": severity.value},
    )


async def active_flags(db: AsyncSession, student_id: str) -> list[RiskFlag]:
    result = await db.execute(
        select(RiskFlag).where(RiskFlag.student_id == student_id, RiskFlag.is_active.is_(True))
    )
    return list(result.scalars().all())


@pytest.mark.integration
class TestFlagAggregator:
    """Tests for the one-active-flag-per-type policy."""

    @pytest.mark.asyncio
    async def test_first_signal_creates_flag(self, db_session: AsyncSession, student: Student) -> None:
        outcome = await FlagAggregator(db_session).apply(
            student.id, student.school_id, signal(Severity.HIGH), actor_id="teacher-1"
        )

        assert outcome.created
        assert outcome.event.kind == FlagEventKind.CREATED
        assert outcome.flag.severity == "HIGH"
        assert outcome.flag.created_by == "teacher-1"
        assert outcome.flag.auto_generated is True

    @pytest.mark.asyncio
    async def test_repeat_signal_is_a_no_op(self, db_session: AsyncSession, student: Student) -> None:
        """Test that re-applying the same signal neither inserts nor emits."""
        aggregator = FlagAggregator(db_session)
        first = await aggregator.apply(student.id, student.school_id, signal(Severity.HIGH))

        second = await aggregator.apply(student.id, student.school_id, signal(Severity.HIGH))

        assert second.event is None
        assert second.flag.id == first.flag.id
        assert len(await active_flags(db_session, student.id)) == 1

    @pytest.mark.asyncio
    async def test_lower_signal_does_not_downgrade(
        self, db_session: AsyncSession, student: Student
    ) -> None:
        aggregator = FlagAggregator(db_session)
        await aggregator.apply(student.id, student.school_id, signal(Severity.CRITICAL))

        outcome = await aggregator.apply(student.id, student.school_id, signal(Severity.MEDIUM))

        assert outcome.event is None
        assert outcome.flag.severity == "CRITICAL"

    @pytest.mark.asyncio
    async def test_higher_signal_escalates_in_place(
        self, db_session: AsyncSession, student: Student
    ) -> None:
        aggregator = FlagAggregator(db_session)
        first = await aggregator.apply(student.id, student.school_id, signal(Severity.MEDIUM))

        outcome = await aggregator.apply(student.id, student.school_id, signal(Severity.CRITICAL))

        assert outcome.escalated
        assert outcome.flag.id == first.flag.id
        assert outcome.flag.severity == "CRITICAL"
        assert outcome.flag.title == "CRITICAL signal"
        assert outcome.event.previous_severity == Severity.MEDIUM
        assert len(await active_flags(db_session, student.id)) == 1

    @pytest.mark.asyncio
    async def test_types_are_independent(self, db_session: AsyncSession, student: Student) -> None:
        aggregator = FlagAggregator(db_session)
        await aggregator.apply(student.id, student.school_id, signal(Severity.HIGH))
        await aggregator.apply(
            student.id, student.school_id, signal(Severity.LOW, RiskType.SOCIOECONOMIC)
        )

        flags = await active_flags(db_session, student.id)

        assert {f.type for f in flags} == {"ATTENDANCE", "SOCIOECONOMIC"}

    @pytest.mark.asyncio
    async def test_resolved_flag_does_not_block_new_one(
        self, db_session: AsyncSession, student: Student
    ) -> None:
        """Test that the uniqueness only covers active flags."""
        aggregator = FlagAggregator(db_session)
        first = await aggregator.apply(student.id, student.school_id, signal(Severity.HIGH))
        first.flag.is_active = False
        first.flag.is_resolved = True
        await db_session.flush()

        outcome = await aggregator.apply(student.id, student.school_id, signal(Severity.MEDIUM))

        assert outcome.created
        assert outcome.flag.id != first.flag.id
        total = await db_session.scalar(
            select(func.count()).select_from(RiskFlag).where(RiskFlag.student_id == student.id)
        )
        assert total == 2

    @pytest.mark.asyncio
    async def test_storage_rejects_second_active_flag(
        self, db_session: AsyncSession, student: Student
    ) -> None:
        """Test that the partial unique index backs the policy."""
        for _ in range(2):
            db_session.add(
                RiskFlag(
                    student_id=student.id,
                    school_id=student.school_id,
                    type="BEHAVIOR",
                    severity="LOW",
                    title="Late homework",
                    description="Late homework",
                )
            )

        with pytest.raises(IntegrityError):
            await db_session.flush()
