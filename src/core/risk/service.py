# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk detection service.

Runs the per-student pipeline (evaluators -> aggregator -> risk level)
and the flag operations that must recompute the risk level in the same
transaction (manual flags, resolve, update, delete), plus per-school
flag reporting.

The service flushes but never commits. Callers own the transaction and
dispatch the returned flag events only after committing.

Example:
    >>> service = RiskDetectionService(db)
    >>> result = await service.detect_for_student(student_id, actor_id=user_id)
    >>> await db.commit()
    >>> AlertDispatcher().dispatch(result.events)
"""

import logging
from datetime import date, timedelta

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.risk.aggregator import FlagAggregator
from src.core.risk.calculator import RiskLevelCalculator
from src.core.risk.config import RiskConfig, get_risk_config
from src.core.risk.evaluators import (
    AttendanceEntry,
    GradeEntry,
    StudentProfile,
    StudentSnapshot,
    build_manual_signal,
    evaluate_snapshot,
)
from src.core.risk.exceptions import (
    FlagNotFoundError,
    RiskValidationError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from src.core.risk.types import (
    CandidateSignal,
    DetectionResult,
    RiskLevel,
    RiskType,
    SchoolRiskSummary,
    Severity,
)
from src.infrastructure.database.models.records import AttendanceRecord, PerformanceRecord
from src.infrastructure.database.models.risk import RiskFlag
from src.infrastructure.database.models.school import School, Student
from src.utils.datetime import utc_now, utc_today

logger = logging.getLogger(__name__)


class RiskDetectionService:
    """Per-student risk detection and flag lifecycle.

    Attributes:
        _db: Async database session.
        _config: Global risk rules; per-school overrides are layered on top.
    """

    def __init__(self, db: AsyncSession, config: RiskConfig | None = None) -> None:
        self._db = db
        self._config = config or get_risk_config()

    # =========================================================================
    # Detection
    # =========================================================================

    async def detect_for_student(
        self,
        student_id: str,
        school_id: str | None = None,
        actor_id: str | None = None,
        *,
        as_of: date | None = None,
        families: tuple[RiskType, ...] | None = None,
    ) -> DetectionResult:
        """Evaluate one student and reconcile the results with stored flags.

        Args:
            student_id: Student to evaluate.
            school_id: When given, the student must belong to this school.
            actor_id: User that triggered detection (audit only).
            as_of: Evaluation date; today (UTC) by default.
            families: Rule families to run; all automatic ones by default.

        Returns:
            DetectionResult with counts and flag events.

        Raises:
            StudentNotFoundError: Unknown student or school mismatch.
        """
        student = await self._get_student(student_id, school_id)
        config = await self._config_for(student.school_id)
        snapshot = await self.load_snapshot(student, as_of or utc_today(), config)

        signals = evaluate_snapshot(snapshot, config, families)

        logger.info(
            "Risk detection evaluated",
            extra={
                "student_id": student_id,
                "signals": [f"{s.type.value}:{s.severity.value}" for s in signals],
            },
        )

        return await self._apply_signals(
            student, signals, config, auto_generated=True, actor_id=actor_id
        )

    async def detect_socioeconomic(
        self,
        student_id: str,
        school_id: str | None = None,
        actor_id: str | None = None,
    ) -> DetectionResult:
        """Run only the socioeconomic rules (registration, profile change)."""
        return await self.detect_for_student(
            student_id,
            school_id,
            actor_id,
            families=(RiskType.SOCIOECONOMIC,),
        )

    async def create_manual_flag(
        self,
        student_id: str,
        risk_type: str | RiskType,
        severity: str | Severity,
        title: str,
        description: str,
        actor_id: str | None,
        school_id: str | None = None,
    ) -> tuple[RiskFlag, DetectionResult]:
        """Submit a staff-entered signal through the aggregator.

        Returns the stored flag for the signal's type (new, escalated, or the
        already more severe existing one) and the detection result.

        Raises:
            RiskValidationError: Invalid type, severity or title.
            StudentNotFoundError: Unknown student.
        """
        signal = build_manual_signal(risk_type, severity, title, description)
        student = await self._get_student(student_id, school_id)
        config = await self._config_for(student.school_id)

        result = await self._apply_signals(
            student, [signal], config, auto_generated=False, actor_id=actor_id
        )
        flag = await self._active_flag(student_id, signal.type)
        return flag, result

    async def load_snapshot(
        self, student: Student, as_of: date, config: RiskConfig
    ) -> StudentSnapshot:
        """Read everything the evaluators need for one student."""
        rules = config.attendance
        since = as_of - timedelta(days=max(rules.window_days, rules.monthly_window_days))

        attendance = await self._db.execute(
            select(AttendanceRecord.date, AttendanceRecord.status).where(
                AttendanceRecord.student_id == student.id,
                AttendanceRecord.date > since,
                AttendanceRecord.date <= as_of,
            )
        )
        performance = await self._db.execute(
            select(PerformanceRecord).where(PerformanceRecord.student_id == student.id)
        )

        return StudentSnapshot(
            student_id=student.id,
            school_id=student.school_id,
            as_of=as_of,
            attendance=tuple(
                AttendanceEntry(date=row.date, status=row.status) for row in attendance.all()
            ),
            performance=tuple(
                GradeEntry(
                    subject=record.subject,
                    term=record.term,
                    academic_year=record.academic_year,
                    score=record.score,
                    max_score=record.max_score,
                    grade=record.grade,
                )
                for record in performance.scalars().all()
            ),
            profile=StudentProfile(
                ubudehe_level=student.ubudehe_level,
                has_parents=student.has_parents,
                family_stable=student.family_stable,
                distance_to_school_km=student.distance_to_school_km,
                sibling_count=student.sibling_count,
                parent_education_level=student.parent_education_level,
            ),
        )

    async def _apply_signals(
        self,
        student: Student,
        signals: list[CandidateSignal],
        config: RiskConfig,
        *,
        auto_generated: bool,
        actor_id: str | None,
    ) -> DetectionResult:
        aggregator = FlagAggregator(self._db)
        result = DetectionResult(student_id=student.id, risks_detected=len(signals))

        for signal in signals:
            outcome = await aggregator.apply(
                student.id,
                student.school_id,
                signal,
                auto_generated=auto_generated,
                actor_id=actor_id,
            )
            if outcome.created:
                result.flags_created += 1
            elif outcome.escalated:
                result.flags_updated += 1
            if outcome.event is not None:
                result.events.append(outcome.event)

        result.risk_level = await RiskLevelCalculator(self._db, config.escalation).apply(
            student.id
        )
        return result

    # =========================================================================
    # Flag lifecycle
    # =========================================================================

    async def update_risk_level(self, student_id: str) -> RiskLevel:
        """Recompute the risk level after an external flag mutation.

        Raises:
            StudentNotFoundError: Unknown student.
        """
        student = await self._get_student(student_id)
        config = await self._config_for(student.school_id)
        return await RiskLevelCalculator(self._db, config.escalation).apply(student_id)

    async def get_flag(self, flag_id: str) -> RiskFlag:
        flag = await self._db.get(RiskFlag, flag_id)
        if flag is None:
            raise FlagNotFoundError(flag_id)
        return flag

    async def list_flags(
        self, student_id: str, active_only: bool = True
    ) -> list[RiskFlag]:
        await self._get_student(student_id)
        query = select(RiskFlag).where(RiskFlag.student_id == student_id)
        if active_only:
            query = query.where(RiskFlag.is_active.is_(True))
        result = await self._db.execute(query.order_by(RiskFlag.created_at.desc()))
        return list(result.scalars().all())

    async def school_summary(self, school_id: str) -> SchoolRiskSummary:
        """Count a school's active flags by severity and type.

        Raises:
            SchoolNotFoundError: Unknown school.
        """
        if await self._db.get(School, school_id) is None:
            raise SchoolNotFoundError(school_id)

        active = (RiskFlag.school_id == school_id, RiskFlag.is_active.is_(True))
        summary = SchoolRiskSummary(school_id=school_id)

        result = await self._db.execute(
            select(RiskFlag.severity, RiskFlag.type, func.count())
            .where(*active)
            .group_by(RiskFlag.severity, RiskFlag.type)
        )
        for severity, risk_type, count in result.all():
            summary.total_active += count
            summary.by_severity[severity] = summary.by_severity.get(severity, 0) + count
            summary.by_type[risk_type] = summary.by_type.get(risk_type, 0) + count

        students = await self._db.scalar(
            select(func.count(distinct(RiskFlag.student_id))).where(*active)
        )
        summary.students_at_risk = students or 0
        return summary

    async def resolve_flag(
        self, flag_id: str, actor_id: str | None, notes: str | None = None
    ) -> RiskFlag:
        """Mark a flag resolved and recompute the student's risk level.

        Raises:
            FlagNotFoundError: Unknown flag.
            RiskValidationError: The flag is already resolved.
        """
        flag = await self.get_flag(flag_id)
        if flag.is_resolved or not flag.is_active:
            raise RiskValidationError(f"Risk flag {flag_id} is already resolved")

        flag.is_active = False
        flag.is_resolved = True
        flag.resolved_by = actor_id
        flag.resolved_at = utc_now()
        flag.resolution_notes = notes

        await self.update_risk_level(flag.student_id)

        logger.info(
            "Risk flag resolved",
            extra={"flag_id": flag_id, "student_id": flag.student_id, "actor_id": actor_id},
        )
        return flag

    async def update_flag(
        self,
        flag_id: str,
        *,
        severity: str | Severity | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> RiskFlag:
        """Edit a flag; a severity change recomputes the risk level.

        Raises:
            FlagNotFoundError: Unknown flag.
            RiskValidationError: Invalid severity or empty title.
        """
        flag = await self.get_flag(flag_id)

        if title is not None:
            if not title.strip():
                raise RiskValidationError("Risk flag title is required")
            flag.title = title.strip()
        if description is not None:
            flag.description = description

        severity_changed = False
        if severity is not None:
            try:
                new_severity = Severity(str(getattr(severity, "value", severity)).upper())
            except ValueError as e:
                raise RiskValidationError(f"Invalid severity: {severity!r}") from e
            severity_changed = new_severity.value != flag.severity
            flag.severity = new_severity.value

        if severity_changed and flag.is_active:
            await self.update_risk_level(flag.student_id)
        else:
            await self._db.flush()
        return flag

    async def delete_flag(self, flag_id: str) -> str:
        """Hard-delete a flag and recompute the risk level.

        Returns:
            The affected student's ID.

        Raises:
            FlagNotFoundError: Unknown flag.
        """
        flag = await self.get_flag(flag_id)
        student_id = flag.student_id

        await self._db.delete(flag)
        await self.update_risk_level(student_id)

        logger.warning(
            "Risk flag deleted", extra={"flag_id": flag_id, "student_id": student_id}
        )
        return student_id

    # =========================================================================
    # Helper Methods
    # =========================================================================

    async def _get_student(self, student_id: str, school_id: str | None = None) -> Student:
        student = await self._db.get(Student, student_id)
        if student is None or (school_id is not None and student.school_id != school_id):
            raise StudentNotFoundError(student_id)
        return student

    async def _config_for(self, school_id: str) -> RiskConfig:
        result = await self._db.execute(select(School.settings).where(School.id == school_id))
        settings = result.scalar_one_or_none() or {}
        return self._config.for_school(settings.get("risk_rules"))

    async def _active_flag(self, student_id: str, risk_type: RiskType) -> RiskFlag:
        result = await self._db.execute(
            select(RiskFlag).where(
                RiskFlag.student_id == student_id,
                RiskFlag.type == risk_type.value,
                RiskFlag.is_active.is_(True),
            )
        )
        return result.scalar_one()
