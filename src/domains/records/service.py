# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Record write paths that trigger risk detection.

This module provides the RecordService that handles:
- Attendance marking (detection inline, alerts after commit)
- Batch performance entry (detection and alerts in the background)
- Student registration and profile changes (socioeconomic detection)

Alerts are queued only after the write has committed, and a queueing
failure is logged without failing the write.

Example:
    >>> service = RecordService(db)
    >>> outcome = await service.mark_attendance(student_id, day, "ABSENT", actor_id=user_id)
    >>> outcome.detection.to_dict()
    {'risksDetected': 1, 'flagsCreated': 1, 'flagsUpdated': 0, 'riskLevel': 'HIGH'}
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.risk.alerts import AlertDispatcher
from src.core.risk.exceptions import (
    RiskValidationError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from src.core.risk.service import RiskDetectionService
from src.core.risk.types import DetectionResult
from src.domains.records.schemas import PerformanceEntry
from src.infrastructure.database.models.records import (
    ATTENDANCE_STATUSES,
    AttendanceRecord,
    PerformanceRecord,
    calculate_grade,
)
from src.infrastructure.database.models.school import School, Student
from src.infrastructure.notifications.service import GuardianContact

logger = logging.getLogger(__name__)

# Student columns read by the socioeconomic rules
PROFILE_FIELDS = (
    "ubudehe_level",
    "has_parents",
    "family_stable",
    "distance_to_school_km",
    "sibling_count",
    "parent_education_level",
)
# NOT NULL columns among them
REQUIRED_PROFILE_FIELDS = ("has_parents", "family_stable")

DetectionEnqueue = Callable[[list[str], str, str | None], Any]


def _enqueue_detection(student_ids: list[str], school_id: str, actor_id: str | None) -> Any:
    from src.infrastructure.background.tasks.risk import detect_students

    return detect_students.send(student_ids, school_id, actor_id)


@dataclass
class AttendanceOutcome:
    """Result of marking attendance.

    Attributes:
        record: The stored attendance record.
        detection: Detection result for the student.
        alert_queued: Whether a guardian absence alert was queued.
    """

    record: AttendanceRecord
    detection: DetectionResult
    alert_queued: bool = False


class RecordService:
    """Service for record writes that feed the risk engine.

    Attributes:
        _db: Async database session. This service commits.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: AlertDispatcher | None = None,
        enqueue_detection: DetectionEnqueue | None = None,
    ) -> None:
        self._db = db
        self._detection = RiskDetectionService(db)
        self._dispatcher = dispatcher or AlertDispatcher()
        self._enqueue_detection = enqueue_detection or _enqueue_detection

    # =========================================================================
    # Attendance
    # =========================================================================

    async def mark_attendance(
        self,
        student_id: str,
        day: date,
        status: str,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> AttendanceOutcome:
        """Upsert the (student, day) record and run detection inline.

        A guardian alert is queued when the day becomes ABSENT.

        Raises:
            RiskValidationError: Unknown status.
            StudentNotFoundError: Unknown student.
        """
        status = status.upper()
        if status not in ATTENDANCE_STATUSES:
            raise RiskValidationError(
                f"Invalid attendance status: {status!r}",
                {"allowed": list(ATTENDANCE_STATUSES)},
            )

        student = await self._get_student(student_id)

        result = await self._db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.student_id == student_id,
                AttendanceRecord.date == day,
            )
        )
        record = result.scalar_one_or_none()
        previous = record.status if record is not None else None
        if record is None:
            record = AttendanceRecord(
                student_id=student_id,
                school_id=student.school_id,
                date=day,
            )
            self._db.add(record)
        record.status = status
        record.reason = reason
        record.recorded_by = actor_id

        detection = await self._detection.detect_for_student(
            student_id, student.school_id, actor_id
        )
        await self._db.commit()

        self._dispatcher.dispatch(detection.events)
        alert_queued = False
        if status == "ABSENT" and previous != "ABSENT":
            alert_queued = self._dispatcher.dispatch_absence(student_id, day, actor_id)

        logger.info(
            "Attendance marked",
            extra={
                "student_id": student_id,
                "date": day.isoformat(),
                "status": status,
                "flags_created": detection.flags_created,
            },
        )
        return AttendanceOutcome(record=record, detection=detection, alert_queued=alert_queued)

    # =========================================================================
    # Performance
    # =========================================================================

    async def record_performance_batch(
        self,
        entries: Iterable[PerformanceEntry],
        actor_id: str | None = None,
    ) -> list[PerformanceRecord]:
        """Store a batch of scores; detection runs in the background.

        Every entry is validated before anything is written.

        Raises:
            RiskValidationError: A score is out of range.
            StudentNotFoundError: An entry names an unknown student.
        """
        entries = list(entries)
        for index, entry in enumerate(entries):
            if entry.max_score <= 0 or not 0 <= entry.score <= entry.max_score:
                raise RiskValidationError(
                    f"Invalid score {entry.score}/{entry.max_score}",
                    {"index": index, "student_id": entry.student_id},
                )

        student_ids = list(dict.fromkeys(entry.student_id for entry in entries))
        result = await self._db.execute(
            select(Student.id, Student.school_id).where(Student.id.in_(student_ids))
        )
        schools = {row.id: row.school_id for row in result.all()}
        missing = [student_id for student_id in student_ids if student_id not in schools]
        if missing:
            raise StudentNotFoundError(missing[0])

        records = [
            PerformanceRecord(
                student_id=entry.student_id,
                school_id=schools[entry.student_id],
                subject=entry.subject,
                term=entry.term,
                academic_year=entry.academic_year,
                score=entry.score,
                max_score=entry.max_score,
                grade=calculate_grade(entry.score, entry.max_score),
                recorded_by=actor_id,
            )
            for entry in entries
        ]
        self._db.add_all(records)
        await self._db.commit()

        by_school: dict[str, list[str]] = defaultdict(list)
        for student_id in student_ids:
            by_school[schools[student_id]].append(student_id)
        for school_id, ids in by_school.items():
            try:
                self._enqueue_detection(ids, school_id, actor_id)
            except Exception:
                logger.exception("Failed to queue detection for %d students", len(ids))

        logger.info(
            "Recorded %d performance entries for %d students",
            len(records),
            len(student_ids),
        )
        return records

    # =========================================================================
    # Students
    # =========================================================================

    async def register_student(
        self,
        school_id: str,
        first_name: str,
        last_name: str,
        profile: dict[str, Any] | None = None,
        actor_id: str | None = None,
        **identity: Any,
    ) -> tuple[Student, DetectionResult]:
        """Create a student and run the socioeconomic rules.

        Raises:
            SchoolNotFoundError: Unknown school.
            RiskValidationError: Malformed guardian contacts.
        """
        if await self._db.get(School, school_id) is None:
            raise SchoolNotFoundError(school_id)

        student = Student(
            school_id=school_id,
            first_name=first_name,
            last_name=last_name,
            guardian_contacts=[],
            **identity,
        )
        self._apply_profile(student, profile or {})
        self._db.add(student)
        await self._db.flush()

        detection = await self._detection.detect_socioeconomic(student.id, school_id, actor_id)
        await self._db.commit()
        self._dispatcher.dispatch(detection.events)

        logger.info("Student %s registered in school %s", student.id, school_id)
        return student, detection

    async def update_profile(
        self,
        student_id: str,
        changes: dict[str, Any],
        actor_id: str | None = None,
    ) -> tuple[Student, DetectionResult | None]:
        """Apply profile changes; socioeconomic detection runs if the profile moved.

        Raises:
            StudentNotFoundError: Unknown student.
            RiskValidationError: Malformed guardian contacts or unknown field.
        """
        student = await self._get_student(student_id)
        changed = self._apply_profile(student, changes)

        detection = None
        if changed:
            detection = await self._detection.detect_socioeconomic(
                student_id, student.school_id, actor_id
            )
        await self._db.commit()

        if detection is not None:
            self._dispatcher.dispatch(detection.events)
        return student, detection

    # =========================================================================
    # Helper Methods
    # =========================================================================

    async def _get_student(self, student_id: str) -> Student:
        student = await self._db.get(Student, student_id)
        if student is None:
            raise StudentNotFoundError(student_id)
        return student

    def _apply_profile(self, student: Student, changes: dict[str, Any]) -> bool:
        """Apply profile fields; returns True if a socioeconomic input changed.

        Every field is checked before the student is touched.
        """
        updates: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "guardian_contacts":
                updates[name] = self._validate_contacts(value or [])
            elif name in REQUIRED_PROFILE_FIELDS and value is None:
                raise RiskValidationError(f"Profile field {name!r} cannot be null")
            elif name in PROFILE_FIELDS:
                updates[name] = value
            else:
                raise RiskValidationError(f"Unknown profile field: {name!r}")

        changed = False
        for name, value in updates.items():
            if name == "guardian_contacts":
                student.guardian_contacts = value
            elif getattr(student, name) != value:
                setattr(student, name, value)
                changed = True
        return changed

    def _validate_contacts(self, contacts: list[Any]) -> list[dict[str, Any]]:
        validated = []
        for contact in contacts:
            data = contact.model_dump() if hasattr(contact, "model_dump") else contact
            guardian = GuardianContact.from_dict(data)
            validated.append(
                {
                    "name": guardian.name,
                    "phone": guardian.phone,
                    "email": guardian.email,
                    "relation": guardian.relation,
                    "is_primary": guardian.is_primary,
                }
            )
        return validated
