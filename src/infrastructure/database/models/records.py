# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Attendance and performance records."""

import datetime

from sqlalchemy import Date, Float, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)

ATTENDANCE_STATUSES = ("PRESENT", "ABSENT", "LATE", "EXCUSED")

# (minimum percentage, grade), highest first
GRADE_BANDS = ((90.0, "A"), (80.0, "B"), (70.0, "C"), (60.0, "D"), (50.0, "E"))


def calculate_grade(score: float, max_score: float) -> str:
    """Derive the letter grade from a score.

    >>> calculate_grade(45, 100)
    'F'
    """
    percentage = score / max_score * 100
    for minimum, grade in GRADE_BANDS:
        if percentage >= minimum:
            return grade
    return "F"


class AttendanceRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One attendance entry per student and day."""

    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("student_id", "date", name="uq_attendance_student_date"),
    )

    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[str | None] = mapped_column(String(36))


class PerformanceRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A scored assessment for one subject in one term."""

    __tablename__ = "performance_records"
    __table_args__ = (
        Index("ix_performance_student_term", "student_id", "academic_year", "term"),
    )

    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(100), nullable=False)
    term: Mapped[str] = mapped_column(String(20), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    max_score: Mapped[float] = mapped_column(Float, default=100.0, nullable=False)
    grade: Mapped[str] = mapped_column(String(2), nullable=False)
    recorded_by: Mapped[str | None] = mapped_column(String(36))

    @property
    def percentage(self) -> float:
        return self.score / self.max_score * 100
