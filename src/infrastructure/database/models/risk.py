# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk flag and detection run models."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)

# Predicate of the partial unique index; `true` is a keyword in both
# PostgreSQL and SQLite >= 3.23.
ACTIVE_FLAG_PREDICATE = "is_active = true"


class RiskFlag(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One risk concern for a student.

    At most one active flag exists per (student_id, type); the partial
    unique index enforces it and the aggregator relies on it.
    """

    __tablename__ = "risk_flags"
    __table_args__ = (
        Index(
            "uq_risk_flags_active_student_type",
            "student_id",
            "type",
            unique=True,
            postgresql_where=text(ACTIVE_FLAG_PREDICATE),
            sqlite_where=text(ACTIVE_FLAG_PREDICATE),
        ),
        Index("ix_risk_flags_school_active", "school_id", "is_active"),
    )

    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_generated: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(36))
    resolved_by: Mapped[str | None] = mapped_column(String(36))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolution_notes: Mapped[str | None] = mapped_column(Text)


class DetectionRun(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A tracked whole-school sweep.

    Status moves QUEUED -> RUNNING -> COMPLETED, or FAILED when the sweep
    itself could not run. Per-student failures land in `errors` and do not
    fail the run.
    """

    __tablename__ = "detection_runs"

    school_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    requested_by: Mapped[str | None] = mapped_column(String(36))
    trigger: Mapped[str] = mapped_column(String(20), default="MANUAL", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="QUEUED", nullable=False)
    students_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    students_scanned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    risks_detected: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flags_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)
    task_message_id: Mapped[str | None] = mapped_column(String(64))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def summary(self) -> dict[str, Any]:
        return {
            "studentsScanned": self.students_scanned,
            "risksDetected": self.risks_detected,
            "flagsCreated": self.flags_created,
            "errors": list(self.errors or []),
        }
