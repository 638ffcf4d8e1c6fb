# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School, staff and student models.

Student.risk_level is a cached projection of the student's active risk
flags. Only the risk level calculator writes it.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


class School(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A school. `settings["risk_rules"]` overrides the global risk rules."""

    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), unique=True)
    district: Mapped[str | None] = mapped_column(String(100))
    phone: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(String(255))
    settings: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def risk_rule_overrides(self) -> dict[str, Any]:
        return (self.settings or {}).get("risk_rules") or {}


class StaffUser(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A teacher or administrator attached to a school."""

    __tablename__ = "staff_users"

    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(30))
    role: Mapped[str] = mapped_column(String(20), default="TEACHER", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


class Student(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A student with socioeconomic profile and guardian contacts.

    guardian_contacts is a list of mappings with name, phone, email,
    relation and an optional is_primary flag.
    """

    __tablename__ = "students"
    __table_args__ = (Index("ix_students_school_active", "school_id", "is_active"),)

    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    student_code: Mapped[str | None] = mapped_column(String(50))
    class_name: Mapped[str | None] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Socioeconomic profile
    ubudehe_level: Mapped[int | None] = mapped_column(Integer)
    has_parents: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    family_stable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    distance_to_school_km: Mapped[float | None] = mapped_column(Float)
    sibling_count: Mapped[int | None] = mapped_column(Integer)
    parent_education_level: Mapped[str | None] = mapped_column(String(30))

    guardian_contacts: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )

    risk_level: Mapped[str] = mapped_column(String(10), default="NONE", nullable=False)
    risk_level_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
