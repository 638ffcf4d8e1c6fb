# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Record write schemas.

Request models for attendance marking, batch performance entry and
student profile changes. Score ranges are validated again in the
service so non-HTTP callers get the same guarantees.
"""

from datetime import date as Date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AttendanceStatus = Literal["PRESENT", "ABSENT", "LATE", "EXCUSED"]
EducationLevel = Literal["NONE", "PRIMARY", "SECONDARY", "TERTIARY"]


class AttendanceMarkRequest(BaseModel):
    """Mark one student's attendance for one day."""

    student_id: str
    date: Date
    status: AttendanceStatus
    reason: str | None = Field(default=None, max_length=500)


class PerformanceEntry(BaseModel):
    """One scored assessment."""

    student_id: str
    subject: str = Field(min_length=1, max_length=100)
    term: str = Field(min_length=1, max_length=20)
    academic_year: str = Field(min_length=1, max_length=20)
    score: float = Field(ge=0)
    max_score: float = Field(default=100.0, gt=0)

    @model_validator(mode="after")
    def _score_within_max(self) -> "PerformanceEntry":
        if self.score > self.max_score:
            raise ValueError("score must not exceed max_score")
        return self


class PerformanceBatchRequest(BaseModel):
    entries: list[PerformanceEntry] = Field(min_length=1, max_length=1000)


class GuardianContactSchema(BaseModel):
    name: str = Field(min_length=1)
    phone: str | None = None
    email: str | None = None
    relation: str | None = None
    is_primary: bool = False


class StudentProfileUpdate(BaseModel):
    """Socioeconomic profile and guardian changes. Unset fields are kept."""

    model_config = ConfigDict(extra="forbid")

    ubudehe_level: int | None = Field(default=None, ge=1, le=4)
    has_parents: bool | None = None
    family_stable: bool | None = None
    distance_to_school_km: float | None = Field(default=None, ge=0)
    sibling_count: int | None = Field(default=None, ge=0)
    parent_education_level: EducationLevel | None = None
    guardian_contacts: list[GuardianContactSchema] | None = None

    @field_validator("has_parents", "family_stable")
    @classmethod
    def _not_null(cls, value: bool | None) -> bool:
        # Omit the field to keep it; explicit null is not a value.
        if value is None:
            raise ValueError("must be true or false")
        return value


class StudentRegistration(StudentProfileUpdate):
    """A new student with an optional profile."""

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    student_code: str | None = None
    class_name: str | None = None

    def profile_fields(self) -> dict[str, Any]:
        return self.model_dump(
            exclude={"first_name", "last_name", "student_code", "class_name"},
            exclude_unset=True,
        )
