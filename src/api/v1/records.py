# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Record API endpoints that feed the risk engine.

- POST /attendance - Mark attendance (detection runs inline)
- POST /performance - Record a batch of scores (detection queued)
- POST /schools/{school_id}/students - Register a student
- PATCH /students/{student_id}/profile - Update socioeconomic profile
"""

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import CurrentActor, get_db, require_actor
from src.domains.records.schemas import (
    AttendanceMarkRequest,
    PerformanceBatchRequest,
    StudentProfileUpdate,
    StudentRegistration,
)
from src.domains.records.service import RecordService

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service(db: AsyncSession) -> RecordService:
    return RecordService(db)


# ============================================================================
# Response Models
# ============================================================================


class AttendanceResponse(BaseModel):
    id: str
    student_id: str
    date: date
    status: str
    detection: dict[str, Any]
    alertQueued: bool


class PerformanceBatchResponse(BaseModel):
    recorded: int
    students: int


class StudentResponse(BaseModel):
    """Student with cached risk level."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    school_id: str
    first_name: str
    last_name: str
    student_code: str | None = None
    class_name: str | None = None
    ubudehe_level: int | None = None
    has_parents: bool
    family_stable: bool
    distance_to_school_km: float | None = None
    sibling_count: int | None = None
    parent_education_level: str | None = None
    guardian_contacts: list[dict[str, Any]]
    risk_level: str


class StudentDetectionResponse(BaseModel):
    student: StudentResponse
    detection: dict[str, Any] | None = None


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/attendance", response_model=AttendanceResponse)
async def mark_attendance(
    request: AttendanceMarkRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> AttendanceResponse:
    """Mark attendance for one student and day; re-marking overwrites."""
    outcome = await _get_service(db).mark_attendance(
        request.student_id,
        request.date,
        request.status,
        request.reason,
        actor.id,
    )
    return AttendanceResponse(
        id=outcome.record.id,
        student_id=outcome.record.student_id,
        date=outcome.record.date,
        status=outcome.record.status,
        detection=outcome.detection.to_dict(),
        alertQueued=outcome.alert_queued,
    )


@router.post(
    "/performance",
    response_model=PerformanceBatchResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_performance(
    request: PerformanceBatchRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> PerformanceBatchResponse:
    records = await _get_service(db).record_performance_batch(request.entries, actor.id)
    return PerformanceBatchResponse(
        recorded=len(records),
        students=len({record.student_id for record in records}),
    )


@router.post(
    "/schools/{school_id}/students",
    response_model=StudentDetectionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_student(
    school_id: str,
    request: StudentRegistration,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> StudentDetectionResponse:
    student, detection = await _get_service(db).register_student(
        school_id,
        request.first_name,
        request.last_name,
        request.profile_fields(),
        actor.id,
        student_code=request.student_code,
        class_name=request.class_name,
    )
    return StudentDetectionResponse(
        student=StudentResponse.model_validate(student),
        detection=detection.to_dict(),
    )


@router.patch("/students/{student_id}/profile", response_model=StudentDetectionResponse)
async def update_profile(
    student_id: str,
    request: StudentProfileUpdate,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> StudentDetectionResponse:
    """Apply the fields that were sent; unset fields are kept."""
    student, detection = await _get_service(db).update_profile(
        student_id, request.model_dump(exclude_unset=True), actor.id
    )
    return StudentDetectionResponse(
        student=StudentResponse.model_validate(student),
        detection=detection.to_dict() if detection else None,
    )
