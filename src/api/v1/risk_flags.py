# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk flag API endpoints.

This module provides endpoints for risk flags and detection:
- POST / - Create a manual flag
- GET /students/{student_id} - List a student's flags
- POST /students/{student_id}/detect - Run detection for one student
- POST /schools/{school_id}/detect - Queue a whole-school sweep (202)
- GET /schools/{school_id}/summary - Active flag counts by severity and type
- GET /runs/{run_id} - Sweep progress and summary
- GET /{flag_id} - Get a flag
- PATCH /{flag_id} - Edit a flag
- POST /{flag_id}/resolve - Resolve a flag
- DELETE /{flag_id} - Delete a flag (admin only)

Example:
    POST /api/v1/risk-flags
    {
        "student_id": "...",
        "type": "BEHAVIOR",
        "severity": "HIGH",
        "title": "Repeated fights",
        "description": "Three incidents this week"
    }
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import CurrentActor, get_db, require_actor, require_admin
from src.core.risk.alerts import AlertDispatcher
from src.core.risk.service import RiskDetectionService
from src.core.risk.sweep import get_run, request_school_sweep
from src.core.risk.types import RiskType, Severity
from src.infrastructure.database.models.school import Student

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service(db: AsyncSession) -> RiskDetectionService:
    return RiskDetectionService(db)


def _get_dispatcher() -> AlertDispatcher:
    return AlertDispatcher()


# ============================================================================
# Request Models
# ============================================================================


class ManualFlagRequest(BaseModel):
    """Request to create a manual risk flag."""

    student_id: str = Field(description="Student ID")
    type: RiskType = Field(description="Risk type")
    severity: Severity = Field(description="Severity tier")
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)


class UpdateFlagRequest(BaseModel):
    """Partial flag update."""

    severity: Severity | None = None
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)


class ResolveFlagRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


# ============================================================================
# Response Models
# ============================================================================


class FlagResponse(BaseModel):
    """Risk flag response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    school_id: str
    type: str
    severity: str
    title: str
    description: str
    evidence: dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    is_resolved: bool
    auto_generated: bool
    created_by: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DetectionResponse(BaseModel):
    """Per-student detection summary."""

    risksDetected: int
    flagsCreated: int
    flagsUpdated: int
    riskLevel: str


class ManualFlagResponse(BaseModel):
    flag: FlagResponse
    detection: DetectionResponse


class RunResponse(BaseModel):
    """Detection run state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    school_id: str
    status: str
    trigger: str
    requested_by: str | None = None
    students_total: int
    students_scanned: int
    risks_detected: int
    flags_created: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None


class DeleteFlagResponse(BaseModel):
    studentId: str
    riskLevel: str


class SchoolSummaryResponse(BaseModel):
    """Active flag counts for a school."""

    schoolId: str
    totalActive: int
    studentsAtRisk: int
    bySeverity: dict[str, int]
    byType: dict[str, int]


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=ManualFlagResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_flag(
    request: ManualFlagRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> ManualFlagResponse:
    """Create a manual flag through the same dedup policy as detection."""
    service = _get_service(db)
    flag, detection = await service.create_manual_flag(
        request.student_id,
        request.type,
        request.severity,
        request.title,
        request.description,
        actor.id,
    )
    await db.commit()
    _get_dispatcher().dispatch(detection.events)

    return ManualFlagResponse(
        flag=FlagResponse.model_validate(flag),
        detection=DetectionResponse(**detection.to_dict()),
    )


@router.get("/students/{student_id}", response_model=list[FlagResponse])
async def list_student_flags(
    student_id: str,
    active_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> list[FlagResponse]:
    flags = await _get_service(db).list_flags(student_id, active_only=active_only)
    return [FlagResponse.model_validate(flag) for flag in flags]


@router.post("/students/{student_id}/detect", response_model=DetectionResponse)
async def detect_for_student(
    student_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> DetectionResponse:
    """Run detection for one student and return the summary."""
    result = await _get_service(db).detect_for_student(student_id, actor_id=actor.id)
    await db.commit()
    _get_dispatcher().dispatch(result.events)
    return DetectionResponse(**result.to_dict())


@router.post(
    "/schools/{school_id}/detect",
    response_model=RunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def detect_for_school(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_admin),
) -> RunResponse:
    """Queue a whole-school sweep; poll /runs/{run_id} for the summary."""
    run = await request_school_sweep(db, school_id, actor.id)
    return RunResponse.model_validate(run)


@router.get("/schools/{school_id}/summary", response_model=SchoolSummaryResponse)
async def get_school_summary(
    school_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> SchoolSummaryResponse:
    summary = await _get_service(db).school_summary(school_id)
    return SchoolSummaryResponse(**summary.to_dict())


@router.get("/runs/{run_id}", response_model=RunResponse)
async def get_detection_run(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> RunResponse:
    return RunResponse.model_validate(await get_run(db, run_id))


@router.get("/{flag_id}", response_model=FlagResponse)
async def get_flag(
    flag_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> FlagResponse:
    return FlagResponse.model_validate(await _get_service(db).get_flag(flag_id))


@router.patch("/{flag_id}", response_model=FlagResponse)
async def update_flag(
    flag_id: str,
    request: UpdateFlagRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> FlagResponse:
    flag = await _get_service(db).update_flag(
        flag_id,
        severity=request.severity,
        title=request.title,
        description=request.description,
    )
    await db.commit()
    return FlagResponse.model_validate(flag)


@router.post("/{flag_id}/resolve", response_model=FlagResponse)
async def resolve_flag(
    flag_id: str,
    request: ResolveFlagRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> FlagResponse:
    flag = await _get_service(db).resolve_flag(flag_id, actor.id, request.notes)
    await db.commit()
    return FlagResponse.model_validate(flag)


@router.delete("/{flag_id}", response_model=DeleteFlagResponse)
async def delete_flag(
    flag_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_admin),
) -> DeleteFlagResponse:
    """Hard-delete a flag and recompute the student's risk level."""
    service = _get_service(db)
    student_id = await service.delete_flag(flag_id)
    student = await db.get(Student, student_id)
    await db.commit()

    logger.info("Flag %s deleted by %s", flag_id, actor.id)
    return DeleteFlagResponse(studentId=student_id, riskLevel=student.risk_level)
