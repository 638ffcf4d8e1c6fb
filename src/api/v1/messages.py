# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian message API endpoints.

- POST / - Send a templated message to a student's guardian
- GET /{message_id} - Get a message with per-channel delivery state
- POST /{message_id}/retry - Re-attempt every requested channel
- POST /process-pending - Run the pending-message sweep now (admin only)
- POST /bulk - Send one free-text message to many guardians
- GET /schools/{school_id}/statistics - Delivery counts over a time window

Delivery failures are recorded on the message and returned with a 201;
only input problems produce an error response.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import CurrentActor, get_db, require_actor, require_admin
from src.infrastructure.database.models.message import MAX_CONTENT_LENGTH
from src.infrastructure.notifications.service import (
    MessageChannel,
    MessageService,
    MessageType,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service(db: AsyncSession) -> MessageService:
    return MessageService(db)


# ============================================================================
# Request/Response Models
# ============================================================================


class SendMessageRequest(BaseModel):
    """Request to send a guardian message."""

    student_id: str = Field(description="Student ID")
    channel: MessageChannel = Field(description="SMS, EMAIL or BOTH")
    template: str = Field(description="Template key, e.g. absence_alert")
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Template variables"
    )
    language: str | None = Field(default=None, description="Template language")


class ProcessPendingRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)


class MessageResponse(BaseModel):
    """Guardian message with delivery state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    school_id: str
    sender_id: str | None = None
    recipient_name: str | None = None
    recipient_phone: str | None = None
    recipient_email: str | None = None
    channel: str
    message_type: str
    template: str | None = None
    language: str
    subject: str | None = None
    content: str
    status: str
    sms_status: str
    email_status: str
    sms_sid: str | None = None
    email_message_id: str | None = None
    sms_error: str | None = None
    email_error: str | None = None
    retry_count: int
    max_retries: int
    sent_at: datetime | None = None
    created_at: datetime | None = None


class ProcessPendingResponse(BaseModel):
    processed: int
    sent: int
    failed: int
    stillPending: int


class BulkMessageRequest(BaseModel):
    """Free-text message to the guardians of several students."""

    student_ids: list[str] = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1, max_length=MAX_CONTENT_LENGTH)
    subject: str | None = Field(default=None, max_length=255)
    channel: MessageChannel = MessageChannel.SMS
    message_type: MessageType = MessageType.GENERAL
    language: str | None = None


class BulkMessageResponse(BaseModel):
    sent: int
    failed: int
    results: list[dict[str, Any]]
    errors: list[dict[str, Any]]


class DeliveryStatsResponse(BaseModel):
    """Guardian message counts for a school over a time window."""

    schoolId: str
    start: datetime
    end: datetime
    total: int
    sent: int
    failed: int
    pending: int
    byType: dict[str, int]
    byChannel: dict[str, int]


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: SendMessageRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> MessageResponse:
    message = await _get_service(db).send_alert(
        request.student_id,
        request.channel,
        request.template,
        request.variables,
        actor.id,
        language=request.language,
    )
    await db.commit()
    return MessageResponse.model_validate(message)


@router.post(
    "/process-pending",
    response_model=ProcessPendingResponse,
)
async def process_pending(
    request: ProcessPendingRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_admin),
) -> ProcessPendingResponse:
    """Re-attempt undelivered messages without waiting for the scheduler."""
    summary = await _get_service(db).process_pending_messages(request.limit)
    await db.commit()
    return ProcessPendingResponse(**summary.to_dict())


@router.post("/bulk", response_model=BulkMessageResponse)
async def send_bulk(
    request: BulkMessageRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> BulkMessageResponse:
    """Send one message to many guardians; per-student failures are listed."""
    outcome = await _get_service(db).send_bulk(
        request.student_ids,
        request.content,
        subject=request.subject,
        channel=request.channel,
        message_type=request.message_type,
        actor_id=actor.id,
        language=request.language,
    )
    await db.commit()
    return BulkMessageResponse(**outcome.to_dict())


@router.get("/schools/{school_id}/statistics", response_model=DeliveryStatsResponse)
async def get_delivery_stats(
    school_id: str,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> DeliveryStatsResponse:
    stats = await _get_service(db).delivery_stats(school_id, start, end)
    return DeliveryStatsResponse(**stats.to_dict())


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> MessageResponse:
    return MessageResponse.model_validate(await _get_service(db).get_message(message_id))


@router.post("/{message_id}/retry", response_model=MessageResponse)
async def retry_message(
    message_id: str,
    db: AsyncSession = Depends(get_db),
    actor: CurrentActor = Depends(require_actor),
) -> MessageResponse:
    message = await _get_service(db).retry_message(message_id)
    await db.commit()
    logger.info("Message %s retried by %s", message_id, actor.id)
    return MessageResponse.model_validate(message)
