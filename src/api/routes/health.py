# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides health and readiness endpoints for the API.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from src import __version__
from src.core.config import get_settings
from src.infrastructure.background.broker import get_broker_manager
from src.infrastructure.background.scheduler import get_scheduler
from src.infrastructure.database.connection import check_database_connection

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(description="Overall health status")
    version: str = Field(description="API version")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    checked_at: datetime = Field(description="When health was checked")
    components: dict[str, Any] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool = Field(description="Whether the service is ready")
    checks: dict[str, Any] = Field(description="Individual check results")


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report database, broker and scheduler state."""
    database_ok = await check_database_connection()
    broker = get_broker_manager().get_queue_stats()
    scheduler = get_scheduler().get_stats()

    if not database_ok:
        overall_status = "unhealthy"
    elif broker.get("status") != "healthy" or not scheduler["is_running"]:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    if overall_status != "healthy":
        logger.warning("Health check: %s", overall_status)

    return HealthResponse(
        status=overall_status,
        version=__version__,
        environment=get_settings().environment,
        uptime_seconds=int(time.time() - _server_start_time),
        checked_at=datetime.now(timezone.utc),
        components={
            "database": "healthy" if database_ok else "unhealthy",
            "broker": broker,
            "scheduler": {
                "is_running": scheduler["is_running"],
                "task_count": scheduler["task_count"],
            },
        },
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse:
    """Ready once the database answers."""
    database_ok = await check_database_connection()
    return ReadinessResponse(
        ready=database_ok,
        checks={"database": {"status": "healthy" if database_ok else "unhealthy"}},
    )
