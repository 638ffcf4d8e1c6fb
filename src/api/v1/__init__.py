# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    risk_flags: Risk flags, detection and whole-school sweeps.
    messages: Guardian messages and delivery retries.
    records: Attendance, performance and student profile writes.
"""

from fastapi import APIRouter

from src.api.v1 import messages, records, risk_flags

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(risk_flags.router, prefix="/risk-flags", tags=["Risk Flags"])
router.include_router(messages.router, prefix="/messages", tags=["Messages"])
router.include_router(records.router, prefix="/records", tags=["Records"])

__all__ = ["router"]
