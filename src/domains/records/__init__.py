# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Records domain package.

This package provides the record write paths that trigger risk detection:
- RecordService: attendance, performance and student profile writes
- Schemas: Request models for the records API
"""

from src.domains.records.schemas import (
    AttendanceMarkRequest,
    GuardianContactSchema,
    PerformanceBatchRequest,
    PerformanceEntry,
    StudentProfileUpdate,
    StudentRegistration,
)
from src.domains.records.service import AttendanceOutcome, RecordService

__all__ = [
    "AttendanceMarkRequest",
    "AttendanceOutcome",
    "GuardianContactSchema",
    "PerformanceBatchRequest",
    "PerformanceEntry",
    "RecordService",
    "StudentProfileUpdate",
    "StudentRegistration",
]
