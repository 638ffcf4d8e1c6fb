# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""ORM models.

Importing this package registers every table on Base.metadata, which
Alembic and the test fixtures rely on.
"""

from src.infrastructure.database.models.base import Base, JSONType, new_uuid
from src.infrastructure.database.models.message import MAX_CONTENT_LENGTH, Message
from src.infrastructure.database.models.notification import Notification
from src.infrastructure.database.models.records import (
    ATTENDANCE_STATUSES,
    AttendanceRecord,
    PerformanceRecord,
    calculate_grade,
)
from src.infrastructure.database.models.risk import DetectionRun, RiskFlag
from src.infrastructure.database.models.school import School, StaffUser, Student

__all__ = [
    "Base",
    "JSONType",
    "new_uuid",
    "School",
    "StaffUser",
    "Student",
    "AttendanceRecord",
    "PerformanceRecord",
    "ATTENDANCE_STATUSES",
    "calculate_grade",
    "RiskFlag",
    "DetectionRun",
    "Message",
    "MAX_CONTENT_LENGTH",
    "Notification",
]
