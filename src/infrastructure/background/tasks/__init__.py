# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors for the EduGuard risk engine.

Usage:
    from src.infrastructure.background.tasks import detect_students

    detect_students.send(["student-id"], "school-id", "teacher-id")

Running Workers:
    dramatiq src.infrastructure.background.tasks --processes 2 --threads 4
"""

from src.infrastructure.background.tasks.risk import (
    detect_students,
    get_risk_actors,
    process_pending_messages,
    run_school_sweep,
    schedule_nightly_sweeps,
    send_flag_alerts,
    send_guardian_alert,
)


__all__ = [
    "detect_students",
    "process_pending_messages",
    "run_school_sweep",
    "schedule_nightly_sweeps",
    "send_flag_alerts",
    "send_guardian_alert",
    "get_risk_actors",
]
