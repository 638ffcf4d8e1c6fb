# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the alert dispatcher."""

from datetime import date

from src.core.risk.alerts import AlertDispatcher
from src.core.risk.types import FlagEvent, FlagEventKind, RiskType, Severity


def make_event(severity: Severity, flag_id: str = "flag-1") -> FlagEvent:
    return FlagEvent(
        flag_id=flag_id,
        student_id="student-1",
        school_id="school-1",
        type=RiskType.ATTENDANCE,
        severity=severity,
        title="Consecutive Absences",
        description="3 consecutive absences",
        kind=FlagEventKind.CREATED,
    )


class TestAlertDispatcher:
    """Tests for queueing alerts after commit."""

    def test_only_events_at_or_above_threshold_are_queued(self, dispatcher, enqueue) -> None:
        events = [
            make_event(Severity.MEDIUM, "flag-1"),
            make_event(Severity.HIGH, "flag-2"),
            make_event(Severity.CRITICAL, "flag-3"),
        ]

        queued = dispatcher.dispatch(events)

        assert queued == 2
        assert [p["flag_id"] for p in enqueue.of_kind("flag_event")] == ["flag-2", "flag-3"]

    def test_queue_failure_is_swallowed(self, enqueue) -> None:
        """Test that a broker outage is logged and reported, never raised."""
        enqueue.fail = True
        dispatcher = AlertDispatcher(min_severity=Severity.HIGH, enqueue=enqueue)

        assert dispatcher.dispatch([make_event(Severity.CRITICAL)]) == 0

    def test_absence_alert_payload(self, dispatcher, enqueue) -> None:
        assert dispatcher.dispatch_absence("student-1", date(2025, 3, 4), "teacher-1")

        payloads = enqueue.of_kind("guardian_alert")
        assert payloads == [
            {
                "student_id": "student-1",
                "channel": "BOTH",
                "template": "absence_alert",
                "variables": {"date": "2025-03-04"},
                "actor_id": "teacher-1",
            }
        ]
