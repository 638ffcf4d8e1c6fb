# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Attendance evaluator.

Looks at a trailing window ending at the evaluation date:
- the longest run of consecutive ABSENT records
- the absence rate, against at least the expected number of school days
and at absences over a longer monthly window.

LATE and EXCUSED records are attendance, not absence.
"""

from datetime import timedelta

from src.core.risk.config import match_tier
from src.core.risk.evaluators.base import AttendanceEntry, BaseEvaluator, StudentSnapshot
from src.core.risk.types import CandidateSignal, RiskType

ABSENT = "ABSENT"


def longest_absence_run(entries: list[AttendanceEntry]) -> int:
    """Longest run of consecutive ABSENT records, in date order."""
    longest = current = 0
    for entry in sorted(entries, key=lambda e: e.date):
        if entry.status == ABSENT:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


class AttendanceEvaluator(BaseEvaluator):
    """Emits ATTENDANCE signals from recent attendance records."""

    @property
    def risk_type(self) -> RiskType:
        return RiskType.ATTENDANCE

    def evaluate(self, snapshot: StudentSnapshot) -> list[CandidateSignal]:
        rules = self.config.attendance
        as_of = snapshot.as_of

        window_start = as_of - timedelta(days=rules.window_days - 1)
        window = [
            e for e in snapshot.attendance if window_start <= e.date <= as_of
        ]
        signals: list[CandidateSignal] = []

        if window:
            absences = sum(1 for e in window if e.status == ABSENT)
            streak = longest_absence_run(window)
            denominator = max(len(window), rules.expected_school_days)
            rate = absences / denominator

            severity = match_tier(streak, rules.consecutive_tiers)
            if severity:
                signals.append(
                    self.signal(
                        severity,
                        "Consecutive Absences",
                        f"{streak} consecutive absences in the last {rules.window_days} days",
                        consecutive_absences=streak,
                        window_days=rules.window_days,
                    )
                )

            severity = match_tier(rate, rules.rate_tiers)
            if severity:
                signals.append(
                    self.signal(
                        severity,
                        "High Absence Rate",
                        f"Absent {absences} of {denominator} school days ({rate:.0%})",
                        absences=absences,
                        school_days=denominator,
                        absence_rate=round(rate, 3),
                    )
                )

        month_start = as_of - timedelta(days=rules.monthly_window_days - 1)
        monthly_absences = sum(
            1
            for e in snapshot.attendance
            if month_start <= e.date <= as_of and e.status == ABSENT
        )
        severity = match_tier(monthly_absences, rules.monthly_absence_tiers)
        if severity:
            signals.append(
                self.signal(
                    severity,
                    "Chronic Absenteeism",
                    f"{monthly_absences} absences in the last {rules.monthly_window_days} days",
                    monthly_absences=monthly_absences,
                    window_days=rules.monthly_window_days,
                )
            )

        return signals
