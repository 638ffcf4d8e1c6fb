# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Performance evaluator.

Two rules over the most recent term on record:
- failing grades (E/F, or a percentage under the critical floor)
- a per-subject average drop against the previous term, counted only
  while the current average is at or below the configured ceiling
"""

from collections import defaultdict

from src.core.risk.evaluators.base import BaseEvaluator, GradeEntry, StudentSnapshot
from src.core.risk.types import CandidateSignal, RiskType, Severity


def _subject_averages(entries: list[GradeEntry]) -> dict[str, float]:
    by_subject: dict[str, list[float]] = defaultdict(list)
    for entry in entries:
        by_subject[entry.subject].append(entry.percentage)
    return {subject: sum(values) / len(values) for subject, values in by_subject.items()}


class PerformanceEvaluator(BaseEvaluator):
    """Emits PERFORMANCE signals from graded records."""

    @property
    def risk_type(self) -> RiskType:
        return RiskType.PERFORMANCE

    def evaluate(self, snapshot: StudentSnapshot) -> list[CandidateSignal]:
        if not snapshot.performance:
            return []

        terms = sorted({entry.term_key for entry in snapshot.performance})
        latest = terms[-1]
        current = [e for e in snapshot.performance if e.term_key == latest]

        signals = []
        failing = self._failing_signal(current)
        if failing:
            signals.append(failing)

        if len(terms) > 1:
            previous = [e for e in snapshot.performance if e.term_key == terms[-2]]
            signals.extend(self._drop_signals(previous, current))

        return signals

    def _failing_signal(self, entries: list[GradeEntry]) -> CandidateSignal | None:
        rules = self.config.performance
        failing: list[tuple[GradeEntry, Severity]] = []

        for entry in entries:
            if entry.percentage < rules.critical_below_percent:
                failing.append((entry, Severity.CRITICAL))
            elif entry.grade in rules.grade_severity:
                failing.append((entry, rules.grade_severity[entry.grade]))

        if not failing:
            return None

        severity = Severity.highest([sev for _, sev in failing])
        details = ", ".join(
            f"{entry.subject} {entry.percentage:.0f}% ({entry.grade})" for entry, _ in failing
        )
        return self.signal(
            severity,
            "Low Academic Performance",
            f"Failing grades in {len(failing)} record(s): {details}",
            records=[
                {
                    "subject": entry.subject,
                    "term": entry.term,
                    "academic_year": entry.academic_year,
                    "percentage": round(entry.percentage, 1),
                    "grade": entry.grade,
                }
                for entry, _ in failing
            ],
        )

    def _drop_signals(
        self, previous: list[GradeEntry], current: list[GradeEntry]
    ) -> list[CandidateSignal]:
        rules = self.config.performance
        before = _subject_averages(previous)
        after = _subject_averages(current)

        signals = []
        for subject in sorted(after.keys() & before.keys()):
            drop = before[subject] - after[subject]
            if drop >= rules.drop_percent and after[subject] <= rules.drop_max_current_percent:
                signals.append(
                    self.signal(
                        rules.drop_severity,
                        f"Performance Decline in {subject}",
                        f"{subject} average fell from {before[subject]:.0f}% "
                        f"to {after[subject]:.0f}%",
                        subject=subject,
                        previous_average=round(before[subject], 1),
                        current_average=round(after[subject], 1),
                        drop=round(drop, 1),
                    )
                )
        return signals
