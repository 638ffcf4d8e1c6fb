# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base evaluator classes and the student snapshot they read.

Evaluators are pure: they receive an immutable StudentSnapshot (loaded by
the detection service) and return candidate signals. They never touch the
database, so the same snapshot always yields the same signals.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from src.core.risk.config import RiskConfig, get_risk_config
from src.core.risk.types import CandidateSignal, RiskType, Severity


@dataclass(frozen=True)
class AttendanceEntry:
    date: date
    status: str


@dataclass(frozen=True)
class GradeEntry:
    subject: str
    term: str
    academic_year: str
    score: float
    max_score: float
    grade: str

    @property
    def term_key(self) -> tuple[str, str]:
        return (self.academic_year, self.term)

    @property
    def percentage(self) -> float:
        return self.score / self.max_score * 100


@dataclass(frozen=True)
class StudentProfile:
    """Socioeconomic profile. Unknown values are None and score as zero."""

    ubudehe_level: int | None = None
    has_parents: bool = True
    family_stable: bool = True
    distance_to_school_km: float | None = None
    sibling_count: int | None = None
    parent_education_level: str | None = None


@dataclass(frozen=True)
class StudentSnapshot:
    """Everything the evaluators may read about one student.

    Attributes:
        student_id: Student identifier.
        school_id: Owning school.
        as_of: Evaluation date; trailing windows end here.
        attendance: Attendance entries, any order.
        performance: Performance entries, any order.
        profile: Socioeconomic profile.
    """

    student_id: str
    school_id: str
    as_of: date
    attendance: tuple[AttendanceEntry, ...] = ()
    performance: tuple[GradeEntry, ...] = ()
    profile: StudentProfile = field(default_factory=StudentProfile)


class BaseEvaluator(ABC):
    """Abstract base class for rule-family evaluators.

    Thresholds come from the risk rules configuration, which is either
    injected (per-school overrides, tests) or loaded lazily.
    """

    def __init__(self, config: RiskConfig | None = None) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._config = config

    @property
    @abstractmethod
    def risk_type(self) -> RiskType:
        """Return the flag type this evaluator emits."""
        pass

    @property
    def config(self) -> RiskConfig:
        if self._config is None:
            self._config = get_risk_config()
        return self._config

    @abstractmethod
    def evaluate(self, snapshot: StudentSnapshot) -> list[CandidateSignal]:
        """Evaluate a snapshot.

        Args:
            snapshot: Student data to evaluate.

        Returns:
            Zero or more candidate signals of this evaluator's type.
        """
        pass

    def signal(
        self,
        severity: Severity,
        title: str,
        description: str,
        **evidence: Any,
    ) -> CandidateSignal:
        return CandidateSignal(
            type=self.risk_type,
            severity=severity,
            title=title,
            description=description,
            evidence=evidence,
        )


def reduce_signals(signals: list[CandidateSignal]) -> list[CandidateSignal]:
    """Collapse signals to one per type, keeping the most severe.

    The kept signal's description lists every contributing reason, most
    severe first, and its evidence keeps each contributor.
    """
    by_type: dict[RiskType, list[CandidateSignal]] = {}
    for candidate in signals:
        by_type.setdefault(candidate.type, []).append(candidate)

    reduced = []
    for risk_type, group in by_type.items():
        group = sorted(group, key=lambda s: s.severity.rank, reverse=True)
        top = group[0]
        if len(group) == 1:
            reduced.append(top)
            continue
        reduced.append(
            CandidateSignal(
                type=risk_type,
                severity=top.severity,
                title=top.title,
                description="; ".join(s.description for s in group),
                evidence={
                    "signals": [
                        {"title": s.title, "severity": s.severity.value, **s.evidence}
                        for s in group
                    ]
                },
            )
        )
    return reduced
