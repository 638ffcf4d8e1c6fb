# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared value types for the risk engine.

Severity tiers are ordered (LOW < MEDIUM < HIGH < CRITICAL). RiskLevel is the
student-level projection of those tiers and adds NONE for students without
active flags.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RiskType(str, Enum):
    """Risk flag categories. One active flag per student and type."""

    ATTENDANCE = "ATTENDANCE"
    PERFORMANCE = "PERFORMANCE"
    BEHAVIOR = "BEHAVIOR"
    SOCIOECONOMIC = "SOCIOECONOMIC"
    OTHER = "OTHER"


class Severity(str, Enum):
    """Risk flag severity tiers."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def bumped(self, tiers: int = 1) -> "Severity":
        """Return the tier `tiers` steps above this one, capped at CRITICAL."""
        index = min(self.rank - 1 + tiers, len(_SEVERITY_ORDER) - 1)
        return _SEVERITY_ORDER[index]

    def lower_tiers(self) -> list["Severity"]:
        """Return every tier strictly below this one."""
        return [s for s in _SEVERITY_ORDER if s.rank < self.rank]

    @classmethod
    def highest(cls, severities: "list[Severity]") -> "Severity | None":
        if not severities:
            return None
        return max(severities, key=lambda s: s.rank)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]
_SEVERITY_RANK = {severity: i + 1 for i, severity in enumerate(_SEVERITY_ORDER)}


class RiskLevel(str, Enum):
    """Aggregate student risk level."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_severity(cls, severity: Severity | None) -> "RiskLevel":
        if severity is None:
            return cls.NONE
        return cls(severity.value)


class FlagEventKind(str, Enum):
    """What the aggregator did with a candidate signal."""

    CREATED = "CREATED"
    ESCALATED = "ESCALATED"


@dataclass(frozen=True)
class CandidateSignal:
    """Transient evaluator output, reconciled against stored flags later.

    Attributes:
        type: Risk category, half of the dedup key.
        severity: Proposed severity tier.
        title: Short human readable label.
        description: Explanation shown to staff.
        evidence: Raw figures that produced the signal.
    """

    type: RiskType
    severity: Severity
    title: str
    description: str
    evidence: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FlagEvent:
    """A flag that was created or escalated by the aggregator."""

    flag_id: str
    student_id: str
    school_id: str
    type: RiskType
    severity: Severity
    title: str
    description: str
    kind: FlagEventKind
    previous_severity: Severity | None = None
    actor_id: str | None = None

    def to_message(self) -> dict[str, Any]:
        """Serialize for a task queue payload."""
        return {
            "flag_id": self.flag_id,
            "student_id": self.student_id,
            "school_id": self.school_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "kind": self.kind.value,
            "previous_severity": (
                self.previous_severity.value if self.previous_severity else None
            ),
            "actor_id": self.actor_id,
        }

    @classmethod
    def from_message(cls, data: dict[str, Any]) -> "FlagEvent":
        previous = data.get("previous_severity")
        return cls(
            flag_id=data["flag_id"],
            student_id=data["student_id"],
            school_id=data["school_id"],
            type=RiskType(data["type"]),
            severity=Severity(data["severity"]),
            title=data["title"],
            description=data["description"],
            kind=FlagEventKind(data["kind"]),
            previous_severity=Severity(previous) if previous else None,
            actor_id=data.get("actor_id"),
        )


@dataclass
class DetectionResult:
    """Summary of one per-student detection pass.

    Attributes:
        student_id: Evaluated student.
        risks_detected: Candidate signals after per-type reduction.
        flags_created: New flags inserted.
        flags_updated: Existing flags escalated in place.
        risk_level: Student risk level after recompute.
        events: Created/escalated flags, in evaluation order.
    """

    student_id: str
    risks_detected: int = 0
    flags_created: int = 0
    flags_updated: int = 0
    risk_level: RiskLevel = RiskLevel.NONE
    events: list[FlagEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "risksDetected": self.risks_detected,
            "flagsCreated": self.flags_created,
            "flagsUpdated": self.flags_updated,
            "riskLevel": self.risk_level.value,
        }


@dataclass
class SchoolRiskSummary:
    """Active flag counts for one school.

    Every severity and type is present in the breakdowns, zero or not.
    """

    school_id: str
    total_active: int = 0
    students_at_risk: int = 0
    by_severity: dict[str, int] = field(
        default_factory=lambda: {severity.value: 0 for severity in Severity}
    )
    by_type: dict[str, int] = field(
        default_factory=lambda: {risk_type.value: 0 for risk_type in RiskType}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schoolId": self.school_id,
            "totalActive": self.total_active,
            "studentsAtRisk": self.students_at_risk,
            "bySeverity": dict(self.by_severity),
            "byType": dict(self.by_type),
        }
