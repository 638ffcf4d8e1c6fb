# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Signal evaluators, one per rule family."""

from src.core.risk.config import RiskConfig
from src.core.risk.evaluators.attendance import AttendanceEvaluator
from src.core.risk.evaluators.base import (
    AttendanceEntry,
    BaseEvaluator,
    GradeEntry,
    StudentProfile,
    StudentSnapshot,
    reduce_signals,
)
from src.core.risk.evaluators.manual import build_manual_signal
from src.core.risk.evaluators.performance import PerformanceEvaluator
from src.core.risk.evaluators.socioeconomic import SocioeconomicEvaluator
from src.core.risk.types import CandidateSignal, RiskType

AUTOMATIC_EVALUATORS: dict[RiskType, type[BaseEvaluator]] = {
    RiskType.ATTENDANCE: AttendanceEvaluator,
    RiskType.PERFORMANCE: PerformanceEvaluator,
    RiskType.SOCIOECONOMIC: SocioeconomicEvaluator,
}


def evaluate_snapshot(
    snapshot: StudentSnapshot,
    config: RiskConfig | None = None,
    families: tuple[RiskType, ...] | None = None,
) -> list[CandidateSignal]:
    """Run the selected rule families and reduce to one signal per type.

    Args:
        snapshot: Student data.
        config: Rules to apply; the global rules when omitted.
        families: Rule families to run; all automatic families when omitted.
    """
    selected = families or tuple(AUTOMATIC_EVALUATORS)
    signals: list[CandidateSignal] = []
    for risk_type in selected:
        evaluator = AUTOMATIC_EVALUATORS[risk_type](config)
        signals.extend(evaluator.evaluate(snapshot))
    return reduce_signals(signals)


__all__ = [
    "AUTOMATIC_EVALUATORS",
    "AttendanceEntry",
    "AttendanceEvaluator",
    "BaseEvaluator",
    "GradeEntry",
    "PerformanceEvaluator",
    "SocioeconomicEvaluator",
    "StudentProfile",
    "StudentSnapshot",
    "build_manual_signal",
    "evaluate_snapshot",
    "reduce_signals",
]
