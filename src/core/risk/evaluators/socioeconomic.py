# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Socioeconomic evaluator.

Evaluated at registration and whenever the profile changes. Distance to
school is tiered on its own; the remaining factors are combined into a
weighted score and bucketed.
"""

from src.core.risk.config import match_tier
from src.core.risk.evaluators.base import BaseEvaluator, StudentProfile, StudentSnapshot
from src.core.risk.types import CandidateSignal, RiskType

_FACTOR_LABELS = {
    "poverty": "low ubudehe category",
    "no_parents": "no parents",
    "family_instability": "unstable family situation",
    "siblings": "large number of siblings",
    "parent_education": "low parent education",
}


class SocioeconomicEvaluator(BaseEvaluator):
    """Emits SOCIOECONOMIC signals from the student profile."""

    @property
    def risk_type(self) -> RiskType:
        return RiskType.SOCIOECONOMIC

    def factor_scores(self, profile: StudentProfile) -> dict[str, float]:
        """Score each factor in [0, 1]; 1 is the most vulnerable."""
        rules = self.config.socioeconomic
        education = (profile.parent_education_level or "").upper()
        return {
            "poverty": rules.poverty_scores.get(profile.ubudehe_level, 0.0)
            if profile.ubudehe_level is not None
            else 0.0,
            "no_parents": 0.0 if profile.has_parents else 1.0,
            "family_instability": 0.0 if profile.family_stable else 1.0,
            "siblings": 1.0
            if (profile.sibling_count or 0) >= rules.sibling_threshold
            else 0.0,
            "parent_education": 1.0 if education in rules.low_education_levels else 0.0,
        }

    def weighted_score(self, profile: StudentProfile) -> float:
        weights = self.config.socioeconomic.weights
        scores = self.factor_scores(profile)
        return sum(weights.get(name, 0.0) * value for name, value in scores.items())

    def evaluate(self, snapshot: StudentSnapshot) -> list[CandidateSignal]:
        rules = self.config.socioeconomic
        profile = snapshot.profile
        signals = []

        distance = profile.distance_to_school_km
        if distance is not None:
            severity = match_tier(distance, rules.distance_tiers)
            if severity:
                signals.append(
                    self.signal(
                        severity,
                        "Long Distance to School",
                        f"Lives {distance:.1f} km from school",
                        distance_km=distance,
                    )
                )

        scores = self.factor_scores(profile)
        score = self.weighted_score(profile)
        severity = match_tier(score, rules.score_tiers)
        if severity:
            present = [_FACTOR_LABELS[name] for name, value in scores.items() if value > 0]
            signals.append(
                self.signal(
                    severity,
                    "Socioeconomic Vulnerability",
                    f"Vulnerability score {score:.2f}: {', '.join(present)}",
                    score=round(score, 3),
                    factors={name: round(value, 2) for name, value in scores.items()},
                )
            )

        return signals
