# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk rule configuration.

Loads detection thresholds and the risk level escalation table from
config/risk/rules.yaml. Every value has a built-in default so a missing
file still yields a usable configuration.

Usage:
    from src.core.risk.config import get_risk_config

    config = get_risk_config()
    config.attendance.consecutive_tiers
    config.for_school({"attendance": {"window_days": 14}})
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

from src.core.config.settings import get_settings
from src.core.config.yaml_loader import deep_merge, load_yaml
from src.core.risk.exceptions import RiskValidationError
from src.core.risk.types import Severity

logger = logging.getLogger(__name__)

RULES_FILE = "rules.yaml"


@dataclass(frozen=True)
class Tier:
    """A threshold: values at or above `minimum` map to `severity`."""

    severity: Severity
    minimum: float


def match_tier(value: float, tiers: tuple[Tier, ...]) -> Severity | None:
    """Return the most severe tier whose minimum is reached."""
    reached = [tier.severity for tier in tiers if value >= tier.minimum]
    return Severity.highest(reached)


@dataclass(frozen=True)
class AttendanceRules:
    """Attendance thresholds.

    Attributes:
        window_days: Calendar days in the trailing window.
        expected_school_days: Minimum denominator for the absence rate.
        consecutive_tiers: Longest ABSENT run in the window.
        rate_tiers: Absence rate in the window (0.0-1.0).
        monthly_window_days: Calendar days in the long window.
        monthly_absence_tiers: Absence count in the long window.
    """

    window_days: int = 7
    expected_school_days: int = 5
    consecutive_tiers: tuple[Tier, ...] = (
        Tier(Severity.CRITICAL, 5),
        Tier(Severity.HIGH, 3),
        Tier(Severity.MEDIUM, 2),
    )
    rate_tiers: tuple[Tier, ...] = (
        Tier(Severity.CRITICAL, 0.8),
        Tier(Severity.HIGH, 0.6),
        Tier(Severity.MEDIUM, 0.4),
    )
    monthly_window_days: int = 30
    monthly_absence_tiers: tuple[Tier, ...] = (
        Tier(Severity.CRITICAL, 12),
        Tier(Severity.HIGH, 10),
        Tier(Severity.MEDIUM, 6),
    )


@dataclass(frozen=True)
class PerformanceRules:
    """Performance thresholds.

    Attributes:
        grade_severity: Letter grade to severity for failing grades.
        critical_below_percent: Percentages below this are CRITICAL.
        drop_percent: Term-over-term subject average drop, in points.
        drop_max_current_percent: A drop only counts while the current
            average is at or below this.
        drop_severity: Severity of the drop signal.
    """

    grade_severity: dict[str, Severity] = field(
        default_factory=lambda: {"F": Severity.HIGH, "E": Severity.MEDIUM}
    )
    critical_below_percent: float = 30.0
    drop_percent: float = 20.0
    drop_max_current_percent: float = 50.0
    drop_severity: Severity = Severity.MEDIUM


@dataclass(frozen=True)
class SocioeconomicRules:
    """Socioeconomic thresholds and factor weights.

    Attributes:
        distance_tiers: Kilometres to school.
        weights: Factor name to weight; the score is the weighted sum.
        poverty_scores: Ubudehe category to factor value (category 1 poorest).
        sibling_threshold: Sibling count that counts as a large family.
        low_education_levels: Parent education levels counted as low.
        score_tiers: Weighted score buckets.
    """

    distance_tiers: tuple[Tier, ...] = (
        Tier(Severity.CRITICAL, 7),
        Tier(Severity.HIGH, 5),
        Tier(Severity.MEDIUM, 3),
    )
    weights: dict[str, float] = field(
        default_factory=lambda: {
            "poverty": 0.30,
            "no_parents": 0.25,
            "family_instability": 0.20,
            "siblings": 0.10,
            "parent_education": 0.15,
        }
    )
    poverty_scores: dict[int, float] = field(
        default_factory=lambda: {1: 1.0, 2: 0.66, 3: 0.33, 4: 0.0}
    )
    sibling_threshold: int = 5
    low_education_levels: tuple[str, ...] = ("NONE", "PRIMARY")
    score_tiers: tuple[Tier, ...] = (
        Tier(Severity.HIGH, 0.6),
        Tier(Severity.MEDIUM, 0.4),
        Tier(Severity.LOW, 0.2),
    )


@dataclass(frozen=True)
class EscalationRules:
    """Risk level escalation table.

    When at least `min_flags` active flags reach `min_severity` (counted
    across distinct types when `distinct_types` is set), the baseline level
    is raised by `bump` tiers, capped at CRITICAL.
    """

    min_flags: int = 2
    min_severity: Severity = Severity.HIGH
    distinct_types: bool = True
    bump: int = 1


@dataclass(frozen=True)
class RiskConfig:
    """Complete risk rule configuration."""

    attendance: AttendanceRules = field(default_factory=AttendanceRules)
    performance: PerformanceRules = field(default_factory=PerformanceRules)
    socioeconomic: SocioeconomicRules = field(default_factory=SocioeconomicRules)
    escalation: EscalationRules = field(default_factory=EscalationRules)
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def for_school(self, overrides: dict[str, Any] | None) -> "RiskConfig":
        """Layer a school's rule overrides over this configuration."""
        if not overrides:
            return self
        return parse_risk_config(deep_merge(self.raw, overrides))


def _severity(value: Any) -> Severity:
    try:
        return Severity(str(value).upper())
    except ValueError as e:
        raise RiskValidationError(f"Unknown severity in risk rules: {value!r}") from e


def _parse_tiers(data: Any, default: tuple[Tier, ...]) -> tuple[Tier, ...]:
    """Parse a {SEVERITY: minimum} mapping into tiers."""
    if not data:
        return default
    return tuple(
        Tier(_severity(severity), float(minimum)) for severity, minimum in data.items()
    )


def _parse_attendance(data: dict) -> AttendanceRules:
    defaults = AttendanceRules()
    return AttendanceRules(
        window_days=int(data.get("window_days", defaults.window_days)),
        expected_school_days=int(
            data.get("expected_school_days", defaults.expected_school_days)
        ),
        consecutive_tiers=_parse_tiers(
            data.get("consecutive_absences"), defaults.consecutive_tiers
        ),
        rate_tiers=_parse_tiers(data.get("absence_rate"), defaults.rate_tiers),
        monthly_window_days=int(
            data.get("monthly_window_days", defaults.monthly_window_days)
        ),
        monthly_absence_tiers=_parse_tiers(
            data.get("monthly_absences"), defaults.monthly_absence_tiers
        ),
    )


def _parse_performance(data: dict) -> PerformanceRules:
    defaults = PerformanceRules()
    grade_data = data.get("grade_severity")
    grade_severity = (
        {str(grade).upper(): _severity(sev) for grade, sev in grade_data.items()}
        if grade_data
        else defaults.grade_severity
    )
    return PerformanceRules(
        grade_severity=grade_severity,
        critical_below_percent=float(
            data.get("critical_below_percent", defaults.critical_below_percent)
        ),
        drop_percent=float(data.get("drop_percent", defaults.drop_percent)),
        drop_max_current_percent=float(
            data.get("drop_max_current_percent", defaults.drop_max_current_percent)
        ),
        drop_severity=_severity(data.get("drop_severity", defaults.drop_severity.value)),
    )


def _parse_socioeconomic(data: dict) -> SocioeconomicRules:
    defaults = SocioeconomicRules()
    weights = data.get("weights")
    poverty = data.get("poverty_scores")
    return SocioeconomicRules(
        distance_tiers=_parse_tiers(data.get("distance_km"), defaults.distance_tiers),
        weights=(
            {str(k): float(v) for k, v in weights.items()} if weights else defaults.weights
        ),
        poverty_scores=(
            {int(k): float(v) for k, v in poverty.items()}
            if poverty
            else defaults.poverty_scores
        ),
        sibling_threshold=int(data.get("sibling_threshold", defaults.sibling_threshold)),
        low_education_levels=tuple(
            str(level).upper()
            for level in data.get("low_education_levels", defaults.low_education_levels)
        ),
        score_tiers=_parse_tiers(data.get("score"), defaults.score_tiers),
    )


def _parse_escalation(data: dict) -> EscalationRules:
    defaults = EscalationRules()
    return EscalationRules(
        min_flags=int(data.get("min_flags", defaults.min_flags)),
        min_severity=_severity(data.get("min_severity", defaults.min_severity.value)),
        distinct_types=bool(data.get("distinct_types", defaults.distinct_types)),
        bump=int(data.get("bump", defaults.bump)),
    )


def parse_risk_config(data: dict[str, Any]) -> RiskConfig:
    """Build a RiskConfig from a raw rules mapping.

    Raises:
        RiskValidationError: If a severity name is unknown.
    """
    return RiskConfig(
        attendance=_parse_attendance(data.get("attendance") or {}),
        performance=_parse_performance(data.get("performance") or {}),
        socioeconomic=_parse_socioeconomic(data.get("socioeconomic") or {}),
        escalation=_parse_escalation(data.get("escalation") or {}),
        raw=data,
    )


@lru_cache(maxsize=1)
def load_risk_config(config_dir: str | None = None) -> RiskConfig:
    """Load risk rules from YAML.

    Uses LRU cache to avoid reloading on every access.

    Args:
        config_dir: Optional config directory override (as string for caching).

    Returns:
        RiskConfig instance.
    """
    dir_path = Path(config_dir) if config_dir else get_settings().risk.config_dir
    rules_path = dir_path / RULES_FILE

    logger.debug("Loading risk rules from: %s", rules_path)

    if not rules_path.exists():
        logger.warning("Risk rules file %s not found, using defaults", rules_path)
        return RiskConfig()

    data = load_yaml(rules_path).get("risk", {})
    config = parse_risk_config(data)

    logger.info(
        "Loaded risk rules: window=%dd, escalation min_flags=%d at %s",
        config.attendance.window_days,
        config.escalation.min_flags,
        config.escalation.min_severity.value,
    )
    return config


def get_risk_config() -> RiskConfig:
    """Get the cached risk configuration."""
    return load_risk_config()


def reload_risk_config() -> RiskConfig:
    """Clear the cache and load fresh risk rules."""
    load_risk_config.cache_clear()
    return load_risk_config()
