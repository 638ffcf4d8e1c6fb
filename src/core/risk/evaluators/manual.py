# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Manual signals submitted by staff.

A manual signal bypasses the rule families but still goes through the
aggregator, so it obeys the same one-active-flag-per-type policy.
"""

from src.core.risk.exceptions import RiskValidationError
from src.core.risk.types import CandidateSignal, RiskType, Severity

MAX_TITLE_LENGTH = 200


def build_manual_signal(
    risk_type: str | RiskType,
    severity: str | Severity,
    title: str,
    description: str,
) -> CandidateSignal:
    """Validate staff input and turn it into a candidate signal.

    Raises:
        RiskValidationError: On unknown type/severity or an empty title.
    """
    try:
        parsed_type = RiskType(str(getattr(risk_type, "value", risk_type)).upper())
    except ValueError as e:
        raise RiskValidationError(
            f"Invalid risk type: {risk_type!r}",
            {"allowed": [t.value for t in RiskType]},
        ) from e

    try:
        parsed_severity = Severity(str(getattr(severity, "value", severity)).upper())
    except ValueError as e:
        raise RiskValidationError(
            f"Invalid severity: {severity!r}",
            {"allowed": [s.value for s in Severity]},
        ) from e

    title = (title or "").strip()
    if not title:
        raise RiskValidationError("Risk flag title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise RiskValidationError(f"Risk flag title exceeds {MAX_TITLE_LENGTH} characters")

    return CandidateSignal(
        type=parsed_type,
        severity=parsed_severity,
        title=title,
        description=(description or "").strip() or title,
        evidence={"source": "manual"},
    )
