# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk level calculation.

Student.risk_level is a projection of the student's active flags:

- baseline: the highest active severity (NONE without active flags)
- escalation: when enough flags of distinct types reach the configured
  severity, the baseline rises by the configured number of tiers,
  capped at CRITICAL

The projection is recomputed in the same session as the flag mutation
that triggered it, after a flush, so it always observes that mutation.
The student row is locked (SELECT ... FOR UPDATE) before the active
flags are read, so two transactions flagging the same student recompute
one after the other and the second sees the first one's committed flag.
"""

import logging
from collections.abc import Iterable

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.risk.config import EscalationRules
from src.core.risk.exceptions import StudentNotFoundError
from src.core.risk.types import RiskLevel, RiskType, Severity
from src.infrastructure.database.models.risk import RiskFlag
from src.infrastructure.database.models.school import Student
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


def compute_risk_level(
    active_flags: Iterable[tuple[RiskType | str, Severity | str]],
    rules: EscalationRules | None = None,
) -> RiskLevel:
    """Derive the risk level from (type, severity) pairs of active flags.

    Example:
        >>> compute_risk_level([("ATTENDANCE", "HIGH"), ("PERFORMANCE", "HIGH")])
        <RiskLevel.CRITICAL: 'CRITICAL'>
    """
    rules = rules or EscalationRules()
    flags = [(RiskType(t), Severity(s)) for t, s in active_flags]

    baseline = Severity.highest([severity for _, severity in flags])
    if baseline is None:
        return RiskLevel.NONE

    qualifying = [
        (risk_type, severity)
        for risk_type, severity in flags
        if severity.rank >= rules.min_severity.rank
    ]
    count = (
        len({risk_type for risk_type, _ in qualifying})
        if rules.distinct_types
        else len(qualifying)
    )

    if count >= rules.min_flags:
        return RiskLevel.from_severity(baseline.bumped(rules.bump))
    return RiskLevel.from_severity(baseline)


def student_lock(student_id: str) -> Select:
    """Row lock that serializes risk level recomputes for one student."""
    return select(Student.id).where(Student.id == student_id).with_for_update()


class RiskLevelCalculator:
    """Recomputes and stores Student.risk_level inside the caller's session."""

    def __init__(self, db: AsyncSession, rules: EscalationRules | None = None) -> None:
        self._db = db
        self._rules = rules or EscalationRules()

    async def active_flag_pairs(self, student_id: str) -> list[tuple[str, str]]:
        result = await self._db.execute(
            select(RiskFlag.type, RiskFlag.severity).where(
                RiskFlag.student_id == student_id,
                RiskFlag.is_active.is_(True),
            )
        )
        return [(row.type, row.severity) for row in result.all()]

    async def apply(self, student_id: str) -> RiskLevel:
        """Recompute and persist the risk level for one student.

        Raises:
            StudentNotFoundError: If the student does not exist.
        """
        await self._db.flush()

        if await self._db.scalar(student_lock(student_id)) is None:
            raise StudentNotFoundError(student_id)

        level = compute_risk_level(await self.active_flag_pairs(student_id), self._rules)

        result = await self._db.execute(
            update(Student)
            .where(Student.id == student_id)
            .values(risk_level=level.value, risk_level_updated_at=utc_now())
        )
        if result.rowcount == 0:
            raise StudentNotFoundError(student_id)

        logger.debug("Risk level for student %s is now %s", student_id, level.value)
        return level
