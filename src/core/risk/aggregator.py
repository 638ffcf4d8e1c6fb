# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Flag aggregation: candidate signals to persisted, deduplicated flags.

Policy per dedup key (student_id, type):
- no active flag: insert one
- active flag with severity >= candidate: no-op
- active flag with lower severity: escalate that flag in place

Both writes are atomic at the storage layer. The insert is
INSERT ... ON CONFLICT DO NOTHING against the partial unique index on
active flags; losing that race turns into the escalate path. The
escalation is a conditional UPDATE that only matches while the flag is
still active and still below the candidate's severity; losing that race
re-reads the flag and decides again.

Flags of different types for the same student do not conflict here.
The risk level recompute that follows each aggregation locks the
student row, which orders concurrent recomputes for one student.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.risk.exceptions import FlagConflictError
from src.core.risk.types import (
    CandidateSignal,
    FlagEvent,
    FlagEventKind,
    RiskType,
    Severity,
)
from src.infrastructure.database.models.base import new_uuid
from src.infrastructure.database.models.risk import RiskFlag
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


@dataclass
class AggregationOutcome:
    """Stored flag for the candidate plus the event, if anything changed."""

    flag: RiskFlag
    event: FlagEvent | None = None

    @property
    def created(self) -> bool:
        return self.event is not None and self.event.kind == FlagEventKind.CREATED

    @property
    def escalated(self) -> bool:
        return self.event is not None and self.event.kind == FlagEventKind.ESCALATED


class FlagAggregator:
    """Applies candidate signals to the flag store of one session."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def apply(
        self,
        student_id: str,
        school_id: str,
        signal: CandidateSignal,
        *,
        auto_generated: bool = True,
        actor_id: str | None = None,
    ) -> AggregationOutcome:
        """Reconcile one candidate signal with the stored flags.

        Raises:
            FlagConflictError: If the flag keeps changing underneath us.
        """
        await self._db.flush()

        for _ in range(MAX_ATTEMPTS):
            existing = await self._get_active(student_id, signal.type.value)

            if existing is None:
                flag_id = await self._insert(
                    student_id, school_id, signal, auto_generated, actor_id
                )
                if flag_id is None:
                    # Another writer created the flag first.
                    continue
                flag = await self._reload(flag_id)
                logger.info(
                    "Created %s %s flag %s for student %s",
                    signal.severity.value,
                    signal.type.value,
                    flag_id,
                    student_id,
                )
                return AggregationOutcome(
                    flag, self._event(flag, FlagEventKind.CREATED, None, actor_id)
                )

            current = Severity(existing.severity)
            if current.rank >= signal.severity.rank:
                return AggregationOutcome(existing)

            if await self._escalate(existing.id, signal):
                flag = await self._reload(existing.id)
                logger.info(
                    "Escalated %s flag %s for student %s: %s -> %s",
                    signal.type.value,
                    flag.id,
                    student_id,
                    current.value,
                    signal.severity.value,
                )
                return AggregationOutcome(
                    flag, self._event(flag, FlagEventKind.ESCALATED, current, actor_id)
                )

        raise FlagConflictError(
            "Could not reconcile risk flag after concurrent updates",
            {"student_id": student_id, "type": signal.type.value},
        )

    async def _get_active(self, student_id: str, risk_type: str) -> RiskFlag | None:
        result = await self._db.execute(
            select(RiskFlag)
            .where(
                RiskFlag.student_id == student_id,
                RiskFlag.type == risk_type,
                RiskFlag.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _reload(self, flag_id: str) -> RiskFlag:
        result = await self._db.execute(
            select(RiskFlag)
            .where(RiskFlag.id == flag_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _insert(
        self,
        student_id: str,
        school_id: str,
        signal: CandidateSignal,
        auto_generated: bool,
        actor_id: str | None,
    ) -> str | None:
        """Insert a flag unless an active one exists; return its id or None."""
        dialect = self._db.get_bind().dialect.name
        try:
            insert = _INSERTS[dialect]
        except KeyError:
            raise FlagConflictError(f"Unsupported database dialect: {dialect}") from None

        now = utc_now()
        flag_id = new_uuid()
        stmt = (
            insert(RiskFlag.__table__)
            .values(
                id=flag_id,
                student_id=student_id,
                school_id=school_id,
                type=signal.type.value,
                severity=signal.severity.value,
                title=signal.title,
                description=signal.description,
                evidence=signal.evidence,
                is_active=True,
                is_resolved=False,
                auto_generated=auto_generated,
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing()
        )
        result = await self._db.execute(stmt)
        return flag_id if result.rowcount == 1 else None

    async def _escalate(self, flag_id: str, signal: CandidateSignal) -> bool:
        lower = [s.value for s in signal.severity.lower_tiers()]
        result = await self._db.execute(
            update(RiskFlag)
            .where(
                RiskFlag.id == flag_id,
                RiskFlag.is_active.is_(True),
                RiskFlag.severity.in_(lower),
            )
            .values(
                severity=signal.severity.value,
                title=signal.title,
                description=signal.description,
                evidence=signal.evidence,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _event(
        flag: RiskFlag,
        kind: FlagEventKind,
        previous: Severity | None,
        actor_id: str | None,
    ) -> FlagEvent:
        return FlagEvent(
            flag_id=flag.id,
            student_id=flag.student_id,
            school_id=flag.school_id,
            type=RiskType(flag.type),
            severity=Severity(flag.severity),
            title=flag.title,
            description=flag.description,
            kind=kind,
            previous_severity=previous,
            actor_id=actor_id,
        )
