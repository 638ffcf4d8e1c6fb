# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Whole-school detection sweeps.

A sweep is tracked by a DetectionRun row:

    QUEUED -> RUNNING -> COMPLETED
                      -> FAILED     (the sweep itself could not run)

request_school_sweep() creates the run and queues the run_school_sweep
actor; SchoolSweep.execute() is what the actor runs. Every student is
evaluated in its own session and committed on its own, so one failing
student lands in the run's error list and never rolls back the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config.settings import get_settings
from src.core.risk.alerts import AlertDispatcher
from src.core.risk.config import RiskConfig
from src.core.risk.exceptions import RunNotFoundError, SchoolNotFoundError
from src.core.risk.service import RiskDetectionService
from src.infrastructure.database.models.risk import DetectionRun
from src.infrastructure.database.models.school import School, Student
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class RunStatus:
    """DetectionRun status values."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RunTrigger:
    """What started a DetectionRun."""

    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"


@dataclass
class _Progress:
    scanned: int = 0
    risks_detected: int = 0
    flags_created: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


class SchoolSweep:
    """Runs the detection pipeline for every active student of a school.

    Attributes:
        concurrency: Students evaluated at the same time.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        config: RiskConfig | None = None,
        concurrency: int | None = None,
        dispatcher: AlertDispatcher | None = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._config = config
        self.concurrency = concurrency or get_settings().risk.sweep_concurrency
        self._dispatcher = dispatcher or AlertDispatcher()

    async def execute(self, run_id: str) -> dict[str, Any]:
        """Execute a queued run and return its summary.

        A run that is no longer QUEUED (redelivered task) is left as is.

        Raises:
            RunNotFoundError: Unknown run.
        """
        async with self._sessionmaker() as session:
            run = await session.get(DetectionRun, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status != RunStatus.QUEUED:
                logger.warning("Detection run %s is %s, skipping", run_id, run.status)
                return run.summary()

            school_id = run.school_id
            actor_id = run.requested_by
            run.status = RunStatus.RUNNING
            run.started_at = utc_now()
            await session.commit()

        try:
            student_ids = await self._active_students(school_id)
            await self._update_run(run_id, students_total=len(student_ids))
            progress = await self._scan(student_ids, school_id, actor_id)
        except Exception as e:
            logger.error("Detection run %s failed: %s", run_id, e, exc_info=True)
            await self._update_run(
                run_id,
                status=RunStatus.FAILED,
                errors=[{"studentId": None, "error": str(e)}],
                completed_at=utc_now(),
            )
            raise

        await self._update_run(
            run_id,
            status=RunStatus.COMPLETED,
            students_scanned=progress.scanned,
            risks_detected=progress.risks_detected,
            flags_created=progress.flags_created,
            errors=progress.errors,
            completed_at=utc_now(),
        )

        logger.info(
            "Detection run %s completed: scanned=%d, risks=%d, created=%d, errors=%d",
            run_id,
            progress.scanned,
            progress.risks_detected,
            progress.flags_created,
            len(progress.errors),
        )
        return {
            "studentsScanned": progress.scanned,
            "risksDetected": progress.risks_detected,
            "flagsCreated": progress.flags_created,
            "errors": progress.errors,
        }

    async def _scan(
        self, student_ids: list[str], school_id: str, actor_id: str | None
    ) -> _Progress:
        progress = _Progress()
        lock = asyncio.Lock()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(student_id: str) -> None:
            async with semaphore:
                try:
                    async with self._sessionmaker() as session:
                        service = RiskDetectionService(session, self._config)
                        result = await service.detect_for_student(
                            student_id, school_id, actor_id
                        )
                        await session.commit()
                except Exception as e:
                    logger.warning(
                        "Detection failed for student %s: %s", student_id, e, exc_info=True
                    )
                    async with lock:
                        progress.errors.append({"studentId": student_id, "error": str(e)})
                    return

            self._dispatcher.dispatch(result.events)
            async with lock:
                progress.scanned += 1
                progress.risks_detected += result.risks_detected
                progress.flags_created += result.flags_created

        await asyncio.gather(*(_one(student_id) for student_id in student_ids))
        return progress

    async def _active_students(self, school_id: str) -> list[str]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Student.id)
                .where(Student.school_id == school_id, Student.is_active.is_(True))
                .order_by(Student.id)
            )
            return list(result.scalars().all())

    async def _update_run(self, run_id: str, **values: Any) -> None:
        async with self._sessionmaker() as session:
            run = await session.get(DetectionRun, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            for key, value in values.items():
                setattr(run, key, value)
            await session.commit()


async def request_school_sweep(
    db: AsyncSession,
    school_id: str,
    actor_id: str | None = None,
    trigger: str = RunTrigger.MANUAL,
) -> DetectionRun:
    """Create a QUEUED run, commit it and queue the sweep actor.

    Returns the run immediately; poll it for progress and the summary.

    Raises:
        SchoolNotFoundError: Unknown school.
    """
    from src.infrastructure.background.tasks.risk import run_school_sweep

    if await db.get(School, school_id) is None:
        raise SchoolNotFoundError(school_id)

    run = DetectionRun(
        school_id=school_id,
        requested_by=actor_id,
        trigger=trigger,
        status=RunStatus.QUEUED,
        errors=[],
    )
    db.add(run)
    await db.commit()

    message = run_school_sweep.send(run.id)
    run.task_message_id = message.message_id
    await db.commit()

    logger.info(
        "Detection run queued",
        extra={"run_id": run.id, "school_id": school_id, "trigger": trigger},
    )
    return run


async def get_run(db: AsyncSession, run_id: str) -> DetectionRun:
    run = await db.get(DetectionRun, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run
