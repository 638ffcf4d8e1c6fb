# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk detection and alerting background tasks.

Available actors:
- run_school_sweep: Execute a queued whole-school DetectionRun
- detect_students: Detection for students touched by a bulk write
- send_flag_alerts: Guardian and staff alerts for a flag event
- send_guardian_alert: A single templated guardian message
- process_pending_messages: Retry sweep over undelivered messages
- schedule_nightly_sweeps: Queue a sweep for every active school

Alert actors swallow and log their errors: a failed notification must
never be retried in a way that runs detection again.
"""

import logging
from typing import Any

import dramatiq

from src.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from src.infrastructure.background.tasks.base import run_async
from src.utils.logging import bind_context, clear_context

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


@dramatiq.actor(
    queue_name=Queues.RISK,
    max_retries=0,
    time_limit=3600000,  # 1 hour
    priority=Priority.SWEEP,
)
def run_school_sweep(run_id: str) -> dict[str, Any]:
    """Execute a DetectionRun created by request_school_sweep().

    Args:
        run_id: DetectionRun ID.

    Returns:
        Run summary: studentsScanned, risksDetected, flagsCreated, errors.
    """

    async def _sweep() -> dict[str, Any]:
        from src.core.risk.sweep import SchoolSweep
        from src.infrastructure.database.connection import get_worker_sessionmaker

        bind_context(run_id=run_id)
        try:
            return await SchoolSweep(get_worker_sessionmaker()).execute(run_id)
        except Exception as e:
            logger.error("School sweep %s failed: %s", run_id, str(e), exc_info=True)
            return {"run_id": run_id, "status": "failed", "error": str(e)}
        finally:
            clear_context()

    return run_async(_sweep())


@dramatiq.actor(
    queue_name=Queues.RISK,
    max_retries=1,
    time_limit=600000,  # 10 minutes
    priority=Priority.DETECTION,
)
def detect_students(
    student_ids: list[str],
    school_id: str | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Run detection for each student, committing per student.

    Args:
        student_ids: Students whose records changed.
        school_id: School the students must belong to.
        actor_id: User whose write triggered detection.

    Returns:
        Counts and per-student errors.
    """

    async def _detect() -> dict[str, Any]:
        from src.core.risk.alerts import AlertDispatcher
        from src.core.risk.service import RiskDetectionService
        from src.infrastructure.database.connection import get_worker_sessionmaker

        sessionmaker = get_worker_sessionmaker()
        dispatcher = AlertDispatcher()
        summary: dict[str, Any] = {
            "studentsScanned": 0,
            "risksDetected": 0,
            "flagsCreated": 0,
            "errors": [],
        }

        for student_id in dict.fromkeys(student_ids):
            try:
                async with sessionmaker() as session:
                    result = await RiskDetectionService(session).detect_for_student(
                        student_id, school_id, actor_id
                    )
                    await session.commit()
            except Exception as e:
                logger.warning(
                    "Detection failed for student %s: %s", student_id, e, exc_info=True
                )
                summary["errors"].append({"studentId": student_id, "error": str(e)})
                continue

            dispatcher.dispatch(result.events)
            summary["studentsScanned"] += 1
            summary["risksDetected"] += result.risks_detected
            summary["flagsCreated"] += result.flags_created

        logger.info(
            "Detection for %d students: created=%d, errors=%d",
            summary["studentsScanned"],
            summary["flagsCreated"],
            len(summary["errors"]),
        )
        return summary

    return run_async(_detect())


@dramatiq.actor(
    queue_name=Queues.NOTIFICATIONS,
    max_retries=0,
    time_limit=120000,  # 2 minutes
    priority=Priority.ALERT,
)
def send_flag_alerts(event: dict[str, Any]) -> dict[str, Any]:
    """Notify the guardian and school administrators about a flag event.

    Args:
        event: FlagEvent.to_message() payload.
    """

    async def _notify() -> dict[str, Any]:
        from src.core.risk.types import FlagEvent
        from src.infrastructure.database.connection import get_worker_sessionmaker
        from src.infrastructure.notifications.service import MessageService

        flag_event = FlagEvent.from_message(event)
        try:
            async with get_worker_sessionmaker()() as session:
                result = await MessageService(session).notify_flag_event(flag_event)
                await session.commit()
        except Exception as e:
            logger.error(
                "Flag alerts failed: flag=%s, error=%s",
                flag_event.flag_id,
                str(e),
                exc_info=True,
            )
            return {"flagId": flag_event.flag_id, "status": "failed", "error": str(e)}

        return {"flagId": flag_event.flag_id, "status": "processed", **result}

    return run_async(_notify())


@dramatiq.actor(
    queue_name=Queues.NOTIFICATIONS,
    max_retries=0,
    time_limit=120000,  # 2 minutes
    priority=Priority.ALERT,
)
def send_guardian_alert(
    student_id: str,
    channel: str,
    template: str,
    variables: dict[str, Any] | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Send one templated guardian message (absence alerts)."""

    async def _send() -> dict[str, Any]:
        from src.infrastructure.database.connection import get_worker_sessionmaker
        from src.infrastructure.notifications.service import MessageService

        try:
            async with get_worker_sessionmaker()() as session:
                message = await MessageService(session).send_alert(
                    student_id, channel, template, variables, actor_id
                )
                await session.commit()
        except Exception as e:
            logger.error(
                "Guardian alert failed: student=%s, template=%s, error=%s",
                student_id,
                template,
                str(e),
                exc_info=True,
            )
            return {"studentId": student_id, "status": "failed", "error": str(e)}

        return {"studentId": student_id, "messageId": message.id, "status": message.status}

    return run_async(_send())


@dramatiq.actor(
    queue_name=Queues.NOTIFICATIONS,
    max_retries=0,
    time_limit=300000,  # 5 minutes
    priority=Priority.MAINTENANCE,
)
def process_pending_messages(limit: int | None = None) -> dict[str, Any]:
    """Re-attempt undelivered guardian messages."""

    async def _process() -> dict[str, Any]:
        from src.infrastructure.database.connection import get_worker_sessionmaker
        from src.infrastructure.notifications.service import MessageService

        async with get_worker_sessionmaker()() as session:
            summary = await MessageService(session).process_pending_messages(limit)
            await session.commit()
        return summary.to_dict()

    return run_async(_process())


@dramatiq.actor(
    queue_name=Queues.RISK,
    max_retries=0,
    time_limit=300000,  # 5 minutes
    priority=Priority.MAINTENANCE,
)
def schedule_nightly_sweeps() -> dict[str, Any]:
    """Create and queue a scheduled DetectionRun for every active school."""

    async def _schedule() -> dict[str, Any]:
        from sqlalchemy import select

        from src.core.risk.sweep import RunTrigger, request_school_sweep
        from src.infrastructure.database.connection import get_worker_sessionmaker
        from src.infrastructure.database.models.school import School

        sessionmaker = get_worker_sessionmaker()
        async with sessionmaker() as session:
            result = await session.execute(select(School.id).where(School.is_active.is_(True)))
            school_ids = list(result.scalars().all())

        run_ids = []
        for school_id in school_ids:
            try:
                async with sessionmaker() as session:
                    run = await request_school_sweep(
                        session, school_id, trigger=RunTrigger.SCHEDULED
                    )
                    run_ids.append(run.id)
            except Exception as e:
                logger.error(
                    "Failed to schedule sweep for school %s: %s", school_id, e
                )

        logger.info("Scheduled %d nightly sweeps", len(run_ids))
        return {"schoolCount": len(school_ids), "runIds": run_ids}

    return run_async(_schedule())


def get_risk_actors() -> list:
    """Get all risk actors for worker registration."""
    return [
        run_school_sweep,
        detect_students,
        send_flag_alerts,
        send_guardian_alert,
        process_pending_messages,
        schedule_nightly_sweeps,
    ]
