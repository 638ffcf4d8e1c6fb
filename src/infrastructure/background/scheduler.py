# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for periodic Dramatiq tasks.

Uses APScheduler for cron and interval triggers; every job only sends a
Dramatiq message, the work itself runs on the workers.

Run exactly one scheduler per deployment: the pending-message sweep does
not claim messages, so two schedulers would attempt the same message twice.

Example:
    from src.infrastructure.background.scheduler import start_scheduler

    scheduler = await start_scheduler()  # registers the default jobs
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import get_settings
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """Configuration for a scheduled Dramatiq task.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        actor_name: Name of the Dramatiq actor to call.
        args: Positional arguments for the actor.
        kwargs: Keyword arguments for the actor.
        last_run: Last run timestamp.
        run_count: Total number of runs.
        error_count: Number of failed runs.
        trigger: APScheduler trigger the task runs on.
    """

    name: str
    actor_name: str
    trigger: CronTrigger | IntervalTrigger
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


class DramatiqScheduler:
    """Sends Dramatiq messages on cron and interval schedules.

    Attributes:
        _scheduler: APScheduler instance, created by start().
        _tasks: Scheduled tasks by ID.
    """

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _get_actor(self, actor_name: str) -> Callable[..., Any] | None:
        from src.infrastructure.background import tasks

        return getattr(tasks, actor_name, None)

    def add_cron_task(
        self,
        name: str,
        actor_name: str,
        cron_expression: str,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Add a cron-scheduled task.

        Args:
            name: Task name.
            actor_name: Dramatiq actor to call.
            cron_expression: Cron expression (minute hour day month weekday), UTC.

        Raises:
            ValueError: If the cron expression is invalid.
        """
        parts = cron_expression.split()
        if len(parts) != 5:
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        trigger = CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=parts[4],
            timezone="UTC",
        )
        task = self._register(name, actor_name, args, kwargs, trigger)
        logger.info("Added cron task: %s (%s)", name, cron_expression)
        return task

    def add_interval_task(
        self,
        name: str,
        actor_name: str,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Add an interval-scheduled task."""
        trigger = IntervalTrigger(seconds=seconds, minutes=minutes, hours=hours)
        task = self._register(name, actor_name, args, kwargs, trigger)
        logger.info(
            "Added interval task: %s (every %dh %dm %ds)", name, hours, minutes, seconds
        )
        return task

    def _register(
        self,
        name: str,
        actor_name: str,
        args: tuple,
        kwargs: dict[str, Any] | None,
        trigger: CronTrigger | IntervalTrigger,
    ) -> ScheduledTask:
        task = ScheduledTask(
            name=name,
            actor_name=actor_name,
            trigger=trigger,
            args=args,
            kwargs=kwargs or {},
        )
        self._tasks[task.id] = task

        if self._scheduler is not None:
            self._schedule(task)
        return task

    def _schedule(self, task: ScheduledTask) -> None:
        self._scheduler.add_job(
            self._execute_task,
            trigger=task.trigger,
            args=[task.id],
            id=task.id,
            name=task.name,
        )

    async def _execute_task(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return

        try:
            actor = self._get_actor(task.actor_name)
            if actor is None:
                raise ValueError(f"Actor not found: {task.actor_name}")

            actor.send(*task.args, **task.kwargs)

            task.last_run = utc_now()
            task.run_count += 1
            logger.debug("Scheduled task %s sent to queue", task.name)

        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, str(e))

    def remove_task(self, task_id: str) -> bool:
        if task_id not in self._tasks:
            return False

        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("Job %s was not scheduled", task_id)

        del self._tasks[task_id]
        logger.info("Removed scheduled task: %s", task_id)
        return True

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        for task in self._tasks.values():
            self._schedule(task)
        self._scheduler.start()
        logger.info("Dramatiq scheduler started with %d tasks", len(self._tasks))

    async def stop(self) -> None:
        if self._scheduler is None:
            return

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Dramatiq scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "task_count": len(self._tasks),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


# Singleton instance
_scheduler: DramatiqScheduler | None = None


def get_scheduler() -> DramatiqScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DramatiqScheduler()
    return _scheduler


async def start_scheduler() -> DramatiqScheduler:
    """Start the scheduler and register the default jobs.

    - nightly whole-school sweeps at RISK_NIGHTLY_SWEEP_HOUR (UTC)
    - pending-message retry sweep every RISK_PENDING_SWEEP_MINUTES
    """
    settings = get_settings().risk
    scheduler = get_scheduler()
    await scheduler.start()

    scheduler.add_cron_task(
        name="Nightly Risk Sweeps",
        actor_name="schedule_nightly_sweeps",
        cron_expression=f"0 {settings.nightly_sweep_hour} * * *",
    )
    scheduler.add_interval_task(
        name="Pending Message Retries",
        actor_name="process_pending_messages",
        minutes=settings.pending_sweep_minutes,
    )

    logger.info("Registered %d default scheduled tasks", len(scheduler.list_tasks()))
    return scheduler


async def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
