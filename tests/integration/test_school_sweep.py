# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for whole-school detection sweeps.

Sweeps open their own sessions; the in-memory database shares a single
connection, so sweeps run with concurrency=1 here.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.risk.alerts import AlertDispatcher
from src.core.risk.config import RiskConfig
from src.core.risk.exceptions import RunNotFoundError, SchoolNotFoundError
from src.core.risk.service import RiskDetectionService
from src.core.risk.sweep import RunStatus, SchoolSweep, get_run, request_school_sweep
from src.infrastructure.database.models.risk import DetectionRun
from src.infrastructure.database.models.school import School


async def queued_run(db: AsyncSession, school: School, **overrides) -> DetectionRun:
    values = {
        "school_id": school.id,
        "requested_by": "head-1",
        "status": RunStatus.QUEUED,
        "errors": [],
    }
    values.update(overrides)
    run = DetectionRun(**values)
    db.add(run)
    await db.commit()
    return run


async def reload_run(sessionmaker: async_sessionmaker[AsyncSession], run_id: str) -> DetectionRun:
    async with sessionmaker() as session:
        return await get_run(session, run_id)


@pytest.fixture
def sweep(sessionmaker, risk_config: RiskConfig, dispatcher: AlertDispatcher) -> SchoolSweep:
    return SchoolSweep(sessionmaker, risk_config, concurrency=1, dispatcher=dispatcher)


@pytest.mark.integration
class TestSchoolSweep:
    """Tests for SchoolSweep.execute()."""

    @pytest.mark.asyncio
    async def test_completed_run_records_summary(
        self, db_session: AsyncSession, sessionmaker, sweep: SchoolSweep, factory, enqueue
    ) -> None:
        school = await factory.school()
        far = await factory.student(school, first_name="Far", distance_to_school_km=8)
        await factory.student(school, first_name="Near", distance_to_school_km=1)
        await factory.student(school, first_name="Left", distance_to_school_km=9, is_active=False)
        run = await queued_run(db_session, school)

        summary = await sweep.execute(run.id)

        assert summary == {
            "studentsScanned": 2,
            "risksDetected": 1,
            "flagsCreated": 1,
            "errors": [],
        }
        stored = await reload_run(sessionmaker, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.students_total == 2
        assert stored.students_scanned == 2
        assert stored.started_at is not None
        assert stored.completed_at is not None

        events = enqueue.of_kind("flag_event")
        assert len(events) == 1
        assert events[0]["student_id"] == far.id

    @pytest.mark.asyncio
    async def test_failing_student_does_not_stop_the_sweep(
        self,
        db_session: AsyncSession,
        sessionmaker,
        sweep: SchoolSweep,
        factory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        school = await factory.school()
        broken = await factory.student(school, first_name="Broken")
        await factory.student(school, first_name="Far", distance_to_school_km=8)
        run = await queued_run(db_session, school)

        original = RiskDetectionService.detect_for_student

        async def flaky(self, student_id, *args, **kwargs):
            if student_id == broken.id:
                raise RuntimeError("corrupt record")
            return await original(self, student_id, *args, **kwargs)

        monkeypatch.setattr(RiskDetectionService, "detect_for_student", flaky)

        summary = await sweep.execute(run.id)

        assert summary["studentsScanned"] == 1
        assert summary["flagsCreated"] == 1
        assert summary["errors"] == [{"studentId": broken.id, "error": "corrupt record"}]
        stored = await reload_run(sessionmaker, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.errors == summary["errors"]

    @pytest.mark.asyncio
    async def test_sweep_failure_marks_run_failed(
        self,
        db_session: AsyncSession,
        sessionmaker,
        sweep: SchoolSweep,
        school: School,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        run = await queued_run(db_session, school)

        async def unavailable(school_id):
            raise ConnectionError("database went away")

        monkeypatch.setattr(sweep, "_active_students", unavailable)

        with pytest.raises(ConnectionError):
            await sweep.execute(run.id)

        stored = await reload_run(sessionmaker, run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.errors == [{"studentId": None, "error": "database went away"}]

    @pytest.mark.asyncio
    async def test_redelivered_run_is_skipped(
        self, db_session: AsyncSession, sessionmaker, sweep: SchoolSweep, school: School
    ) -> None:
        """Test that a run already past QUEUED is returned untouched."""
        run = await queued_run(
            db_session, school, status=RunStatus.COMPLETED, students_scanned=40, flags_created=3
        )

        summary = await sweep.execute(run.id)

        assert summary["studentsScanned"] == 40
        assert summary["flagsCreated"] == 3
        assert (await reload_run(sessionmaker, run.id)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_run(self, sweep: SchoolSweep) -> None:
        with pytest.raises(RunNotFoundError):
            await sweep.execute("missing")


@pytest.mark.integration
class TestRequestSchoolSweep:
    """Tests for queueing a sweep."""

    @pytest.mark.asyncio
    async def test_run_is_queued_with_task_id(
        self, db_session: AsyncSession, school: School
    ) -> None:
        run = await request_school_sweep(db_session, school.id, actor_id="head-1")

        assert run.status == RunStatus.QUEUED
        assert run.trigger == "MANUAL"
        assert run.requested_by == "head-1"
        assert run.task_message_id

    @pytest.mark.asyncio
    async def test_unknown_school(self, db_session: AsyncSession) -> None:
        with pytest.raises(SchoolNotFoundError):
            await request_school_sweep(db_session, "missing")
