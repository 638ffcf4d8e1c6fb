# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests (pure evaluators, config, templates, channels)
- Integration tests (services against an in-memory SQLite database)

The Dramatiq StubBroker is selected before any actor module is imported.
"""

import os

os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SMS_ENABLED", "false")
os.environ.setdefault("SMTP_ENABLED", "false")

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.core.risk.alerts import AlertDispatcher
from src.core.risk.config import RiskConfig
from src.core.risk.types import Severity
from src.infrastructure.database import models  # noqa: F401  registers all tables
from src.infrastructure.database.models.base import Base
from src.infrastructure.database.models.school import School, StaffUser, Student
from src.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (in-memory SQLite)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow running")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with sessionmaker() as session:
        yield session


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def risk_config() -> RiskConfig:
    """Built-in default rules, independent of config/risk/rules.yaml."""
    return RiskConfig()


class RecordingEnqueue:
    """Stands in for the task queue; records (kind, payload) pairs."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    def __call__(self, kind: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.calls.append((kind, payload))

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [payload for k, payload in self.calls if k == kind]


@pytest.fixture
def enqueue() -> RecordingEnqueue:
    return RecordingEnqueue()


@pytest.fixture
def dispatcher(enqueue: RecordingEnqueue) -> AlertDispatcher:
    return AlertDispatcher(min_severity=Severity.HIGH, enqueue=enqueue)


class FakeChannel(BaseChannel):
    """Channel with a scripted outcome."""

    def __init__(self, channel_type: ChannelType, succeed: bool = True) -> None:
        super().__init__()
        self._type = channel_type
        self.succeed = succeed
        self.sent: list[NotificationPayload] = []

    @property
    def channel_type(self) -> ChannelType:
        return self._type

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        self.sent.append(payload)
        if self.succeed:
            return self.create_success_result(message_id=f"{self._type.value}-{len(self.sent)}")
        return self.create_failure_result(f"{self._type.value} provider down")


@pytest.fixture
def fake_channel() -> type[FakeChannel]:
    """The FakeChannel class, for tests that script their own outcomes."""
    return FakeChannel


@pytest.fixture
def sms_channel() -> FakeChannel:
    return FakeChannel(ChannelType.SMS)


@pytest.fixture
def email_channel() -> FakeChannel:
    return FakeChannel(ChannelType.EMAIL)


# =============================================================================
# Factories
# =============================================================================


async def make_school(session: AsyncSession, **overrides: Any) -> School:
    values: dict[str, Any] = {
        "name": "GS Kigali",
        "phone": "+250788000000",
        "settings": {},
        "is_active": True,
    }
    values.update(overrides)
    school = School(**values)
    session.add(school)
    await session.flush()
    return school


async def make_student(session: AsyncSession, school: School, **overrides: Any) -> Student:
    values: dict[str, Any] = {
        "school_id": school.id,
        "first_name": "Aline",
        "last_name": "Uwase",
        "guardian_contacts": [
            {
                "name": "Jean Uwase",
                "phone": "0788123456",
                "email": "jean@example.com",
                "relation": "father",
                "is_primary": True,
            }
        ],
    }
    values.update(overrides)
    student = Student(**values)
    session.add(student)
    await session.flush()
    return student


async def make_staff(
    session: AsyncSession, school: School, role: str = "ADMIN", **overrides: Any
) -> StaffUser:
    values: dict[str, Any] = {
        "school_id": school.id,
        "full_name": "Head Teacher",
        "email": "head@example.com",
        "role": role,
    }
    values.update(overrides)
    staff = StaffUser(**values)
    session.add(staff)
    await session.flush()
    return staff


@pytest_asyncio.fixture
async def school(db_session: AsyncSession) -> School:
    school = await make_school(db_session)
    await db_session.commit()
    return school


@pytest_asyncio.fixture
async def student(db_session: AsyncSession, school: School) -> Student:
    student = await make_student(db_session, school)
    await db_session.commit()
    return student


class Factory:
    """Creates and flushes model rows in one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def school(self, **overrides: Any) -> School:
        return await make_school(self.session, **overrides)

    async def student(self, school: School, **overrides: Any) -> Student:
        return await make_student(self.session, school, **overrides)

    async def staff(self, school: School, role: str = "ADMIN", **overrides: Any) -> StaffUser:
        return await make_staff(self.session, school, role, **overrides)


@pytest.fixture
def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)
