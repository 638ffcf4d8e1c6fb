# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

Dependencies are used to:
- Get database sessions
- Identify the caller from gateway headers
- Enforce the administrator role

The service sits behind an authenticating gateway that forwards the
caller as X-Actor-Id and X-Actor-Role headers.

Example:
    @router.delete("/{flag_id}")
    async def delete_flag(
        db: AsyncSession = Depends(get_db),
        actor: CurrentActor = Depends(require_admin),
    ):
        ...
"""

import logging
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.infrastructure.database.connection import (
    close_database,
    get_sessionmaker,
    init_database,
)

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})


async def init_db() -> None:
    """Initialize the database connection pool."""
    await init_database(get_settings())


async def close_db() -> None:
    """Close the database connection pool."""
    await close_database()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session.

    Services decide when to commit; anything left uncommitted when the
    request ends is rolled back when the session closes.

    Yields:
        AsyncSession for the request.
    """
    async with get_sessionmaker()() as session:
        yield session


# =========================================================================
# Caller Dependencies
# =========================================================================


@dataclass(frozen=True)
class CurrentActor:
    """The caller as identified by the gateway.

    Attributes:
        id: Staff user ID.
        role: ADMIN, TEACHER, ...
    """

    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def require_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> CurrentActor:
    """Require gateway identity headers.

    Raises:
        HTTPException: 401 if X-Actor-Id is missing.
    """
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    return CurrentActor(id=x_actor_id, role=(x_actor_role or "TEACHER").upper())


def require_admin(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> CurrentActor:
    """Require an administrator.

    Raises:
        HTTPException: 401 without identity, 403 if not an admin.
    """
    actor = require_actor(x_actor_id, x_actor_role)
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor
