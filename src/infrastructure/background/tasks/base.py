# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base utilities for Dramatiq tasks.

Thread-Local Event Loop Management:
    Dramatiq workers run actors on several threads. SQLAlchemy async
    engines and asyncpg connections are bound to the event loop they were
    created in, so every worker thread keeps one persistent loop and its
    own engine (see get_worker_sessionmaker()).
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine, TypeVar

from src.infrastructure.database.connection import _clear_thread_db_connections

logger = logging.getLogger(__name__)

T = TypeVar("T")

_thread_local = threading.local()


def _get_thread_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create the persistent event loop of the current thread.

    A new loop drops the thread's cached engine so the next session is
    created on the new loop.
    """
    loop = getattr(_thread_local, "event_loop", None)

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.event_loop = loop

        _clear_thread_db_connections()

        logger.debug(
            "Created new event loop for thread %s",
            threading.current_thread().name,
        )

    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine from a sync Dramatiq actor.

    Example:
        @dramatiq.actor
        def my_task(student_id: str):
            async def _process():
                async with get_worker_sessionmaker()() as session:
                    ...
            return run_async(_process())
    """
    loop = _get_thread_event_loop()
    return loop.run_until_complete(coro)
