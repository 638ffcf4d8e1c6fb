# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Hand-off from detection to the notification pipeline.

Detection never waits on delivery. Flag events and absence alerts are
queued as background tasks after the triggering transaction commits;
a queueing failure is logged and otherwise ignored, so it can neither
fail the write that triggered detection nor touch flag state.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import date
from typing import Any

from src.core.config.settings import get_settings
from src.core.risk.types import FlagEvent, Severity

logger = logging.getLogger(__name__)

Enqueue = Callable[[str, dict[str, Any]], Any]


def _enqueue_task(kind: str, payload: dict[str, Any]) -> Any:
    from src.infrastructure.background.tasks.risk import (
        send_flag_alerts,
        send_guardian_alert,
    )

    if kind == "flag_event":
        return send_flag_alerts.send(payload)
    return send_guardian_alert.send(**payload)


class AlertDispatcher:
    """Queues guardian and staff alerts without blocking the caller.

    Attributes:
        min_severity: Flag events below this severity are not alerted.
    """

    def __init__(
        self,
        min_severity: Severity | None = None,
        enqueue: Enqueue | None = None,
    ) -> None:
        settings = get_settings().notification
        self.min_severity = min_severity or Severity(settings.alert_min_severity)
        self._absence_alerts = settings.absence_alerts_enabled
        self._enqueue = enqueue or _enqueue_task

    def should_alert(self, event: FlagEvent) -> bool:
        return event.severity.rank >= self.min_severity.rank

    def dispatch(self, events: Iterable[FlagEvent]) -> int:
        """Queue alerts for qualifying flag events.

        Returns:
            Number of events queued.
        """
        queued = 0
        for event in events:
            if not self.should_alert(event):
                continue
            if self._submit("flag_event", event.to_message()):
                queued += 1
        return queued

    def dispatch_absence(
        self,
        student_id: str,
        absence_date: date,
        actor_id: str | None = None,
    ) -> bool:
        """Queue the guardian absence alert for one absence."""
        if not self._absence_alerts:
            return False
        return self._submit(
            "guardian_alert",
            {
                "student_id": student_id,
                "channel": "BOTH",
                "template": "absence_alert",
                "variables": {"date": absence_date.isoformat()},
                "actor_id": actor_id,
            },
        )

    def _submit(self, kind: str, payload: dict[str, Any]) -> bool:
        try:
            self._enqueue(kind, payload)
        except Exception:
            logger.exception(
                "Failed to queue %s for student %s", kind, payload.get("student_id")
            )
            return False
        return True
