# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exception hierarchy for the risk engine.

- RiskEngineError: base for everything raised by detection and alerting
- NotFoundError family: unknown student, flag, message or detection run
- RiskValidationError: bad type/severity/score or malformed guardian contact
- DeliveryError: a channel send failed (caught inside the dispatcher)
- FlagConflictError: an upsert could not be reconciled with the stored flag
"""


class RiskEngineError(Exception):
    """Base exception for the risk engine.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class NotFoundError(RiskEngineError):
    """Raised when a referenced record does not exist."""

    pass


class StudentNotFoundError(NotFoundError):
    """Raised when a student is not found."""

    def __init__(self, student_id: str):
        super().__init__(f"Student {student_id} not found", {"student_id": student_id})


class SchoolNotFoundError(NotFoundError):
    """Raised when a school is not found."""

    def __init__(self, school_id: str):
        super().__init__(f"School {school_id} not found", {"school_id": school_id})


class FlagNotFoundError(NotFoundError):
    """Raised when a risk flag is not found."""

    def __init__(self, flag_id: str):
        super().__init__(f"Risk flag {flag_id} not found", {"flag_id": flag_id})


class MessageNotFoundError(NotFoundError):
    """Raised when a message is not found."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} not found", {"message_id": message_id})


class RunNotFoundError(NotFoundError):
    """Raised when a detection run is not found."""

    def __init__(self, run_id: str):
        super().__init__(f"Detection run {run_id} not found", {"run_id": run_id})


class RiskValidationError(RiskEngineError):
    """Raised for invalid input. Nothing is written when this is raised."""

    pass


class DeliveryError(RiskEngineError):
    """Raised by a channel client when the provider rejects a send.

    Attributes:
        channel: Channel name (sms, email).
        status_code: Provider HTTP status code, when there was one.
    """

    def __init__(
        self,
        message: str,
        channel: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.channel = channel
        self.status_code = status_code
        super().__init__(message, details)


class FlagConflictError(RiskEngineError):
    """Raised when an active flag vanished between insert and update."""

    pass
