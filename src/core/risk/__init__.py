# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Risk detection engine.

Data flows one way: evaluators produce candidate signals, the aggregator
turns them into deduplicated flags, the calculator projects the flags into
Student.risk_level. Alerts fork off after commit and never feed back.

Usage:
    from src.core.risk import AlertDispatcher, RiskDetectionService

    service = RiskDetectionService(session)
    result = await service.detect_for_student(student_id, school_id, actor_id)
    await session.commit()
    AlertDispatcher().dispatch(result.events)
"""

from src.core.risk.aggregator import AggregationOutcome, FlagAggregator
from src.core.risk.alerts import AlertDispatcher
from src.core.risk.calculator import RiskLevelCalculator, compute_risk_level
from src.core.risk.config import RiskConfig, get_risk_config, reload_risk_config
from src.core.risk.exceptions import (
    DeliveryError,
    FlagConflictError,
    FlagNotFoundError,
    MessageNotFoundError,
    NotFoundError,
    RiskEngineError,
    RiskValidationError,
    RunNotFoundError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from src.core.risk.service import RiskDetectionService
from src.core.risk.sweep import RunStatus, RunTrigger, SchoolSweep, get_run, request_school_sweep
from src.core.risk.types import (
    CandidateSignal,
    DetectionResult,
    FlagEvent,
    FlagEventKind,
    RiskLevel,
    RiskType,
    Severity,
)

__all__ = [
    # Services
    "RiskDetectionService",
    "SchoolSweep",
    "request_school_sweep",
    "get_run",
    "RunStatus",
    "RunTrigger",
    "FlagAggregator",
    "AggregationOutcome",
    "RiskLevelCalculator",
    "compute_risk_level",
    "AlertDispatcher",
    # Config
    "RiskConfig",
    "get_risk_config",
    "reload_risk_config",
    # Types
    "CandidateSignal",
    "DetectionResult",
    "FlagEvent",
    "FlagEventKind",
    "RiskLevel",
    "RiskType",
    "Severity",
    # Exceptions
    "RiskEngineError",
    "NotFoundError",
    "StudentNotFoundError",
    "SchoolNotFoundError",
    "FlagNotFoundError",
    "MessageNotFoundError",
    "RunNotFoundError",
    "RiskValidationError",
    "DeliveryError",
    "FlagConflictError",
]
