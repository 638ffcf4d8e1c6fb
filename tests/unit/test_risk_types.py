# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for risk value types."""

import pytest

from src.core.risk.types import (
    DetectionResult,
    FlagEvent,
    FlagEventKind,
    RiskLevel,
    RiskType,
    Severity,
)


class TestSeverity:
    """Tests for severity ordering."""

    def test_rank_order(self) -> None:
        """Test that tiers are ordered LOW < MEDIUM < HIGH < CRITICAL."""
        ranks = [s.rank for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4

    @pytest.mark.parametrize(
        "severity,tiers,expected",
        [
            (Severity.LOW, 1, Severity.MEDIUM),
            (Severity.MEDIUM, 2, Severity.CRITICAL),
            (Severity.HIGH, 1, Severity.CRITICAL),
            (Severity.CRITICAL, 1, Severity.CRITICAL),
            (Severity.HIGH, 0, Severity.HIGH),
        ],
    )
    def test_bumped_caps_at_critical(
        self, severity: Severity, tiers: int, expected: Severity
    ) -> None:
        """Test that bumping never goes past CRITICAL."""
        assert severity.bumped(tiers) == expected

    def test_lower_tiers(self) -> None:
        """Test lower_tiers excludes the tier itself."""
        assert Severity.HIGH.lower_tiers() == [Severity.LOW, Severity.MEDIUM]
        assert Severity.LOW.lower_tiers() == []

    def test_highest(self) -> None:
        """Test highest picks the most severe and handles empty input."""
        assert Severity.highest([Severity.MEDIUM, Severity.CRITICAL, Severity.LOW]) == (
            Severity.CRITICAL
        )
        assert Severity.highest([]) is None


class TestRiskLevel:
    """Tests for RiskLevel projection."""

    def test_from_severity(self) -> None:
        assert RiskLevel.from_severity(None) == RiskLevel.NONE
        assert RiskLevel.from_severity(Severity.HIGH) == RiskLevel.HIGH


class TestFlagEvent:
    """Tests for FlagEvent queue payloads."""

    def test_message_payload_roundtrip(self) -> None:
        """Test that an escalation event survives serialization for the queue."""
        event = FlagEvent(
            flag_id="flag-1",
            student_id="student-1",
            school_id="school-1",
            type=RiskType.ATTENDANCE,
            severity=Severity.CRITICAL,
            title="Consecutive Absences",
            description="5 consecutive absences",
            kind=FlagEventKind.ESCALATED,
            previous_severity=Severity.HIGH,
            actor_id="teacher-1",
        )

        payload = event.to_message()

        assert payload["type"] == "ATTENDANCE"
        assert payload["previous_severity"] == "HIGH"
        assert FlagEvent.from_message(payload) == event


class TestDetectionResult:
    """Tests for DetectionResult summaries."""

    def test_to_dict_uses_api_keys(self) -> None:
        result = DetectionResult(
            student_id="student-1",
            risks_detected=2,
            flags_created=1,
            flags_updated=1,
            risk_level=RiskLevel.CRITICAL,
        )

        assert result.to_dict() == {
            "risksDetected": 2,
            "flagsCreated": 1,
            "flagsUpdated": 1,
            "riskLevel": "CRITICAL",
        }
