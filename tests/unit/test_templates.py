# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for guardian message templates."""

from pathlib import Path

import pytest

from src.core.config.yaml_loader import YAMLLoadError
from src.core.risk.exceptions import RiskValidationError
from src.infrastructure.notifications.templates import (
    TemplateRegistry,
    load_templates,
    render_text,
)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
TEMPLATES_PATH = PROJECT_ROOT / "config" / "notifications" / "templates.yaml"


@pytest.fixture
def registry() -> TemplateRegistry:
    return TemplateRegistry.from_mapping(
        {
            "templates": {
                "absence_alert": {
                    "message_type": "ABSENCE_ALERT",
                    "sms": {
                        "en": "{studentName} was absent on {date}.",
                        "rw": "{studentName} ntiyaje ku itariki {date}.",
                    },
                    "email_subject": {"en": "Absence: {studentName}"},
                    "email_body": {"en": "Dear {guardianName}, {studentName} was absent."},
                }
            }
        }
    )


class TestRenderText:
    """Tests for placeholder substitution."""

    def test_known_placeholders_are_replaced(self) -> None:
        assert render_text("Hi {name}, score {score}", {"name": "Aline", "score": 45}) == (
            "Hi Aline, score 45"
        )

    def test_unknown_placeholders_are_left(self) -> None:
        assert render_text("Hi {name} on {date}", {"name": "Aline"}) == "Hi Aline on {date}"

    def test_none_values_are_left(self) -> None:
        assert render_text("{date}", {"date": None}) == "{date}"


class TestTemplateRegistry:
    """Tests for template lookup and rendering."""

    def test_render_requested_language(self, registry: TemplateRegistry) -> None:
        rendered = registry.render(
            "absence_alert", "rw", {"studentName": "Aline", "date": "2025-03-04"}
        )

        assert rendered.language == "rw"
        assert rendered.sms == "Aline ntiyaje ku itariki 2025-03-04."
        assert rendered.message_type == "ABSENCE_ALERT"

    def test_missing_email_variant_falls_back_to_english(self, registry: TemplateRegistry) -> None:
        """Test that a language without an email variant uses the English one."""
        rendered = registry.render("absence_alert", "rw", {"studentName": "Aline"})

        assert rendered.subject == "Absence: Aline"

    def test_unknown_language_falls_back_to_english(self, registry: TemplateRegistry) -> None:
        rendered = registry.render("absence_alert", "fr", {"studentName": "Aline"})

        assert rendered.language == "en"
        assert rendered.sms == "Aline was absent on {date}."

    def test_unknown_template_raises(self, registry: TemplateRegistry) -> None:
        with pytest.raises(RiskValidationError) as exc_info:
            registry.get("birthday_wishes")

        assert exc_info.value.details["available"] == ["absence_alert"]


class TestShippedTemplates:
    """Tests for config/notifications/templates.yaml."""

    def test_every_template_has_both_languages(self) -> None:
        load_templates.cache_clear()
        try:
            registry = load_templates(str(TEMPLATES_PATH))
        finally:
            load_templates.cache_clear()

        assert {"absence_alert", "performance_alert", "risk_alert", "general"} <= set(
            registry.names
        )
        for name in registry.names:
            template = registry.get(name)
            assert {"en", "rw"} <= set(template.sms), name

    def test_risk_alert_renders_flag_title(self) -> None:
        load_templates.cache_clear()
        try:
            registry = load_templates(str(TEMPLATES_PATH))
        finally:
            load_templates.cache_clear()

        rendered = registry.render(
            "risk_alert",
            "en",
            {"guardianName": "Jean", "studentName": "Aline", "riskTitle": "Consecutive Absences"},
        )

        assert "Consecutive Absences" in rendered.sms
        assert "Jean" in rendered.sms

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        load_templates.cache_clear()
        try:
            with pytest.raises(YAMLLoadError):
                load_templates(str(tmp_path / "missing.yaml"))
        finally:
            load_templates.cache_clear()
