# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian message templates.

Templates live in config/notifications/templates.yaml, keyed by template
name and then language. Rendering substitutes {placeholder} values and
leaves unknown placeholders untouched.

Usage:
    registry = get_template_registry()
    rendered = registry.render("absence_alert", "rw", {"studentName": "Aline"})
"""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from src.core.config.settings import get_settings
from src.core.config.yaml_loader import load_yaml
from src.core.risk.exceptions import RiskValidationError
from src.infrastructure.database.models.message import MAX_CONTENT_LENGTH

logger = logging.getLogger(__name__)

FALLBACK_LANGUAGE = "en"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def render_text(text: str, variables: dict[str, Any]) -> str:
    """Substitute {name} placeholders present in `variables`."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return str(variables[name])
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, text)


@dataclass(frozen=True)
class MessageTemplate:
    """One template with per-language variants."""

    name: str
    message_type: str
    sms: dict[str, str]
    email_subject: dict[str, str]
    email_body: dict[str, str]

    def _pick(self, variants: dict[str, str], language: str) -> str:
        return variants.get(language) or variants.get(FALLBACK_LANGUAGE, "")

    def render(self, language: str, variables: dict[str, Any]) -> "RenderedMessage":
        language = language if language in self.sms else FALLBACK_LANGUAGE
        return RenderedMessage(
            template=self.name,
            message_type=self.message_type,
            language=language,
            sms=render_text(self._pick(self.sms, language), variables)[:MAX_CONTENT_LENGTH],
            subject=render_text(self._pick(self.email_subject, language), variables),
            email_body=render_text(self._pick(self.email_body, language), variables),
        )


@dataclass(frozen=True)
class RenderedMessage:
    template: str
    message_type: str
    language: str
    sms: str
    subject: str
    email_body: str


class TemplateRegistry:
    """Lookup and rendering of message templates."""

    def __init__(self, templates: dict[str, MessageTemplate]) -> None:
        self._templates = templates

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "TemplateRegistry":
        templates = {}
        for name, spec in (data.get("templates") or {}).items():
            templates[name] = MessageTemplate(
                name=name,
                message_type=str(spec.get("message_type", "GENERAL")),
                sms=dict(spec.get("sms") or {}),
                email_subject=dict(spec.get("email_subject") or {}),
                email_body=dict(spec.get("email_body") or {}),
            )
        return cls(templates)

    @property
    def names(self) -> list[str]:
        return sorted(self._templates)

    def get(self, name: str) -> MessageTemplate:
        """Get a template by name.

        Raises:
            RiskValidationError: If the template does not exist.
        """
        try:
            return self._templates[name]
        except KeyError:
            raise RiskValidationError(
                f"Unknown message template: {name!r}", {"available": self.names}
            ) from None

    def render(
        self, name: str, language: str, variables: dict[str, Any]
    ) -> RenderedMessage:
        return self.get(name).render(language, variables)


@lru_cache(maxsize=1)
def load_templates(path: str | None = None) -> TemplateRegistry:
    """Load templates from YAML (cached).

    Raises:
        YAMLLoadError: If the file is missing or malformed.
    """
    file_path = Path(path) if path else get_settings().notification.templates_path
    registry = TemplateRegistry.from_mapping(load_yaml(file_path))
    logger.info("Loaded %d message templates from %s", len(registry.names), file_path)
    return registry


def get_template_registry() -> TemplateRegistry:
    return load_templates()
