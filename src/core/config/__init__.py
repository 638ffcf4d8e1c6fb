# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the EduGuard risk engine.

- Settings: Pydantic-based settings loaded from environment variables
- YAML loader: helpers for rule and template files

Example:
    >>> from src.core.config import get_settings
    >>> settings = get_settings()
    >>> settings.risk.sweep_concurrency
    4
"""

from src.core.config.settings import (
    APISettings,
    CORSSettings,
    DatabaseSettings,
    NotificationSettings,
    RedisSettings,
    RiskSettings,
    Settings,
    SMSSettings,
    SMTPSettings,
    WorkerSettings,
    clear_settings_cache,
    get_settings,
)
from src.core.config.yaml_loader import YAMLLoadError, deep_merge, load_yaml

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DatabaseSettings",
    "RedisSettings",
    "SMSSettings",
    "SMTPSettings",
    "NotificationSettings",
    "RiskSettings",
    "CORSSettings",
    "APISettings",
    "WorkerSettings",
    # YAML utilities
    "load_yaml",
    "deep_merge",
    "YAMLLoadError",
]
