# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the
EduGuard risk engine. Settings are loaded from environment variables
with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.notification.max_retries)
    3
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parents[3]


class DatabaseSettings(BaseSettings):
    """Database configuration.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        url_override: Full async URL; when set it wins over the components.
        echo: Log every SQL statement.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "eduguard"
    password: SecretStr = SecretStr("eduguard_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "eduguard"
    url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"

    @property
    def sync_url(self) -> str:
        """Build the sync database URL for migrations."""
        if self.url_override:
            return self.url_override.replace("+asyncpg", "").replace("+aiosqlite", "")
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for the task broker.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr | None = None
    database: int = 0

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        if self.password is None:
            return f"redis://{self.host}:{self.port}/{self.database}"
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class SMSSettings(BaseSettings):
    """SMS provider configuration (Twilio REST API).

    Attributes:
        enabled: Whether SMS delivery is attempted at all.
        account_sid: Twilio account SID.
        auth_token: Twilio auth token.
        from_number: Sender phone number in E.164 form.
        api_base_url: Provider API root.
        timeout_seconds: HTTP timeout per request.
        default_country_code: Prefix applied to local phone numbers.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMS_",
        extra="ignore",
    )

    enabled: bool = True
    account_sid: str | None = None
    auth_token: SecretStr | None = None
    from_number: str | None = None
    api_base_url: str = "https://api.twilio.com/2010-04-01"
    timeout_seconds: float = 15.0
    default_country_code: str = "250"

    @property
    def is_configured(self) -> bool:
        """Check whether credentials and sender are present."""
        return bool(self.enabled and self.account_sid and self.auth_token and self.from_number)


class SMTPSettings(BaseSettings):
    """SMTP configuration for the email channel.

    Attributes:
        enabled: Whether email delivery is attempted at all.
        host: SMTP server host.
        port: SMTP server port.
        username: SMTP login.
        password: SMTP password.
        from_email: Sender address.
        from_name: Sender display name.
        use_tls: Connect with implicit TLS.
        start_tls: Upgrade the connection with STARTTLS.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    enabled: bool = True
    host: str | None = None
    port: int = 587
    username: str | None = None
    password: SecretStr | None = None
    from_email: str = "noreply@eduguard.rw"
    from_name: str = "EduGuard"
    use_tls: bool = False
    start_tls: bool = True

    @property
    def is_configured(self) -> bool:
        """Check whether an SMTP host is set."""
        return bool(self.enabled and self.host)


class NotificationSettings(BaseSettings):
    """Guardian and staff notification behaviour.

    Attributes:
        default_language: Template language when none is requested.
        max_retries: Attempt rounds before a message is marked FAILED.
        pending_batch_size: Messages handled per pending sweep.
        admin_dedup_hours: Window for suppressing repeated staff notifications.
        stats_window_days: Default window for delivery statistics.
        alert_min_severity: Lowest flag severity that triggers alerts.
        contact_info: Default contact line rendered into templates.
        templates_path: YAML file with message templates.
        absence_alerts_enabled: Send a guardian alert when an absence is recorded.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATION_",
        extra="ignore",
    )

    default_language: Literal["en", "rw"] = "en"
    max_retries: int = 3
    pending_batch_size: int = 50
    admin_dedup_hours: int = 24
    stats_window_days: int = 30
    alert_min_severity: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"] = "HIGH"
    contact_info: str = "the school office"
    templates_path: Path = _PROJECT_ROOT / "config" / "notifications" / "templates.yaml"
    absence_alerts_enabled: bool = True


class RiskSettings(BaseSettings):
    """Risk detection engine configuration.

    Attributes:
        config_dir: Directory holding rules.yaml.
        sweep_concurrency: Students evaluated in parallel during a sweep.
        nightly_sweep_hour: Hour (UTC) of the scheduled whole-school sweep.
        pending_sweep_minutes: Interval of the pending-message sweep.
        scheduler_enabled: Run the periodic jobs in this process. Enable on
            exactly one API instance.
    """

    model_config = SettingsConfigDict(
        env_prefix="RISK_",
        extra="ignore",
    )

    config_dir: Path = _PROJECT_ROOT / "config" / "risk"
    sweep_concurrency: int = Field(default=4, ge=1)
    nightly_sweep_hour: int = Field(default=2, ge=0, le=23)
    pending_sweep_minutes: int = Field(default=10, ge=1)
    scheduler_enabled: bool = True


class CORSSettings(BaseSettings):
    """CORS configuration for API.

    Attributes:
        origins: Comma-separated list of allowed origins.
        allow_credentials: Whether to allow credentials.
    """

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        extra="ignore",
    )

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into a list."""
        return [origin.strip() for origin in self.origins.split(",") if origin.strip()]


class APISettings(BaseSettings):
    """API server configuration.

    Attributes:
        host: Host to bind to.
        port: Port to listen on.
        workers: Number of worker processes.
        reload: Whether to enable auto-reload.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 2
    reload: bool = False


class WorkerSettings(BaseSettings):
    """Background worker configuration.

    Attributes:
        processes: Number of worker processes.
        threads: Number of threads per process.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        extra="ignore",
    )

    processes: int = 2
    threads: int = 4


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        log_format: Renderer for log lines (console or json).
        database: Database settings.
        redis: Redis settings.
        sms: SMS provider settings.
        smtp: SMTP settings.
        notification: Notification behaviour settings.
        risk: Risk engine settings.
        cors: CORS settings.
        api: API server settings.
        worker: Background worker settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "test", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["console", "json"] | None = None

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    sms: SMSSettings = Field(default_factory=SMSSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)
    api: APISettings = Field(default_factory=APISettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
