"""
Configuration management for the SOAR playbook engine.

Uses Pydantic Settings for environment variable validation and type safety.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Playbook engine and action dispatcher configuration."""

    model_config = SettingsConfigDict(env_prefix="SOAR_")

    default_timeout_ms: int = Field(
        default=10000,
        ge=1,
        description="Timeout for a single external call (milliseconds)"
    )
    internal_api_url: str = Field(
        default="http://localhost:5000",
        description="Base URL of the internal enrichment / AI REST API"
    )
    revisit_policy: str = Field(
        default="per_path",
        description="How re-entering an already executed step is handled "
                    "(always, per_path, once_per_run)"
    )
    product_name: str = Field(
        default="SOC-Inteligente",
        description="Name used in comments sent to external systems"
    )

    # Retry defaults per step family. One attempt means no retry.
    retry_edr_max_attempts: int = Field(default=1, ge=1)
    retry_firewall_max_attempts: int = Field(default=1, ge=1)
    retry_identity_max_attempts: int = Field(default=1, ge=1)
    retry_notification_max_attempts: int = Field(default=1, ge=1)
    retry_analysis_max_attempts: int = Field(default=1, ge=1)
    retry_api_max_attempts: int = Field(default=1, ge=1)
    retry_backoff_ms: int = Field(
        default=1000,
        ge=0,
        description="Initial delay between retry attempts (milliseconds)"
    )
    retry_max_backoff_ms: int = Field(
        default=10000,
        ge=0,
        description="Upper bound for the exponential retry delay (milliseconds)"
    )

    @field_validator("revisit_policy")
    @classmethod
    def validate_revisit_policy(cls, v: str) -> str:
        """Validate revisit policy name."""
        valid = ["always", "per_path", "once_per_run"]
        v = v.lower()
        if v not in valid:
            raise ValueError(f"Revisit policy must be one of: {valid}")
        return v

    def max_attempts_for(self, family: str) -> int:
        """Get the configured attempt budget for a step family."""
        return getattr(self, f"retry_{family}_max_attempts", 1)


class NotificationSettings(BaseSettings):
    """
    Fallback notification channel configuration.

    Used when no EMAIL / SLACK / SMS connector is registered.
    """

    sendgrid_base_url: str = Field(default="https://api.sendgrid.com/v3")
    sendgrid_api_key: str = Field(default="")
    notify_email_from: str = Field(default="notifications@soc-inteligente.com")

    slack_bot_token: str = Field(default="")
    slack_channel_id: str = Field(default="")

    twilio_base_url: str = Field(default="https://api.twilio.com/2010-04-01")
    twilio_auth_token: str = Field(default="")
    twilio_account_sid: str = Field(default="")
    twilio_phone_number: str = Field(default="")


class StorageSettings(BaseSettings):
    """File and database locations used by the CLI and HTTP server."""

    model_config = SettingsConfigDict(env_prefix="SOAR_")

    playbooks_file: str = Field(
        default="/config/playbooks.yml",
        description="YAML file with playbook definitions"
    )
    connectors_file: Optional[str] = Field(
        default=None,
        description="YAML file with connector definitions"
    )
    db_path: str = Field(
        default="/data/soar.db",
        description="SQLite database for execution records"
    )


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # Nested configurations
    engine: EngineSettings = Field(default_factory=EngineSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Lazily loads configuration on first access.

    Returns:
        AppConfig: The global configuration instance
    """
    global _config
    if _config is None:
        _config = AppConfig(
            engine=EngineSettings(),
            notifications=NotificationSettings(),
            storage=StorageSettings(),
        )
    return _config


def reload_config() -> AppConfig:
    """
    Reload configuration from environment variables.

    Useful for testing or when environment changes.

    Returns:
        AppConfig: The reloaded configuration instance
    """
    global _config
    _config = None
    return get_config()
