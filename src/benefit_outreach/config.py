"""Application configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///data/benefit_outreach.db"
    echo: bool = False


class TwilioSettings(BaseModel):
    """System-wide Twilio credentials (used when a practice has no custom account)."""

    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""
    messaging_service_sid: str = ""  # Optional Messaging Service for advanced routing


class SendGridSettings(BaseModel):
    """System-wide SendGrid credentials."""

    api_key: str = ""
    from_email: str = "noreply@dentite.com"
    from_name: str = "Dentite"


class MessagingSettings(BaseModel):
    """Outbound messaging configuration."""

    # Public base URL for status callbacks and unsubscribe links
    webhook_base_url: str = "https://localhost"

    # Provider HTTP timeout (seconds)
    request_timeout: float = 30.0

    # Per-practice client cache lifetime
    client_cache_ttl_seconds: int = 3600

    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    sendgrid: SendGridSettings = Field(default_factory=SendGridSettings)


class SecuritySettings(BaseModel):
    """Credential encryption configuration."""

    # 32 raw characters or 64 hex characters (AES-256)
    encryption_key: str = ""


class OutreachSettings(BaseModel):
    """Outreach engine tuning."""

    cooldown_days: int = 7
    default_min_benefit_amount: float = 200.0

    # How long a claimed sequence state stays invisible to other ticks
    sequence_claim_lease_seconds: int = 600

    # Outreach log write retries
    log_write_attempts: int = 3
    log_write_base_delay: float = 0.2

    # Hard block once usage exceeds included messages by this ratio
    usage_overage_ratio: float = 1.1


class SchedulerSettings(BaseModel):
    """Background job schedule."""

    enabled: bool = True
    poll_interval_seconds: int = 30
    outreach_hour: int = 9
    sequence_interval_minutes: int = 15
    benefits_snapshot_hour: int = 2
    usage_reset_hour: int = 3


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (OUTREACH_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTREACH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Subsystems
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    outreach: OutreachSettings = Field(default_factory=OutreachSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @property
    def system_twilio_configured(self) -> bool:
        """Whether system Twilio credentials are present."""
        twilio = self.messaging.twilio
        return bool(twilio.account_sid and twilio.auth_token)

    @property
    def system_sendgrid_configured(self) -> bool:
        """Whether a system SendGrid API key is present."""
        return bool(self.messaging.sendgrid.api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.
    """
    import os
    from dynaconf import Dynaconf

    # Determine paths
    config_dir = Path("configs")
    env = os.getenv("OUTREACH_ENV", "development")

    # Build settings file list
    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    # Load with Dynaconf
    dynaconf = Dynaconf(
        envvar_prefix="OUTREACH",
        settings_files=settings_files,
        load_dotenv=True,
    )

    # Convert to dict
    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            value = dynaconf[key]
            config_dict[key.lower()] = _lower_keys(value)

    config_dict["environment"] = env

    return Settings(**config_dict)


def _lower_keys(value: Any) -> Any:
    """Dynaconf upper-cases nested YAML keys; pydantic fields are lower-case."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def validate_production_settings(settings: Settings) -> list[str]:
    """Validate settings for production readiness.

    Args:
        settings: Application settings to validate.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []

    # Only enforce strict validation in production
    if settings.environment not in ("production", "staging", "prod"):
        return errors

    if not settings.security.encryption_key:
        errors.append(
            "OUTREACH_SECURITY__ENCRYPTION_KEY must be set in production"
        )

    if "localhost" in settings.messaging.webhook_base_url:
        errors.append(
            "OUTREACH_MESSAGING__WEBHOOK_BASE_URL must be a public URL in production"
        )

    return errors


def require_valid_settings() -> Settings:
    """Get settings and raise if production validation fails.

    Raises:
        ValueError: If production settings are invalid.

    Returns:
        Validated settings.
    """
    settings = get_settings()
    errors = validate_production_settings(settings)

    if errors:
        error_list = "\n  - ".join(errors)
        raise ValueError(
            f"Production configuration errors:\n  - {error_list}"
        )

    return settings
