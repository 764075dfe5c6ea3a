# ridernotify/config.py
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    public_base_url: str | None = None  # Deep links in SMS bodies, e.g. https://escorts.example.com

    # Storage
    # "postgres" - asyncpg repositories (production)
    # "memory"   - in-process stores (dev / demo only, lost on restart)
    storage_backend: Literal["postgres", "memory"] = "postgres"
    expected_schema_version: str = "002_tracking_log.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    assignment_cache_ttl_seconds: float = 30.0

    # Security
    admin_token: str | None = None
    require_webhook_validation: bool = True

    # Twilio (SMS)
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None
    twilio_api_base_url: str = "https://api.twilio.com"
    twilio_webhook_url: str | None = None  # Public URL of /webhooks/twilio/sms for signature validation
    twilio_status_callback_url: str | None = None  # Public URL of /webhooks/twilio/status

    # SMTP (email)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    email_from: str | None = None
    email_signature: str = "Rider Integration and Deployment Engine"

    # Delivery retry policy (per individual send)
    gateway_max_retries: int = 3
    gateway_base_delay_seconds: float = 2.0  # delay = base × attempt number
    gateway_jitter_seconds: float = 0.0
    gateway_timeout_seconds: float = 15.0

    # Batch pacing (provider throughput)
    pacing_block_size: int = 5
    pacing_pause_seconds: float = 1.0
    batch_error_sample_size: int = 10

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def twilio_enabled(self) -> bool:
        """Check if Twilio REST credentials are configured"""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )

    @property
    def smtp_enabled(self) -> bool:
        """Check if SMTP delivery is configured"""
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("admin_token", self.admin_token),
            ("twilio_account_sid", self.twilio_account_sid),
            ("twilio_auth_token", self.twilio_auth_token),
            ("twilio_phone_number", self.twilio_phone_number),
            ("smtp_host", self.smtp_host),
            ("smtp_user", self.smtp_user),
            ("smtp_password", self.smtp_password),
        ]
        if self.storage_backend == "postgres":
            required_fields.append(("database_url", self.database_url))

        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.storage_backend == "memory":
        warnings.append("prod: storage_backend=memory (assignment updates are lost on restart).")

    if not s.admin_token:
        warnings.append("admin_token is not set (admin dispatch endpoints will refuse requests).")

    if not s.twilio_enabled:
        warnings.append("Twilio credentials are incomplete: SMS runs through the dev gateway (log only).")
    elif s.require_webhook_validation and not s.twilio_webhook_url:
        warnings.append("require_webhook_validation=True but twilio_webhook_url is not set.")

    if not s.smtp_enabled:
        warnings.append("SMTP is not configured: email runs through the dev gateway (log only).")

    if s.gateway_max_retries > 5:
        warnings.append(
            f"gateway_max_retries={s.gateway_max_retries}: long retry chains hold batches open."
        )

    if s.pacing_block_size < 1:
        warnings.append("pacing_block_size < 1: pacing pauses are disabled.")

    return warnings


def validate_or_warn(s: "Settings") -> list[str]:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.

    Returns the warnings so the caller can log them once logging is up.
    """
    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")
    return warn_on_risky_config(s)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, built once at startup."""
    return Settings()
