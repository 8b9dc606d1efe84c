"""Review Automations Configuration Management."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class AutomationConfig(BaseSettings):
    """Central configuration for the review automation engine."""

    model_config = SettingsConfigDict(
        env_prefix="RA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment",
    )

    # Infrastructure
    postgres_url: str | None = Field(
        default=None,
        description="PostgreSQL connection URL",
    )

    # Outbound email (SendGrid)
    sendgrid_api_key: str | None = Field(default=None, alias="SENDGRID_API_KEY")
    mail_from_address: str = Field(
        default="alerts@localhost",
        description="Sender address for automation emails",
    )
    mail_from_name: str = Field(default="Review Alerts")
    app_url: str = Field(
        default="http://localhost:3000",
        description="Dashboard base URL used in notification links",
    )

    # Engine
    worker_count: int = Field(default=4, ge=1, le=64, description="Event worker tasks")
    queue_max_size: int = Field(default=10000, ge=1, description="Pending event capacity")
    tenant_concurrency: int = Field(
        default=8, ge=1, le=64, description="Concurrent action executions per tenant"
    )
    action_timeout_seconds: float = Field(
        default=5.0, gt=0, le=60, description="Outbound action timeout"
    )
    automation_cache_ttl_seconds: int = Field(
        default=30, ge=1, le=600, description="Per-tenant automation list TTL (1-600 seconds)"
    )
    claim_lease_seconds: int = Field(
        default=60, ge=5, description="Idempotency claim lease before it may be re-acquired"
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0, ge=0, description="Grace period for in-flight events on stop"
    )

    # Ingestion redelivery
    ingest_max_attempts: int = Field(default=5, ge=1, description="Deliveries before an event is dropped")
    ingest_backoff_seconds: float = Field(default=1.0, ge=0, description="Initial redelivery backoff")

    # Scheduled trigger scanner
    scan_interval_seconds: int = Field(
        default=900, ge=10, description="No-reply scan interval (default 15 minutes)"
    )
    no_reply_threshold_hours: int = Field(default=24, ge=1)
    scan_batch_limit: int = Field(default=500, ge=1, description="Reviews fetched per tenant per scan")
    scanner_enabled: bool = Field(default=True)

    # Retry sweep
    retry_sweep_enabled: bool = Field(default=False)
    retry_window_hours: int = Field(
        default=6, ge=1, description="Failed deliveries younger than this are re-dispatched"
    )
    retry_max_attempts: int = Field(default=3, ge=1, description="Failed attempts before giving up")
    retry_interval_seconds: int = Field(default=300, ge=10)

    # API
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    @field_validator("mail_from_address")
    @classmethod
    def validate_mail_from(cls, v: str) -> str:
        """Sender must at least look like an address."""
        if "@" not in v:
            raise ValueError("mail_from_address must be an email address")
        return v

    def validate_production_requirements(self) -> list[str]:
        """Validate all production requirements are met.

        Returns:
            List of validation errors (empty if all valid)
        """
        errors = []

        if not self.is_production:
            return errors

        if not self.postgres_url:
            errors.append("RA_POSTGRES_URL is required in production")

        if self.postgres_url and "sslmode=require" not in self.postgres_url:
            errors.append("PostgreSQL connection should use SSL (sslmode=require)")

        if not self.sendgrid_api_key:
            errors.append("SENDGRID_API_KEY is required for email_alert automations")

        if self.mail_from_address.endswith("@localhost"):
            errors.append("RA_MAIL_FROM_ADDRESS must be a deliverable address in production")

        localhost_origins = [o for o in self.cors_origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS origins should not include localhost in production: {localhost_origins}"
            )

        return errors

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT


@lru_cache
def get_config() -> AutomationConfig:
    """Get cached configuration instance."""
    return AutomationConfig()


def clear_config_cache() -> None:
    """Clear the config cache. Use when config needs to be reloaded."""
    get_config.cache_clear()
