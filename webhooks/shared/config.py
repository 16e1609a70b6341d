"""Shared configuration management for the webhook handlers.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_WEBHOOK_SECRET=s3cret
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="eventflow-webhooks",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Data store (Supabase REST + Auth admin APIs)
    supabase_url: str = Field(
        default="",
        description="Supabase project URL, e.g. https://<ref>.supabase.co",
    )
    supabase_service_role_key: str = Field(
        default="",
        description="Service role key (use env var APP_SUPABASE_SERVICE_ROLE_KEY)",
    )
    store_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for data store requests",
        gt=0,
    )

    # Webhooks
    webhook_secret: str = Field(
        default="",
        description="Pre-shared secret for inbound webhooks (use env var APP_WEBHOOK_SECRET)",
    )
    default_currency: str = Field(
        default="SEK",
        description="Currency that is not repeated in invoice notes",
    )
    invoice_organization_id: str | None = Field(
        default=None,
        description="Organization for ingested invoices (first organization if unset)",
    )

    # SSO hub
    sso_hub_verify_url: str = Field(
        default="",
        description="Hub endpoint that verifies signed SSO payloads",
    )
    hub_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for hub verification requests",
        gt=0,
    )
    sso_legacy_org_fallback: bool = Field(
        default=False,
        description=(
            "Deprecated: fall back to the first organization when an SSO payload "
            "has no organization_id"
        ),
    )

    # Auth user scanning
    auth_users_page_size: int = Field(
        default=100,
        description="Page size when scanning auth users by email",
        ge=1,
        le=1000,
    )
    auth_users_max_pages: int = Field(
        default=100,
        description="Safety limit on pages scanned when looking up auth users",
        ge=1,
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
