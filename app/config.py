"""
SEO Hub settings, read from the environment (and .env when present).

The database URL and the SEOWorks webhook secret are checked at import time
so a misconfigured deployment never starts serving webhooks.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Required settings are missing or malformed."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "SEO Hub API"
    api_version: str = "0.1.0"
    api_description: str = "Dealership SEO package tracking and SEOWorks integration"
    cors_origins: str = ""  # Comma-separated list of allowed origins

    # Session tokens (HS256, generate with: openssl rand -hex 32)
    jwt_secret: str = ""
    jwt_expire_hours: int = 24
    session_cookie_name: str = "seo_hub_session"

    # SEOWorks - inbound webhook secret (x-api-key header)
    seoworks_webhook_secret: str = ""

    # SEOWorks - outbound API
    seoworks_api_key: str = ""
    seoworks_onboard_url: str = "https://api.seoworks.ai/rylie-onboard.cfm"
    seoworks_focus_url: str = "https://api.seowerks.ai/rylie-focus.cfm"
    seoworks_timeout_seconds: float = 30.0

    # Dealership -> GA4 / Search Console mapping (defaults to bundled data file)
    property_mappings_path: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "seo-hub-api"
    deployment_environment: str = "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """Refuse to start without a PostgreSQL URL and a webhook secret."""
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.seoworks_webhook_secret:
            errors.append("SEOWORKS_WEBHOOK_SECRET is required but empty or missing")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "SEO HUB CONFIGURATION ERROR",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Replica URL, or the primary when no replica is configured."""
        return self.database_read_url or self.database_url

    @property
    def allowed_origins(self) -> list[str]:
        """Parse CORS origins from the comma-separated setting."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()


def get_settings() -> Settings:
    return settings
