"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # API SECURITY
    # ===================
    api_key: Optional[str] = Field(
        None,
        description="API key required on /api/migration calls when set"
    )

    # ===================
    # SHOPIFY (ORDER SOURCE)
    # ===================
    shopify_api_version: str = Field(
        default="2024-01",
        pattern=r"^\d{4}-\d{2}$",
        description="Shopify Admin REST API version"
    )
    shopify_page_size: int = Field(
        default=250,
        ge=1,
        le=250,
        description="Orders requested per page"
    )
    shopify_request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=120,
        description="Timeout for a single Shopify request"
    )
    shopify_page_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Pause between paginated requests (REST limit is 2 calls/second)"
    )

    # ===================
    # AUDIT BATCHES
    # ===================
    audit_max_batch_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum subscribers audited per batch call"
    )
    audit_inter_subscriber_delay_seconds: float = Field(
        default=0.2,
        ge=0,
        le=10,
        description="Fixed delay between subscribers in a batch"
    )
    upstream_rate_limit_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        le=60,
        description="Backoff on 429 when no Retry-After header is sent"
    )
    upstream_max_retries: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Retries of a throttled request before giving up"
    )

    # ===================
    # RESOLUTION
    # ===================
    resolution_min_box: int = Field(
        default=1,
        ge=1,
        description="Lowest box number a reviewer may resolve to"
    )
    resolution_max_box: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Highest box number a reviewer may resolve to"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def api_key_required(self) -> bool:
        """Check if callers must present an API key."""
        return bool(self.api_key)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
