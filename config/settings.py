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
        description="Supabase anon/public key or operator session token"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )
    posts_schema: str = Field(
        default="portal",
        description="Schema holding the import posts table"
    )
    posts_table: str = Field(
        default="portal_import_posts",
        description="Table holding one row per imported listing"
    )
    operator_id: Optional[str] = Field(
        None,
        description="Admin user id that owns imported posts"
    )

    # ===================
    # EXTRACTION SERVICE
    # ===================
    extraction_url: str = Field(
        default="https://api.carsgate.co/webhook/v1/portal/ai",
        description="AI extraction webhook endpoint"
    )
    extraction_source: str = Field(
        default="carsgate-portal",
        description="Source tag sent with every extraction request"
    )
    extraction_version: str = Field(
        default="2025-09-22",
        description="Request contract version"
    )
    extraction_locale: str = Field(
        default="en-SA",
        description="Locale sent with every extraction request"
    )
    extraction_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Timeout for a single extraction request"
    )

    # ===================
    # PRICING
    # ===================
    usd_to_sar_rate: float = Field(
        default=3.75,
        gt=0,
        description="Conversion rate from input currency (USD) to SAR"
    )
    customs_rate: float = Field(
        default=0.05,
        ge=0,
        le=1,
        description="Customs fee rate applied to the converted car price"
    )
    vat_rate: float = Field(
        default=0.15,
        ge=0,
        le=1,
        description="VAT rate applied to car price plus customs"
    )
    default_shipping_usd: float = Field(
        default=5000,
        ge=0,
        description="Default shipping cost in USD"
    )
    default_broker_fee_usd: float = Field(
        default=3000,
        ge=0,
        description="Default broker fee in USD"
    )
    default_platform_fee_sar: float = Field(
        default=2000,
        ge=0,
        description="Default platform fee in SAR"
    )

    # ===================
    # WORKFLOW & SYNC TIMING
    # ===================
    pricing_autosave_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        le=30,
        description="Debounce window for pricing auto-save"
    )
    auto_advance_delay_seconds: float = Field(
        default=0.3,
        ge=0,
        le=10,
        description="Settle delay before advancing raw -> details after analysis"
    )
    sync_reconnect_initial_seconds: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Delay after the first failed reconnect of the realtime channel"
    )
    sync_reconnect_max_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Upper bound for the reconnect delay"
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
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed to call the API"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def realtime_configured(self) -> bool:
        """Live sync needs an operator to scope the working set."""
        return bool(self.operator_id)


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
