"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="artmarket-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Signing key JWK (JSON string) for JWT token verification")
    jwt_algorithm: str = Field(default="ES256", description="Algorithm used to sign access tokens")
    admin_role: str = Field(default="admin", description="Token role granted administrative access")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    payment_currency: str = Field(default="usd", description="Currency for payment sessions")
    payment_session_ttl_minutes: int = Field(
        default=30,
        ge=30,
        description="Minutes before an unpaid checkout session expires and its stock is released",
    )

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Artmarket <noreply@artmarket.app>",
        description="From address for transactional emails",
    )
    admin_email: str = Field(default="admin@artmarket.app", description="Address notified of completed payments")

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for payment redirects",
    )

    # Shipping (TopShip)
    topship_base_url: str = Field(default="https://api-topship.com/api", description="TopShip API base URL")
    topship_api_key: str = Field(default="", description="TopShip API key")
    shipping_timeout_seconds: float = Field(default=10.0, description="Timeout for shipping provider calls")
    shipping_origin_name: str = Field(default="Artmarket", description="Sender name on shipments")
    shipping_origin_email: str = Field(default="shipping@artmarket.app", description="Sender email on shipments")
    shipping_origin_phone: str = Field(default="", description="Sender phone number on shipments")
    shipping_origin_address: str = Field(default="", description="Sender street address on shipments")
    shipping_origin_city: str = Field(default="Lagos", description="City shipments are sent from")
    shipping_origin_country_code: str = Field(default="NG", description="Country code shipments are sent from")
    shipping_default_weight_kg: float = Field(default=2.0, gt=0, description="Parcel weight used for rate quotes")

    # Referrals
    referral_percentage: Decimal = Field(
        default=Decimal("5"),
        ge=0,
        le=100,
        description="Percentage of an order total credited to the referrer",
    )

    # Pagination
    default_page_size: int = Field(default=20, ge=1, le=100, description="Default number of orders per page")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
